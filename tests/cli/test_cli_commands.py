import json

import pytest

from shotpipe import cli
from shotpipe.director import StageDirector
from shotpipe.storage import ProjectStorageService

from conftest import FakeImageService, FakeVideoService, sample_project


def test_parser_commands():
    parser = cli.build_parser()
    args = parser.parse_args(["batch", "p1", "--mode", "fill_missing"])
    assert (args.project_id, args.mode, args.func) == ("p1", "fill_missing", cli.cmd_batch)
    args = parser.parse_args(["nine-grid", "p1", "s1", "--select", "5", "--role", "end"])
    assert (args.select, args.role) == (5, "end")
    with pytest.raises(SystemExit):
        parser.parse_args(["nine-grid", "p1", "s1", "--select", "10"])


@pytest.fixture
def directors(tmp_path, monkeypatch):
    """Each CLI invocation gets a fresh director on the same database, as in real use."""
    created = []

    def from_config(cls, **kwargs):
        storage = ProjectStorageService.open(tmp_path / "projects.db")
        director = StageDirector(
            FakeImageService(), FakeVideoService(), storage=storage, settings={"batch_delay_sec": 0}
        )
        created.append(director)
        return director

    monkeypatch.setattr(cli.StageDirector, "from_config", classmethod(from_config))
    return created


def test_import_status_and_batch(tmp_path, directors):
    snapshot = tmp_path / "project.json"
    snapshot.write_text(json.dumps(sample_project().to_snapshot(), ensure_ascii=False), encoding="utf-8")

    assert cli.main(["import", str(snapshot)]) == 0
    assert cli.main(["list"]) == 0
    assert cli.main(["batch", "p1", "--mode", "fill_missing"]) == 0
    assert all(shot.has_completed_start() for shot in directors[-1].repository.get("p1").shots)
    assert cli.main(["status", "p1"]) == 0


def test_unknown_project_exits_nonzero(directors):
    assert cli.main(["video", "missing", "s1"]) == 1
