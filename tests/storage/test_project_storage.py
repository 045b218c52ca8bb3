import pytest

from shotpipe.pipeline.models import FrameRole, Project
from shotpipe.pipeline.repository import ProjectRepository
from shotpipe.storage import ProjectStorageService
from shotpipe.storage.service import migrate_snapshot
from shotpipe.storage.store import ProjectSnapshotStore

from conftest import completed_keyframe, sample_project


def test_schema_tables_exist(tmp_path):
    store = ProjectSnapshotStore.open(db_path=tmp_path / "projects.db")
    cur = store.conn.execute("SELECT name FROM sqlite_master WHERE type='table' AND name='projects'")
    assert cur.fetchone() is not None
    assert store.schema_version() == 1
    store.close()


def test_store_put_get_delete(tmp_path):
    store = ProjectSnapshotStore.open(db_path=tmp_path / "projects.db")
    store.put("p1", {"id": "p1", "title": "First"})
    store.put("p1", {"id": "p1", "title": "Renamed"})
    assert store.get("p1")["title"] == "Renamed"
    assert [r["title"] for r in store.list_projects()] == ["Renamed"]
    assert store.delete("p1")
    assert store.get("p1") is None
    with pytest.raises(ValueError):
        store.put("  ", {})
    store.close()


def test_save_and_load_round_trip(tmp_path):
    service = ProjectStorageService.open(tmp_path / "projects.db")
    project = sample_project()
    project.shots[0] = project.shots[0].with_keyframe(
        completed_keyframe("s1", FrameRole.START, "data:image/png;base64,A")
    )
    service.save(project)
    loaded = service.load("p1")
    assert loaded == project
    assert service.load("missing") is None
    service.close()


def test_snapshot_is_camel_case(tmp_path):
    service = ProjectStorageService.open(tmp_path / "projects.db")
    service.save(sample_project())
    raw = service.store.get("p1")
    assert "scriptData" in raw and "renderLogs" in raw
    assert raw["shots"][0]["actionSummary"] == "Lin walks through stall 1"
    assert raw["shots"][0]["characters"] == ["c1", "c2"]
    service.close()


def test_import_migrates_snapshot_without_render_logs(tmp_path):
    service = ProjectStorageService.open(tmp_path / "projects.db")
    snapshot = sample_project("old").to_snapshot()
    del snapshot["renderLogs"]
    project = service.import_snapshot(snapshot)
    assert project.render_logs == []
    assert service.load("old").id == "old"
    assert [row["project_id"] for row in service.list_projects()] == ["old"]
    service.close()


def test_migrate_snapshot_handles_null_and_keeps_existing():
    assert migrate_snapshot({"id": "x", "renderLogs": None})["renderLogs"] == []
    logs = [{"id": "log-1"}]
    assert migrate_snapshot({"id": "x", "renderLogs": logs})["renderLogs"] == logs


def test_repository_listener_autosaves(tmp_path):
    service = ProjectStorageService.open(tmp_path / "projects.db")
    repo = ProjectRepository(listeners=[service.save])
    repo.put(sample_project())
    repo.update_shot("p1", "s2", lambda s: s.model_copy(update={"action_summary": "saved"}))
    reopened = ProjectStorageService.open(tmp_path / "projects.db")
    assert reopened.load("p1").shots[1].action_summary == "saved"
    assert isinstance(reopened.load("p1"), Project)
    reopened.close()
    service.close()
