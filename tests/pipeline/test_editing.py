import pytest

from shotpipe.pipeline.editing import (
    add_character,
    edit_action_summary,
    remove_character,
    set_character_variation,
    set_scene_reference_image,
    status_projection,
)
from shotpipe.pipeline.errors import PipelineValidationError
from shotpipe.pipeline.models import FrameRole, GenerationStatus, Keyframe, VideoModel
from shotpipe.pipeline.references import resolve_references

from conftest import completed_keyframe


def test_edit_action_summary_only_touches_target(repository):
    edit_action_summary(repository, "p1", "s2", "Bo drops the lantern")
    shots = repository.get("p1").shots
    assert shots[1].action_summary == "Bo drops the lantern"
    assert shots[0].action_summary == "Lin walks through stall 1"


def test_variation_set_and_cleared(repository):
    shot = set_character_variation(repository, "p1", "s1", "c1", "v1")
    assert shot.character_variations == {"c1": "v1"}
    project = repository.get("p1")
    assert "data:image/png;base64,LINV1" in resolve_references(project.shots[0], project.script_data)

    shot = set_character_variation(repository, "p1", "s1", "c1", None)
    assert shot.character_variations == {}


def test_variation_must_exist(repository):
    with pytest.raises(PipelineValidationError):
        set_character_variation(repository, "p1", "s1", "c2", "v1")
    with pytest.raises(PipelineValidationError):
        set_character_variation(repository, "p1", "s1", "c404", "v1")


def test_add_character_is_idempotent_and_validated(repository):
    shot = add_character(repository, "p1", "s1", "c3")
    assert shot.character_ids == ["c1", "c2", "c3"]
    assert add_character(repository, "p1", "s1", "c3").character_ids == ["c1", "c2", "c3"]
    with pytest.raises(PipelineValidationError):
        add_character(repository, "p1", "s1", "c404")


def test_remove_character_drops_variation(repository):
    set_character_variation(repository, "p1", "s1", "c1", "v1")
    shot = remove_character(repository, "p1", "s1", "c1")
    assert shot.character_ids == ["c2"]
    assert shot.character_variations == {}


def test_scene_reference_image(repository):
    set_scene_reference_image(repository, "p1", "1", "data:image/png;base64,NEWSCENE")
    assert repository.get("p1").script_data.scene("1").reference_image == "data:image/png;base64,NEWSCENE"
    with pytest.raises(PipelineValidationError):
        set_scene_reference_image(repository, "p1", "9", "data:x")


def test_status_projection(repository):
    start = completed_keyframe("s1", FrameRole.START, "data:image/png;base64,A")
    failed_end = Keyframe(id="kf-s1-end", type=FrameRole.END, status=GenerationStatus.FAILED)
    repository.update_shot(
        "p1",
        "s1",
        lambda s: s.with_keyframe(start).with_keyframe(failed_end).model_copy(update={"video_model": VideoModel.VEO_FAST_FL}),
    )
    rows = status_projection(repository, "p1")
    assert len(rows) == 3
    assert rows[0] == {
        "index": 0,
        "shotId": "s1",
        "actionSummary": "Lin walks through stall 1",
        "start": "completed",
        "end": "failed",
        "video": None,
        "nineGrid": None,
        "videoModel": VideoModel.VEO_FAST_FL.value,
    }
    assert rows[2]["start"] is None
    assert rows[2]["end"] is None
