import asyncio
import json

from shotpipe.director import StageDirector
from shotpipe.pipeline.errors import AuthorizationError, ContentRejectedError
from shotpipe.pipeline.models import FrameRole
from shotpipe.storage import ProjectStorageService

from conftest import FakeImageService, FakeTextService, FakeVideoService, png_bytes, sample_project

SETTINGS = {"batch_delay_sec": 0, "default_visual_style": "live-action"}


def _director(images=None, videos=None, text=None, storage=None, handler=None):
    director = StageDirector(
        image_service=images or FakeImageService(),
        video_service=videos or FakeVideoService(),
        text_service=text,
        storage=storage,
        credential_handler=handler,
        settings=SETTINGS,
    )
    director.import_project(sample_project())
    return director


def test_import_accepts_camel_case_snapshot():
    director = StageDirector(FakeImageService(), FakeVideoService(), settings=SETTINGS)
    snapshot = sample_project("snap").to_snapshot()
    del snapshot["renderLogs"]
    resp = director.import_project(snapshot)
    assert resp.success
    assert resp.content["id"] == "snap"
    assert resp.content["shots"][0]["actionSummary"] == "Lin walks through stall 1"


def test_invalid_snapshot_is_validation_failure():
    director = StageDirector(FakeImageService(), FakeVideoService(), settings=SETTINGS)
    resp = director.import_project({"title": "no id"})
    assert not resp.success
    assert resp.error_kind == "validation"


def test_generate_keyframe_then_video():
    videos = FakeVideoService()
    director = _director(videos=videos)

    resp = asyncio.run(director.generate_keyframe("p1", "s1", "start"))
    assert resp.success
    assert resp.content["status"] == "completed"

    resp = asyncio.run(director.generate_video("p1", "s1"))
    assert resp.success
    assert resp.content["videoUrl"] == "https://cdn.example.com/clip.mp4"
    assert videos.calls[0]["end"] is None


def test_video_without_start_is_validation_failure():
    videos = FakeVideoService()
    resp = asyncio.run(_director(videos=videos).generate_video("p1", "s2"))
    assert not resp.success
    assert resp.error_kind == "validation"
    assert "start frame" in resp.message
    assert videos.calls == []


def test_content_rejection_is_reported_with_friendly_message():
    director = _director(images=FakeImageService(errors=[ContentRejectedError("blocked", 400)]))
    resp = asyncio.run(director.generate_keyframe("p1", "s1", FrameRole.END))
    assert not resp.success
    assert resp.error_kind == "content_rejected"
    assert "unsafe" in resp.message
    assert director.repository.get_shot("p1", "s1").keyframe(FrameRole.END).status.value == "failed"


def test_authorization_failure_handled_silently():
    handled = []
    director = _director(
        images=FakeImageService(errors=[AuthorizationError("bad key")]),
        handler=lambda exc: handled.append(exc) or True,
    )
    resp = asyncio.run(director.generate_keyframe("p1", "s1", "start"))
    assert resp.aborted
    assert resp.message is None
    assert len(handled) == 1


def test_unknown_role_is_validation_failure():
    resp = asyncio.run(_director().generate_keyframe("p1", "s1", "middle"))
    assert not resp.success
    assert resp.error_kind == "validation"


def test_upload_and_copy_previous_end_frame():
    director = _director()
    assert director.upload_keyframe("p1", "s1", "end", png_bytes()).success
    resp = director.copy_previous_end_frame("p1", "s2")
    assert resp.success
    assert resp.content["type"] == "start"
    assert not director.copy_previous_end_frame("p1", "s1").success
    assert not director.copy_previous_end_frame("p1", "nope").success


def test_batch_auto_fills_missing_then_regenerates_all():
    images = FakeImageService()
    director = _director(images=images)
    progress = []

    resp = asyncio.run(director.batch_generate("p1", "auto", progress.append))
    assert resp.success
    assert resp.content["mode"] == "fill_missing"
    assert (resp.content["total"], resp.content["succeeded"]) == (3, 3)
    assert progress[-1].current == 3

    resp = asyncio.run(director.batch_generate("p1"))
    assert resp.content["mode"] == "regenerate_all"
    assert len(images.calls) == 6


def test_batch_abort_without_handler_reports_progress_made():
    director = _director(images=FakeImageService(errors=[None, AuthorizationError("expired")]))
    resp = asyncio.run(director.batch_generate("p1", "fill_missing"))
    assert not resp.success
    assert resp.error_kind == "authorization"
    assert resp.content == {"completed": 1, "total": 3}


def test_batch_abort_with_handler_is_marked_aborted():
    director = _director(images=FakeImageService(errors=[AuthorizationError("expired")]), handler=lambda exc: True)
    resp = asyncio.run(director.batch_generate("p1", "fill_missing"))
    assert resp.aborted
    assert resp.content["failures"] == ["s1"]


def test_nine_grid_needs_text_model():
    resp = asyncio.run(_director().generate_nine_grid("p1", "s1"))
    assert not resp.success
    assert resp.error_kind == "validation"


def test_nine_grid_parse_error_kind():
    director = _director(text=FakeTextService(json.dumps({"panels": []})))
    resp = asyncio.run(director.generate_nine_grid("p1", "s1"))
    assert not resp.success
    assert resp.error_kind == "parse"


def test_editing_operations_and_status():
    director = _director()
    assert director.edit_action_summary("p1", "s1", "new text").content["actionSummary"] == "new text"
    assert director.set_character_variation("p1", "s1", "c1", "v1").content["characterVariations"] == {"c1": "v1"}
    assert director.add_character("p1", "s1", "c3").content["characters"] == ["c1", "c2", "c3"]
    assert director.remove_character("p1", "s1", "c2").content["characters"] == ["c1", "c3"]
    assert director.set_scene_reference_image("p1", "1", None).success
    assert director.set_video_model("p1", "s1", "veo_3_1_i2v_s_fast_fl_landscape").success
    assert not director.set_video_model("p1", "s1", "unknown").success
    rows = director.status("p1").content
    assert rows[0]["actionSummary"] == "new text"
    assert rows[0]["videoModel"] == "veo_3_1_i2v_s_fast_fl_landscape"


def test_state_is_persisted_and_reopened(tmp_path):
    storage = ProjectStorageService.open(tmp_path / "projects.db")
    director = _director(storage=storage)
    asyncio.run(director.generate_keyframe("p1", "s1", "start"))

    fresh = StageDirector(FakeImageService(), FakeVideoService(), storage=storage, settings=SETTINGS)
    resp = fresh.open_project("p1")
    assert resp.success
    assert resp.content["shots"][0]["keyframes"][0]["status"] == "completed"
    assert not fresh.open_project("missing").success
    storage.close()
