import asyncio

import pytest

from shotpipe.pipeline.errors import (
    ContentRejectedError,
    GenerationInProgressError,
    PipelineValidationError,
)
from shotpipe.pipeline.keyframes import KeyframeGenerator, keyframe_slot
from shotpipe.pipeline.models import (
    ArtDirection,
    FrameRole,
    GenerationStatus,
    RenderLogStatus,
    RenderLogType,
)
from shotpipe.pipeline.prompts import VISUAL_STYLE_MARKER, extract_base_prompt

from conftest import FakeImageService, completed_keyframe, png_bytes


def test_generate_start_keyframe_completes_and_logs(repository):
    images = FakeImageService()
    gen = KeyframeGenerator(repository, images)

    kf = asyncio.run(gen.generate("p1", "s1", FrameRole.START))

    assert kf.status == GenerationStatus.COMPLETED
    assert kf.image_url == "data:image/png;base64,IMG1"
    assert kf.visual_prompt.startswith("Lin walks through stall 1" + VISUAL_STYLE_MARKER)
    assert "Japanese anime style" in kf.visual_prompt
    assert images.calls[0]["refs"] == [
        "data:image/png;base64,SCENE",
        "data:image/png;base64,LIN",
        "data:image/png;base64,BO",
    ]
    stored = repository.get_shot("p1", "s1").keyframe(FrameRole.START)
    assert stored == kf
    (log,) = repository.get("p1").render_logs
    assert log.type == RenderLogType.KEYFRAME
    assert log.status == RenderLogStatus.SUCCESS
    assert log.resource_id == kf.id
    assert log.model == "fake-image"


def test_regenerating_keeps_id_and_base_prompt(repository):
    images = FakeImageService()
    gen = KeyframeGenerator(repository, images)
    first = asyncio.run(gen.generate("p1", "s1", FrameRole.END))
    second = asyncio.run(gen.generate("p1", "s1", FrameRole.END))
    assert second.id == first.id
    assert second.visual_prompt == first.visual_prompt
    assert second.image_url.endswith("IMG2")
    assert images.calls[0]["prompt"] == images.calls[1]["prompt"]


def test_edited_base_prompt_is_reused(repository):
    gen = KeyframeGenerator(repository, FakeImageService())
    kf = asyncio.run(gen.generate("p1", "s1", FrameRole.START))
    gen.edit_prompt("p1", "s1", kf.id, "A lantern sways" + kf.visual_prompt[len("Lin walks through stall 1"):])
    again = asyncio.run(gen.generate("p1", "s1", FrameRole.START))
    assert extract_base_prompt(again.visual_prompt, "") == "A lantern sways"


def test_failed_generation_marks_failed_and_records_log(repository):
    images = FakeImageService(errors=[ContentRejectedError("blocked", status_code=400)])
    gen = KeyframeGenerator(repository, images)

    with pytest.raises(ContentRejectedError):
        asyncio.run(gen.generate("p1", "s2", FrameRole.START))

    kf = repository.get_shot("p1", "s2").keyframe(FrameRole.START)
    assert kf.status == GenerationStatus.FAILED
    assert kf.image_url is None
    (log,) = repository.get("p1").render_logs
    assert log.status == RenderLogStatus.FAILED
    assert "unsafe" in log.error
    assert not repository.is_in_flight("p1", "s2", keyframe_slot(FrameRole.START))


def test_art_direction_reaches_prompt(repository):
    def add_art(project):
        project.script_data.art_direction = ArtDirection(consistency_anchors="amber lanterns")
        return project

    repository.update_project("p1", add_art)
    kf = asyncio.run(KeyframeGenerator(repository, FakeImageService()).generate("p1", "s1", FrameRole.START))
    assert "Art Direction: amber lanterns" in kf.visual_prompt


def test_second_generation_for_same_slot_is_refused(repository):
    gate = asyncio.Event()

    class SlowImages(FakeImageService):
        async def generate(self, prompt, reference_images=(), aspect_ratio="16:9"):
            await gate.wait()
            return await super().generate(prompt, reference_images, aspect_ratio)

    gen = KeyframeGenerator(repository, SlowImages())

    async def main():
        first = asyncio.create_task(gen.generate("p1", "s1", FrameRole.START))
        await asyncio.sleep(0)
        assert repository.get_shot("p1", "s1").keyframe(FrameRole.START).status == GenerationStatus.GENERATING
        with pytest.raises(GenerationInProgressError):
            await gen.generate("p1", "s1", FrameRole.START)
        with pytest.raises(GenerationInProgressError):
            gen.upload("p1", "s1", FrameRole.START, png_bytes())
        other = asyncio.create_task(gen.generate("p1", "s1", FrameRole.END))
        gate.set()
        return await first, await other

    start, end = asyncio.run(main())
    assert start.status == end.status == GenerationStatus.COMPLETED


def test_upload_installs_data_url(repository):
    gen = KeyframeGenerator(repository, FakeImageService())
    kf = gen.upload("p1", "s3", FrameRole.END, png_bytes())
    assert kf.status == GenerationStatus.COMPLETED
    assert kf.image_url.startswith("data:image/png;base64,")
    assert kf.visual_prompt == "Lin walks through stall 3"
    assert repository.get("p1").render_logs == []


def test_upload_keeps_existing_id_and_prompt(repository):
    existing = completed_keyframe("s1", FrameRole.START, "data:image/png;base64,OLD", prompt="keep me")
    repository.update_shot("p1", "s1", lambda s: s.with_keyframe(existing))
    kf = KeyframeGenerator(repository, FakeImageService()).upload(
        "p1", "s1", FrameRole.START, png_bytes(), image_url="https://cdn.example.com/a.png"
    )
    assert kf.id == existing.id
    assert kf.visual_prompt == "keep me"
    assert kf.image_url == "https://cdn.example.com/a.png"


def test_upload_rejects_non_image(repository):
    gen = KeyframeGenerator(repository, FakeImageService())
    with pytest.raises(PipelineValidationError):
        gen.upload("p1", "s1", FrameRole.START, b"%PDF-1.4 not an image")
    assert repository.get_shot("p1", "s1").keyframes == []


def test_edit_prompt_unknown_keyframe(repository):
    with pytest.raises(PipelineValidationError):
        KeyframeGenerator(repository, FakeImageService()).edit_prompt("p1", "s1", "kf-missing", "text")


def test_cancelled_generation_marks_failed_and_frees_slot(repository):
    gate = asyncio.Event()

    class StalledImages(FakeImageService):
        async def generate(self, prompt, reference_images=(), aspect_ratio="16:9"):
            await gate.wait()

    gen = KeyframeGenerator(repository, StalledImages())

    async def main():
        task = asyncio.create_task(gen.generate("p1", "s1", FrameRole.START))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(main())
    kf = repository.get_shot("p1", "s1").keyframe(FrameRole.START)
    assert kf.status == GenerationStatus.FAILED
    assert kf.image_url is None
    (log,) = repository.get("p1").render_logs
    assert log.status == RenderLogStatus.FAILED
    assert "cancelled" in log.error
    assert not repository.is_in_flight("p1", "s1", keyframe_slot(FrameRole.START))
