from io import BytesIO

import pytest
from PIL import Image

from shotpipe.pipeline.models import (
    Character,
    CharacterVariation,
    FrameRole,
    GenerationStatus,
    Keyframe,
    Project,
    Scene,
    ScriptData,
    Shot,
)
from shotpipe.pipeline.repository import ProjectRepository


class FakeImageService:
    """Records calls; returns a distinct data URL per call or raises queued errors."""

    model = "fake-image"

    def __init__(self, errors=None):
        self.calls = []
        self.errors = list(errors or [])

    async def generate(self, prompt, reference_images=(), aspect_ratio="16:9"):
        self.calls.append({"prompt": prompt, "refs": list(reference_images), "aspect_ratio": aspect_ratio})
        if self.errors:
            err = self.errors.pop(0)
            if err is not None:
                raise err
        return f"data:image/png;base64,IMG{len(self.calls)}"


class FakeVideoService:
    def __init__(self, error=None):
        self.calls = []
        self.error = error

    async def generate(self, prompt, start_image, end_image=None, model="sora-2"):
        self.calls.append({"prompt": prompt, "start": start_image, "end": end_image, "model": model})
        if self.error is not None:
            raise self.error
        return "https://cdn.example.com/clip.mp4"


class FakeTextService:
    def __init__(self, reply):
        self.reply = reply
        self.calls = []

    async def complete_json(self, system, user):
        self.calls.append((system, user))
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply


def png_bytes(width=90, height=60, color=(200, 30, 30)):
    buf = BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


def completed_keyframe(shot_id, role, image_url, prompt="frame prompt"):
    return Keyframe(
        id=f"kf-{shot_id}-{role.value}-1",
        type=role,
        visual_prompt=prompt,
        image_url=image_url,
        status=GenerationStatus.COMPLETED,
    )


def sample_project(project_id="p1", shots=3):
    script = ScriptData(
        title="Night Market",
        language="中文",
        visual_style="anime",
        scenes=[Scene(id="1", location="night market", time="night", atmosphere="busy", reference_image="data:image/png;base64,SCENE")],
        characters=[
            Character(
                id="c1",
                name="Lin",
                reference_image="data:image/png;base64,LIN",
                variations=[CharacterVariation(id="v1", name="rain coat", reference_image="data:image/png;base64,LINV1")],
            ),
            Character(id="c2", name="Bo", reference_image="data:image/png;base64,BO"),
            Character(id="c3", name="Ghost"),
        ],
    )
    return Project(
        id=project_id,
        title="Night Market",
        script_data=script,
        shots=[
            Shot(
                id=f"s{i}",
                scene_id="1",
                action_summary=f"Lin walks through stall {i}",
                camera_movement="pan left shot",
                characters=["c1", "c2"],
            )
            for i in range(1, shots + 1)
        ],
    )


@pytest.fixture
def repository():
    repo = ProjectRepository()
    repo.put(sample_project())
    return repo

