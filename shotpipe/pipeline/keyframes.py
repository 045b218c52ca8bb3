from __future__ import annotations

import asyncio
import time
from typing import Optional, Protocol, Sequence

from shotpipe.tools.base import setup_logger
from shotpipe.utils.image_codec import sniff_image_mime, to_data_url
from shotpipe.utils.logging_setup import log_context

from .errors import GenerationInProgressError, PipelineValidationError
from .models import (
    FrameRole,
    GenerationStatus,
    Keyframe,
    RenderLogType,
    keyframe_id as make_keyframe_id,
)
from .prompts import build_keyframe_prompt, extract_base_prompt
from .references import resolve_references
from .repository import ProjectRepository

logger = setup_logger(__name__)


class ImageService(Protocol):
    async def generate(self, prompt: str, reference_images: Sequence[str] = (), aspect_ratio: str = "16:9") -> str:
        ...


def keyframe_slot(role: FrameRole) -> str:
    return f"keyframe:{FrameRole(role).value}"


class KeyframeGenerator:
    """
    Lifecycle of a shot's start/end keyframes.

    ``generate`` moves a keyframe through generating -> completed/failed around
    one image-service call. ``upload`` is the manual override: it validates
    the bytes and installs them as a completed keyframe without any network
    call. Nine-grid adoption goes through ``upload`` as well.
    """

    def __init__(
        self,
        repository: ProjectRepository,
        image_service: ImageService,
        aspect_ratio: str = "16:9",
        default_visual_style: str = "live-action",
    ):
        self.repository = repository
        self.image_service = image_service
        self.aspect_ratio = aspect_ratio
        self.default_visual_style = default_visual_style

    async def generate(self, project_id: str, shot_id: str, role: FrameRole) -> Keyframe:
        role = FrameRole(role)
        with log_context(project_id=project_id, shot_id=shot_id, operation=f"keyframe:{role.value}"):
            with self.repository.in_flight(project_id, shot_id, keyframe_slot(role)):
                return await self._generate(project_id, shot_id, role)

    async def _generate(self, project_id: str, shot_id: str, role: FrameRole) -> Keyframe:
        project = self.repository.get(project_id)
        shot = self.repository.get_shot(project_id, shot_id)

        existing = shot.keyframe(role)
        base = extract_base_prompt(existing.visual_prompt if existing else None, shot.action_summary)
        prompt = build_keyframe_prompt(
            base,
            project.effective_visual_style(self.default_visual_style),
            shot.camera_movement,
            role,
            project.art_direction(),
        )
        kf_id = existing.id if existing else make_keyframe_id(shot_id, role)
        refs = resolve_references(shot, project.script_data)

        self._put(project_id, shot_id, Keyframe(id=kf_id, type=role, visual_prompt=prompt, status=GenerationStatus.GENERATING))
        logger.info("Generating %s keyframe with %d reference image(s)", role.value, len(refs))

        started = time.monotonic()
        try:
            image_url = await self.image_service.generate(prompt, refs, self.aspect_ratio)
        except (Exception, asyncio.CancelledError) as e:
            self._put(project_id, shot_id, Keyframe(id=kf_id, type=role, visual_prompt=prompt, status=GenerationStatus.FAILED))
            self._log(project_id, kf_id, shot.action_summary, prompt, started, error=e)
            logger.warning("Keyframe generation failed: %s", e)
            raise

        keyframe = Keyframe(
            id=kf_id,
            type=role,
            visual_prompt=prompt,
            image_url=image_url,
            status=GenerationStatus.COMPLETED,
        )
        self._put(project_id, shot_id, keyframe)
        self._log(project_id, kf_id, shot.action_summary, prompt, started)
        logger.info("Keyframe %s completed", kf_id)
        return keyframe

    def upload(
        self,
        project_id: str,
        shot_id: str,
        role: FrameRole,
        data: bytes,
        image_url: Optional[str] = None,
    ) -> Keyframe:
        """
        Install user-supplied image bytes as a completed keyframe.

        ``image_url`` overrides the stored reference (the bytes are still
        validated); by default the bytes are stored as a data URL.
        """
        role = FrameRole(role)
        mime_type = sniff_image_mime(data)
        if mime_type is None:
            raise PipelineValidationError("The uploaded file is not a recognised image.")
        if self.repository.is_in_flight(project_id, shot_id, keyframe_slot(role)):
            raise GenerationInProgressError(shot_id, keyframe_slot(role))

        shot = self.repository.get_shot(project_id, shot_id)
        existing = shot.keyframe(role)
        keyframe = Keyframe(
            id=existing.id if existing else make_keyframe_id(shot_id, role),
            type=role,
            visual_prompt=(existing.visual_prompt if existing and existing.visual_prompt else shot.action_summary),
            image_url=image_url or to_data_url(data, mime_type),
            status=GenerationStatus.COMPLETED,
        )
        self._put(project_id, shot_id, keyframe)
        with log_context(project_id=project_id, shot_id=shot_id, operation=f"upload:{role.value}"):
            logger.info("Installed %s image as %s keyframe %s", mime_type, role.value, keyframe.id)
        return keyframe

    def edit_prompt(self, project_id: str, shot_id: str, keyframe_id: str, text: str) -> Keyframe:
        shot = self.repository.get_shot(project_id, shot_id)
        target = next((k for k in shot.keyframes if k.id == keyframe_id), None)
        if target is None:
            raise PipelineValidationError(f"Keyframe {keyframe_id} not found in shot {shot_id}.")
        edited = target.model_copy(update={"visual_prompt": text})
        self._put(project_id, shot_id, edited)
        return edited

    def _put(self, project_id: str, shot_id: str, keyframe: Keyframe) -> None:
        self.repository.update_shot(project_id, shot_id, lambda s: s.with_keyframe(keyframe))

    def _log(self, project_id: str, resource_id: str, resource_name: str, prompt: str, started: float, error=None) -> None:
        self.repository.record_render(
            project_id,
            RenderLogType.KEYFRAME,
            resource_id,
            resource_name,
            getattr(self.image_service, "model", ""),
            prompt,
            started,
            error,
        )
