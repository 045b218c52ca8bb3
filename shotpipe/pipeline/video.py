from __future__ import annotations

import asyncio
import time
from typing import Optional, Protocol

from shotpipe.tools.base import setup_logger
from shotpipe.utils.logging_setup import log_context

from .errors import PipelineValidationError
from .models import (
    FrameRole,
    GenerationStatus,
    Interval,
    Project,
    RenderLogType,
    Shot,
    VideoModel,
    VideoRequestMode,
    interval_id,
)
from .prompts import build_nine_grid_video_prompt, build_video_prompt
from .repository import ProjectRepository

logger = setup_logger(__name__)

VIDEO_SLOT = "video"


class VideoService(Protocol):
    async def generate(
        self,
        prompt: str,
        start_image: str,
        end_image: Optional[str] = None,
        model: str = VideoModel.SORA_2.value,
    ) -> str:
        ...


def request_mode(shot: Shot) -> VideoRequestMode:
    """Dual-image only when this shot's own end keyframe is completed."""
    end = shot.keyframe(FrameRole.END)
    if end is not None and end.is_completed and end.image_url:
        return VideoRequestMode.DUAL_IMAGE
    return VideoRequestMode.SINGLE_IMAGE


class VideoGenerator:
    def __init__(
        self,
        repository: ProjectRepository,
        video_service: VideoService,
        default_model: VideoModel = VideoModel.SORA_2,
        default_language: str = "中文",
        interval_duration: float = 10,
        interval_motion_strength: float = 5,
    ):
        self.repository = repository
        self.video_service = video_service
        self.default_model = VideoModel(default_model)
        self.default_language = default_language
        self.interval_duration = interval_duration
        self.interval_motion_strength = interval_motion_strength

    def build_prompt(self, project: Project, shot: Shot, duration: float) -> str:
        model = shot.video_model or self.default_model
        language = project.effective_language(self.default_language)
        start = shot.keyframe(FrameRole.START)
        grid = shot.nine_grid
        if (
            grid is not None
            and grid.status == GenerationStatus.COMPLETED
            and start is not None
            and start.image_url == grid.image_url
        ):
            return build_nine_grid_video_prompt(
                shot.action_summary, shot.camera_movement, model, language, grid.panels, duration
            )
        return build_video_prompt(shot.action_summary, shot.camera_movement, model, language)

    async def generate(self, project_id: str, shot_id: str) -> Interval:
        with log_context(project_id=project_id, shot_id=shot_id, operation="video"):
            shot = self.repository.get_shot(project_id, shot_id)
            if not shot.has_completed_start():
                raise PipelineValidationError("Generate the start frame first.")
            with self.repository.in_flight(project_id, shot_id, VIDEO_SLOT):
                return await self._generate(project_id, shot_id)

    async def _generate(self, project_id: str, shot_id: str) -> Interval:
        project = self.repository.get(project_id)
        shot = self.repository.get_shot(project_id, shot_id)
        start = shot.keyframe(FrameRole.START)
        end = shot.keyframe(FrameRole.END)
        mode = request_mode(shot)
        model = VideoModel(shot.video_model or self.default_model)

        current = shot.interval
        duration = current.duration if current else self.interval_duration
        prompt = self.build_prompt(project, shot, duration)
        base = Interval(
            id=current.id if current else interval_id(shot_id),
            start_keyframe_id=start.id,
            end_keyframe_id=end.id if end else None,
            duration=duration,
            motion_strength=current.motion_strength if current else self.interval_motion_strength,
            video_prompt=prompt,
            status=GenerationStatus.GENERATING,
        )
        self._put(project_id, shot_id, base)
        logger.info("Generating video: model=%s mode=%s", model.value, mode.value)

        end_image = end.image_url if mode == VideoRequestMode.DUAL_IMAGE else None
        started = time.monotonic()
        try:
            video_url = await self.video_service.generate(prompt, start.image_url, end_image, model.value)
        except (Exception, asyncio.CancelledError) as e:
            self._put(project_id, shot_id, base.model_copy(update={"status": GenerationStatus.FAILED}))
            self.repository.record_render(
                project_id, RenderLogType.VIDEO, base.id, shot.action_summary, model.value, prompt, started, e
            )
            logger.warning("Video generation failed: %s", e)
            raise

        interval = base.model_copy(update={"video_url": video_url, "status": GenerationStatus.COMPLETED})
        self._put(project_id, shot_id, interval)
        self.repository.record_render(
            project_id, RenderLogType.VIDEO, base.id, shot.action_summary, model.value, prompt, started
        )
        logger.info("Video %s completed", interval.id)
        return interval

    def edit_prompt(self, project_id: str, shot_id: str, text: str) -> Interval:
        shot = self.repository.get_shot(project_id, shot_id)
        if shot.interval is None:
            raise PipelineValidationError("This shot has no video prompt to edit yet.")
        edited = shot.interval.model_copy(update={"video_prompt": text})
        self._put(project_id, shot_id, edited)
        return edited

    def set_model(self, project_id: str, shot_id: str, model: VideoModel) -> Shot:
        model = VideoModel(model)
        return self.repository.update_shot(project_id, shot_id, lambda s: s.model_copy(update={"video_model": model}))

    def _put(self, project_id: str, shot_id: str, interval: Interval) -> None:
        self.repository.update_shot(project_id, shot_id, lambda s: s.model_copy(update={"interval": interval}))
