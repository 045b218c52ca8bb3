"""
StageDirector: the operations the storyboard UI calls.

Every method returns a ToolResponse. Pipeline failures become
``success=False`` with a readable message; an authorization failure the
credential handler takes care of becomes ``aborted=True`` with no message.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Optional, Union

from shotpipe.config.config import config
from shotpipe.pipeline import editing
from shotpipe.pipeline.batch import BatchOrchestrator, CredentialHandler, ProgressCallback, auto_mode
from shotpipe.pipeline.continuity import copy_previous_end_frame
from shotpipe.pipeline.errors import (
    AuthorizationError,
    BatchAbortedError,
    ErrorKind,
    PipelineError,
    PipelineValidationError,
    describe_error,
)
from shotpipe.pipeline.keyframes import ImageService, KeyframeGenerator
from shotpipe.pipeline.models import BatchMode, FrameRole, Project, VideoModel
from shotpipe.pipeline.nine_grid import NineGridDecomposer, TextService
from shotpipe.pipeline.repository import ProjectRepository
from shotpipe.pipeline.scheduler import FixedIntervalScheduler, RateLimitScheduler
from shotpipe.pipeline.video import VideoGenerator, VideoService
from shotpipe.storage.service import ProjectStorageService, migrate_snapshot
from shotpipe.tools.base import ToolResponse, setup_logger
from shotpipe.utils.logging_setup import log_context

logger = setup_logger(__name__)


def _dump(model: Any) -> Any:
    if hasattr(model, "model_dump"):
        return model.model_dump(mode="json", by_alias=True)
    if isinstance(model, list):
        return [_dump(m) for m in model]
    return model


class StageDirector:
    def __init__(
        self,
        image_service: ImageService,
        video_service: VideoService,
        text_service: Optional[TextService] = None,
        repository: Optional[ProjectRepository] = None,
        storage: Optional[ProjectStorageService] = None,
        scheduler: Optional[RateLimitScheduler] = None,
        credential_handler: Optional[CredentialHandler] = None,
        settings: Optional[Dict[str, Any]] = None,
    ):
        settings = settings if settings is not None else config
        self.repository = repository or ProjectRepository()
        self.storage = storage
        self.credential_handler = credential_handler
        if storage is not None:
            # Every state change is persisted, including intermediate "generating" states.
            self.repository.listeners.append(storage.save)

        aspect_ratio = settings.get("image_aspect_ratio", "16:9")
        visual_style = settings.get("default_visual_style", "live-action")
        self.keyframes = KeyframeGenerator(
            self.repository, image_service, aspect_ratio=aspect_ratio, default_visual_style=visual_style
        )
        self.videos = VideoGenerator(
            self.repository,
            video_service,
            default_model=VideoModel(settings.get("default_video_model", VideoModel.SORA_2.value)),
            default_language=settings.get("default_language", "中文"),
            interval_duration=float(settings.get("interval_duration_sec", 10)),
            interval_motion_strength=float(settings.get("interval_motion_strength", 5)),
        )
        self.batch = BatchOrchestrator(
            self.repository,
            self.keyframes,
            scheduler=scheduler or FixedIntervalScheduler(float(settings.get("batch_delay_sec", 3.0))),
            credential_handler=credential_handler,
        )
        self.nine_grid = (
            NineGridDecomposer(
                self.repository,
                text_service,
                image_service,
                self.keyframes,
                aspect_ratio=aspect_ratio,
                default_visual_style=visual_style,
            )
            if text_service is not None
            else None
        )

    @classmethod
    def from_config(
        cls,
        credential_handler: Optional[CredentialHandler] = None,
        db_path: Optional[str] = None,
    ) -> "StageDirector":
        from shotpipe.tools.image_gen import ImageGenerationService
        from shotpipe.tools.text_gen import TextGenerationService
        from shotpipe.tools.video_gen import VideoGenerationService

        return cls(
            image_service=ImageGenerationService(),
            video_service=VideoGenerationService(),
            text_service=TextGenerationService(),
            storage=ProjectStorageService.open(db_path or config.get("project_db_path")),
            credential_handler=credential_handler,
        )

    # --- error boundary ---

    def _failure(self, exc: BaseException) -> ToolResponse:
        if isinstance(exc, AuthorizationError):
            if self.credential_handler is not None and self.credential_handler(exc):
                return ToolResponse(success=False, aborted=True, error_kind=ErrorKind.AUTHORIZATION.value)
            return ToolResponse(success=False, message=describe_error(exc), error_kind=ErrorKind.AUTHORIZATION.value)
        if isinstance(exc, BatchAbortedError):
            return ToolResponse(
                success=False,
                message=describe_error(exc),
                error_kind=exc.kind.value,
                content={"completed": exc.completed, "total": exc.total},
            )
        if isinstance(exc, PipelineError):
            return ToolResponse(success=False, message=describe_error(exc), error_kind=exc.kind.value)
        if isinstance(exc, ValueError):
            return ToolResponse(success=False, message=str(exc), error_kind=ErrorKind.VALIDATION.value)
        logger.exception("Unexpected failure: %s", exc)
        return ToolResponse(success=False, message=describe_error(exc), error_kind=ErrorKind.OTHER.value)

    def _call(self, fn: Callable[[], Any], message: str) -> ToolResponse:
        try:
            result = fn()
        except Exception as e:
            return self._failure(e)
        return ToolResponse(success=True, message=message, content=_dump(result))

    async def _acall(self, fn: Callable[[], Awaitable[Any]], message: str) -> ToolResponse:
        try:
            result = await fn()
        except Exception as e:
            return self._failure(e)
        return ToolResponse(success=True, message=message, content=_dump(result))

    # --- projects ---

    def import_project(self, snapshot: Union[Project, Dict[str, Any]]) -> ToolResponse:
        def run():
            if isinstance(snapshot, Project):
                project = snapshot
            else:
                project = Project.model_validate(migrate_snapshot(snapshot))
            # Persisted by the repository listener when storage is attached.
            self.repository.put(project)
            return project

        return self._call(run, "Project loaded.")

    def open_project(self, project_id: str) -> ToolResponse:
        def run():
            if self.repository.find(project_id) is None:
                project = self.storage.load(project_id) if self.storage is not None else None
                if project is None:
                    raise PipelineValidationError(f"Project {project_id} not found.")
                self.repository.put(project)
            return self.repository.get(project_id)

        return self._call(run, "Project opened.")

    def get_project(self, project_id: str) -> ToolResponse:
        return self._call(lambda: self.repository.get(project_id), "")

    def status(self, project_id: str) -> ToolResponse:
        return self._call(lambda: editing.status_projection(self.repository, project_id), "")

    # --- keyframes ---

    async def generate_keyframe(self, project_id: str, shot_id: str, role: Union[FrameRole, str]) -> ToolResponse:
        return await self._acall(
            lambda: self.keyframes.generate(project_id, shot_id, FrameRole(role)), "Keyframe generated."
        )

    def upload_keyframe(self, project_id: str, shot_id: str, role: Union[FrameRole, str], data: bytes) -> ToolResponse:
        return self._call(lambda: self.keyframes.upload(project_id, shot_id, FrameRole(role), data), "Image uploaded.")

    def edit_keyframe_prompt(self, project_id: str, shot_id: str, keyframe_id: str, text: str) -> ToolResponse:
        return self._call(lambda: self.keyframes.edit_prompt(project_id, shot_id, keyframe_id, text), "Prompt saved.")

    def copy_previous_end_frame(self, project_id: str, shot_id: str) -> ToolResponse:
        def run():
            index = self.repository.get(project_id).shot_index(shot_id)
            if index < 0:
                raise PipelineValidationError(f"Shot {shot_id} not found.")
            return copy_previous_end_frame(self.repository, project_id, index)

        return self._call(run, "Copied the previous shot's end frame.")

    # --- video ---

    async def generate_video(self, project_id: str, shot_id: str) -> ToolResponse:
        return await self._acall(lambda: self.videos.generate(project_id, shot_id), "Video generated.")

    def edit_video_prompt(self, project_id: str, shot_id: str, text: str) -> ToolResponse:
        return self._call(lambda: self.videos.edit_prompt(project_id, shot_id, text), "Video prompt saved.")

    def set_video_model(self, project_id: str, shot_id: str, model: Union[VideoModel, str]) -> ToolResponse:
        return self._call(lambda: self.videos.set_model(project_id, shot_id, VideoModel(model)), "Video model updated.")

    # --- batch ---

    async def batch_generate(
        self,
        project_id: str,
        mode: Union[BatchMode, str] = "auto",
        on_progress: Optional[ProgressCallback] = None,
    ) -> ToolResponse:
        try:
            resolved = auto_mode(self.repository.get(project_id)) if mode == "auto" else BatchMode(mode)
            with log_context(project_id=project_id):
                report = await self.batch.run(project_id, resolved, on_progress)
        except Exception as e:
            return self._failure(e)
        content = {
            "mode": resolved.value,
            "total": report.total,
            "succeeded": report.succeeded,
            "failed": report.failed,
            "failures": report.failures,
        }
        if report.aborted:
            return ToolResponse(success=False, aborted=True, error_kind=ErrorKind.AUTHORIZATION.value, content=content)
        message = f"Generated {report.succeeded}/{report.total} start frame(s)."
        if report.failed:
            message += f" {report.failed} failed."
        return ToolResponse(success=True, message=message, content=content)

    # --- nine-grid ---

    def _require_nine_grid(self) -> NineGridDecomposer:
        if self.nine_grid is None:
            raise PipelineValidationError("Nine-grid planning needs a text model; none is configured.")
        return self.nine_grid

    async def generate_nine_grid(self, project_id: str, shot_id: str) -> ToolResponse:
        return await self._acall(lambda: self._require_nine_grid().generate(project_id, shot_id), "Nine-grid ready.")

    async def regenerate_nine_grid(self, project_id: str, shot_id: str) -> ToolResponse:
        return await self._acall(lambda: self._require_nine_grid().regenerate(project_id, shot_id), "Nine-grid ready.")

    async def select_nine_grid_panel(
        self,
        project_id: str,
        shot_id: str,
        panel_index: int,
        role: Union[FrameRole, str] = FrameRole.START,
    ) -> ToolResponse:
        return await self._acall(
            lambda: self._require_nine_grid().select_panel(project_id, shot_id, panel_index, FrameRole(role)),
            f"Panel {panel_index + 1} adopted.",
        )

    async def use_nine_grid_image(
        self,
        project_id: str,
        shot_id: str,
        role: Union[FrameRole, str] = FrameRole.START,
    ) -> ToolResponse:
        return await self._acall(
            lambda: self._require_nine_grid().use_whole_image(project_id, shot_id, FrameRole(role)),
            "Nine-grid image adopted.",
        )

    # --- shot editing ---

    def edit_action_summary(self, project_id: str, shot_id: str, text: str) -> ToolResponse:
        return self._call(lambda: editing.edit_action_summary(self.repository, project_id, shot_id, text), "Saved.")

    def set_character_variation(
        self, project_id: str, shot_id: str, character_id: str, variation_id: Optional[str]
    ) -> ToolResponse:
        return self._call(
            lambda: editing.set_character_variation(self.repository, project_id, shot_id, character_id, variation_id),
            "Variation updated.",
        )

    def add_character(self, project_id: str, shot_id: str, character_id: str) -> ToolResponse:
        return self._call(
            lambda: editing.add_character(self.repository, project_id, shot_id, character_id), "Character added."
        )

    def remove_character(self, project_id: str, shot_id: str, character_id: str) -> ToolResponse:
        return self._call(
            lambda: editing.remove_character(self.repository, project_id, shot_id, character_id), "Character removed."
        )

    def set_scene_reference_image(self, project_id: str, scene_id: str, image_url: Optional[str]) -> ToolResponse:
        return self._call(
            lambda: editing.set_scene_reference_image(self.repository, project_id, scene_id, image_url),
            "Scene reference updated.",
        )
