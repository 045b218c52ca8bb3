from __future__ import annotations

from shotpipe.tools.base import setup_logger
from shotpipe.utils.logging_setup import log_context

from .errors import GenerationInProgressError, PipelineValidationError
from .keyframes import keyframe_slot
from .models import FrameRole, GenerationStatus, Keyframe, keyframe_id
from .repository import ProjectRepository

logger = setup_logger(__name__)


def copy_previous_end_frame(repository: ProjectRepository, project_id: str, index: int) -> Keyframe:
    """
    Make shot ``index`` start where shot ``index - 1`` ends.

    The previous shot's completed end keyframe (image and prompt) becomes this
    shot's completed start keyframe. Nothing changes when there is no previous
    shot, its end frame is not ready, or this shot's start frame is being
    generated.
    """
    project = repository.get(project_id)
    if index <= 0 or index >= len(project.shots):
        raise PipelineValidationError("There is no previous shot to continue from.")

    previous = project.shots[index - 1]
    source = previous.keyframe(FrameRole.END)
    if source is None or not source.is_completed:
        raise PipelineValidationError("The previous shot has no completed end frame.")

    shot = project.shots[index]
    slot = keyframe_slot(FrameRole.START)
    if repository.is_in_flight(project_id, shot.id, slot):
        raise GenerationInProgressError(shot.id, slot)
    existing = shot.keyframe(FrameRole.START)
    start = Keyframe(
        id=existing.id if existing else keyframe_id(shot.id, FrameRole.START),
        type=FrameRole.START,
        visual_prompt=source.visual_prompt,
        image_url=source.image_url,
        status=GenerationStatus.COMPLETED,
    )
    repository.update_shot(project_id, shot.id, lambda s: s.with_keyframe(start))
    with log_context(project_id=project_id, shot_id=shot.id, operation="continuity"):
        logger.info("Start frame linked to end frame of shot %s", previous.id)
    return start
