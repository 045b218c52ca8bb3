from __future__ import annotations

from typing import Any, Dict, List, Optional

from .errors import PipelineValidationError
from .models import FrameRole, Shot
from .repository import ProjectRepository


def edit_action_summary(repository: ProjectRepository, project_id: str, shot_id: str, text: str) -> Shot:
    return repository.update_shot(project_id, shot_id, lambda s: s.model_copy(update={"action_summary": text}))


def set_character_variation(
    repository: ProjectRepository,
    project_id: str,
    shot_id: str,
    character_id: str,
    variation_id: Optional[str],
) -> Shot:
    """Pick the look a character wears in this shot; ``None`` returns to the base look."""
    project = repository.get(project_id)
    char = project.script_data.character(character_id) if project.script_data else None
    if char is None:
        raise PipelineValidationError(f"Character {character_id} not found.")
    if variation_id and not any(str(v.id) == str(variation_id) for v in char.variations):
        raise PipelineValidationError(f"Character {char.name} has no variation {variation_id}.")

    def apply(shot: Shot) -> Shot:
        variations = dict(shot.character_variations)
        if variation_id:
            variations[str(character_id)] = str(variation_id)
        else:
            variations.pop(str(character_id), None)
        return shot.model_copy(update={"character_variations": variations})

    return repository.update_shot(project_id, shot_id, apply)


def add_character(repository: ProjectRepository, project_id: str, shot_id: str, character_id: str) -> Shot:
    project = repository.get(project_id)
    if not project.script_data or project.script_data.character(character_id) is None:
        raise PipelineValidationError(f"Character {character_id} not found.")

    def apply(shot: Shot) -> Shot:
        if any(str(c) == str(character_id) for c in shot.character_ids):
            return shot
        return shot.model_copy(update={"character_ids": [*shot.character_ids, str(character_id)]})

    return repository.update_shot(project_id, shot_id, apply)


def remove_character(repository: ProjectRepository, project_id: str, shot_id: str, character_id: str) -> Shot:
    def apply(shot: Shot) -> Shot:
        variations = {k: v for k, v in shot.character_variations.items() if k != str(character_id)}
        return shot.model_copy(
            update={
                "character_ids": [c for c in shot.character_ids if str(c) != str(character_id)],
                "character_variations": variations,
            }
        )

    return repository.update_shot(project_id, shot_id, apply)


def set_scene_reference_image(
    repository: ProjectRepository,
    project_id: str,
    scene_id: str,
    image_url: Optional[str],
) -> None:
    def apply(project):
        if project.script_data is None or project.script_data.scene(scene_id) is None:
            raise PipelineValidationError(f"Scene {scene_id} not found.")
        project.script_data.scene(scene_id).reference_image = image_url
        return project

    repository.update_project(project_id, apply)


def status_projection(repository: ProjectRepository, project_id: str) -> List[Dict[str, Any]]:
    """Read-only per-shot view of every generation slot."""
    project = repository.get(project_id)
    rows = []
    for index, shot in enumerate(project.shots):
        start = shot.keyframe(FrameRole.START)
        end = shot.keyframe(FrameRole.END)
        rows.append(
            {
                "index": index,
                "shotId": shot.id,
                "actionSummary": shot.action_summary,
                "start": start.status.value if start else None,
                "end": end.status.value if end else None,
                "video": shot.interval.status.value if shot.interval else None,
                "nineGrid": shot.nine_grid.status.value if shot.nine_grid else None,
                "videoModel": shot.video_model.value if shot.video_model else None,
            }
        )
    return rows
