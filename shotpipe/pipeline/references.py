from __future__ import annotations

from typing import List, Optional

from .models import ScriptData, Shot


def resolve_references(shot: Shot, script_data: Optional[ScriptData]) -> List[str]:
    """
    Ordered reference images conditioning a generation call for ``shot``.

    The scene image (if any) comes first, followed by one image per character
    in the shot's character order: the selected variation's image when it has
    one, otherwise the character's base image. Characters that are unknown or
    have no image at all are skipped. Duplicates are kept.
    """
    if script_data is None:
        return []

    refs: List[str] = []
    scene = script_data.scene(shot.scene_id)
    if scene is not None and scene.reference_image:
        refs.append(scene.reference_image)

    for char_id in shot.character_ids:
        char = script_data.character(char_id)
        if char is None:
            continue
        image = char.reference_image
        var_id = shot.character_variations.get(str(char_id))
        if var_id:
            variation = next((v for v in char.variations if str(v.id) == str(var_id)), None)
            if variation is not None and variation.reference_image:
                image = variation.reference_image
        if image:
            refs.append(image)
    return refs
