"""
Composition guidance per camera movement.

Each known movement maps to a pair of complementary instructions: how the
first frame should be composed so the movement has somewhere to go, and how
the last frame looks once the movement has happened.
"""

from __future__ import annotations

from typing import Dict, Optional, Tuple

from .models import CameraMovement, FrameRole

GENERIC_GUIDE: Tuple[str, str] = (
    "Composition: Initial frame composition suited for the camera movement.",
    "Composition: Final frame composition showing the result of camera movement.",
)

CAMERA_GUIDES: Dict[CameraMovement, Tuple[str, str]] = {
    CameraMovement.HORIZONTAL_LEFT: (
        "Composition: Subject positioned on the right side of frame, with space on the left for movement.",
        "Composition: Subject moved to left side of frame, showing the journey from right to left.",
    ),
    CameraMovement.HORIZONTAL_RIGHT: (
        "Composition: Subject positioned on the left side of frame, with space on the right for movement.",
        "Composition: Subject moved to right side of frame, showing the journey from left to right.",
    ),
    CameraMovement.PAN_LEFT: (
        "Composition: Frame focused on right portion of scene, anticipating leftward pan.",
        "Composition: Frame reveals left portion of scene, completing the pan movement.",
    ),
    CameraMovement.PAN_RIGHT: (
        "Composition: Frame focused on left portion of scene, anticipating rightward pan.",
        "Composition: Frame reveals right portion of scene, completing the pan movement.",
    ),
    CameraMovement.ZOOM_IN: (
        "Composition: Wide establishing shot showing full scene context, subject smaller in frame.",
        "Composition: Tight close-up on subject, filling frame with detail and intimacy.",
    ),
    CameraMovement.ZOOM_OUT: (
        "Composition: Close-up on subject, emphasizing details and emotion.",
        "Composition: Wide pullback revealing surrounding environment and context.",
    ),
    CameraMovement.DOLLY: (
        "Composition: Initial framing with subject at specific distance and perspective.",
        "Composition: Changed perspective with subject closer/further, revealing depth and space.",
    ),
    CameraMovement.TILT_UP: (
        "Composition: Camera angle pointing downward or level, capturing lower portion of subject.",
        "Composition: Camera tilted upward, revealing height and vertical expanse above.",
    ),
    CameraMovement.TILT_DOWN: (
        "Composition: Camera angle pointing upward or level, emphasizing upper portion.",
        "Composition: Camera tilted downward, revealing lower elements and ground level.",
    ),
    CameraMovement.VERTICAL_UP: (
        "Composition: Lower vertical position, subject at bottom of frame or ground level.",
        "Composition: Elevated position, subject risen vertically showing upward movement.",
    ),
    CameraMovement.VERTICAL_DOWN: (
        "Composition: Elevated vertical position, subject higher in frame.",
        "Composition: Lower position, subject descended showing downward movement.",
    ),
    CameraMovement.TRACKING: (
        "Composition: Subject in frame with forward/lateral space for tracking movement.",
        "Composition: Subject tracked through space, maintaining visual relationship.",
    ),
    CameraMovement.CIRCULAR: (
        "Composition: Subject centered, camera at initial angle of circular path.",
        "Composition: Subject still centered, camera at opposite side revealing new angle.",
    ),
    CameraMovement.CIRCULAR_360: (
        "Composition: Subject centered, camera beginning 360° orbit.",
        "Composition: Subject centered, camera completing full revolution from different angle.",
    ),
    CameraMovement.LOW_ANGLE: (
        "Composition: Low camera angle looking upward, emphasizing height and power.",
        "Composition: Maintained low angle, subject towering with dramatic perspective.",
    ),
    CameraMovement.HIGH_ANGLE: (
        "Composition: High camera angle looking downward, creating overview perspective.",
        "Composition: Maintained high angle, emphasizing scale and spatial relationships.",
    ),
    CameraMovement.BIRDS_EYE: (
        "Composition: Directly overhead view, showing layout and patterns from above.",
        "Composition: Continued overhead perspective, revealing changed spatial arrangement.",
    ),
    CameraMovement.POV: (
        "Composition: First-person perspective from character's viewpoint.",
        "Composition: Maintained POV, showing what character sees after movement/action.",
    ),
    CameraMovement.OVER_THE_SHOULDER: (
        "Composition: Frame includes foreground character's shoulder, looking at subject.",
        "Composition: Maintained over-shoulder framing, possibly with shifted focus or angle.",
    ),
    CameraMovement.HANDHELD: (
        "Composition: Dynamic handheld framing with natural movement and energy.",
        "Composition: Continued handheld aesthetic with organic repositioning.",
    ),
    CameraMovement.STATIC: (
        "Composition: Fixed camera position, stable framing throughout.",
        "Composition: Same camera position, only subject movement within frame.",
    ),
    CameraMovement.ROTATING: (
        "Composition: Subject in frame, camera beginning rotational movement.",
        "Composition: Subject with changed orientation due to camera rotation.",
    ),
    CameraMovement.SLOW_MOTION: (
        "Composition: Action captured at beginning of slow-motion sequence.",
        "Composition: Action progressed, emphasizing graceful movement detail.",
    ),
    CameraMovement.PARALLEL_TRACKING: (
        "Composition: Subject with camera tracking parallel alongside.",
        "Composition: Maintained parallel relationship, subject moved through space.",
    ),
    CameraMovement.DIAGONAL_TRACKING: (
        "Composition: Subject with camera on diagonal tracking path.",
        "Composition: Diagonal perspective maintained, dynamic spatial progression.",
    ),
    CameraMovement.CANTED: (
        "Composition: Tilted horizon line creating dutch angle, dynamic unease.",
        "Composition: Maintained or adjusted dutch angle, emphasizing disorientation.",
    ),
    CameraMovement.DOLLY_ZOOM: (
        "Composition: Initial balanced framing before vertigo effect.",
        "Composition: Distorted perspective with foreground/background relationship altered.",
    ),
}


def match_movement(movement: Optional[str]) -> Optional[CameraMovement]:
    """Resolve free-text movement to a known CameraMovement, or None."""
    text = (movement or "").strip().lower()
    if not text:
        return None
    try:
        return CameraMovement(text)
    except ValueError:
        pass
    # Longest key first so "360-degree circular shot" beats "circular shot".
    contained = [m for m in CAMERA_GUIDES if m.value in text]
    if contained:
        return max(contained, key=lambda m: len(m.value))
    # Abbreviations such as "zoom in" or "dolly"; a bare "shot" says nothing.
    stem = text[:-len(" shot")] if text.endswith(" shot") else text
    if not stem or stem == "shot":
        return None
    return next((m for m in CAMERA_GUIDES if stem in m.value), None)


def guide(movement: Optional[str], frame_role: FrameRole) -> str:
    known = match_movement(movement)
    start, end = CAMERA_GUIDES[known] if known is not None else GENERIC_GUIDE
    return start if FrameRole(frame_role) == FrameRole.START else end
