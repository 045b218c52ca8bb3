from __future__ import annotations

import time
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


DEFAULT_LANGUAGE = "中文"


class FrameRole(str, Enum):
    START = "start"
    END = "end"


class GenerationStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


class VisualStyle(str, Enum):
    LIVE_ACTION = "live-action"
    ANIME = "anime"
    ANIMATION_2D = "2d-animation"
    ANIMATION_3D = "3d-animation"
    CYBERPUNK = "cyberpunk"
    OIL_PAINTING = "oil-painting"


class CameraMovement(str, Enum):
    HORIZONTAL_LEFT = "horizontal left shot"
    HORIZONTAL_RIGHT = "horizontal right shot"
    PAN_LEFT = "pan left shot"
    PAN_RIGHT = "pan right shot"
    ZOOM_IN = "zoom in shot"
    ZOOM_OUT = "zoom out shot"
    DOLLY = "dolly shot"
    TILT_UP = "tilt up shot"
    TILT_DOWN = "tilt down shot"
    VERTICAL_UP = "vertical up shot"
    VERTICAL_DOWN = "vertical down shot"
    TRACKING = "tracking shot"
    CIRCULAR = "circular shot"
    CIRCULAR_360 = "360-degree circular shot"
    LOW_ANGLE = "low angle shot"
    HIGH_ANGLE = "high angle shot"
    BIRDS_EYE = "bird's eye view shot"
    POV = "pov shot"
    OVER_THE_SHOULDER = "over the shoulder shot"
    HANDHELD = "handheld shot"
    STATIC = "static shot"
    ROTATING = "rotating shot"
    SLOW_MOTION = "slow motion shot"
    PARALLEL_TRACKING = "parallel tracking shot"
    DIAGONAL_TRACKING = "diagonal tracking shot"
    CANTED = "canted shot"
    DOLLY_ZOOM = "cinematic dolly zoom"


class VideoModel(str, Enum):
    SORA_2 = "sora-2"
    VEO_FAST_FL = "veo_3_1_i2v_s_fast_fl_landscape"


class VideoRequestMode(str, Enum):
    SINGLE_IMAGE = "single_image"
    DUAL_IMAGE = "dual_image"


class BatchMode(str, Enum):
    FILL_MISSING = "fill_missing"
    REGENERATE_ALL = "regenerate_all"


class RenderLogType(str, Enum):
    KEYFRAME = "keyframe"
    VIDEO = "video"
    NINE_GRID = "nine_grid"


class RenderLogStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


def now_ms() -> int:
    return int(time.time() * 1000)


def keyframe_id(shot_id: str, role: FrameRole) -> str:
    return f"kf-{shot_id}-{role.value}-{now_ms()}"


def interval_id(shot_id: str) -> str:
    return f"int-{shot_id}-{now_ms()}"


class SnapshotModel(BaseModel):
    """Base for persisted entities: camelCase on the wire, snake_case in code."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Keyframe(SnapshotModel):
    id: str
    type: FrameRole
    visual_prompt: str = ""
    image_url: Optional[str] = None
    status: GenerationStatus = GenerationStatus.PENDING

    @model_validator(mode="after")
    def _image_iff_completed(self) -> "Keyframe":
        has_image = bool(self.image_url)
        if has_image != (self.status == GenerationStatus.COMPLETED):
            raise ValueError(
                f"keyframe {self.id}: image_url must be set exactly when status is completed (status={self.status.value})"
            )
        return self

    @property
    def is_completed(self) -> bool:
        return self.status == GenerationStatus.COMPLETED


class Interval(SnapshotModel):
    id: str
    start_keyframe_id: str
    end_keyframe_id: Optional[str] = None
    duration: float = 10
    motion_strength: float = 5
    video_prompt: str = ""
    video_url: Optional[str] = None
    status: GenerationStatus = GenerationStatus.PENDING


class NineGridPanel(SnapshotModel):
    index: int = Field(ge=0, le=8)
    shot_size: str
    camera_angle: str
    description: str


class NineGridData(SnapshotModel):
    status: GenerationStatus = GenerationStatus.PENDING
    image_url: Optional[str] = None
    panels: List[NineGridPanel] = Field(default_factory=list)

    @model_validator(mode="after")
    def _complete_grid(self) -> "NineGridData":
        if self.status == GenerationStatus.COMPLETED:
            if len(self.panels) != 9 or not self.image_url:
                raise ValueError("a completed nine-grid needs 9 panels and a composite image")
        return self


class CharacterVariation(SnapshotModel):
    id: str
    name: str = ""
    reference_image: Optional[str] = None


class Character(SnapshotModel):
    id: str
    name: str
    gender: str = ""
    age: str = ""
    personality: str = ""
    reference_image: Optional[str] = None
    variations: List[CharacterVariation] = Field(default_factory=list)


class Scene(SnapshotModel):
    id: str
    location: str = ""
    time: str = ""
    atmosphere: str = ""
    reference_image: Optional[str] = None


class ColorPalette(SnapshotModel):
    primary: str = ""
    secondary: str = ""
    accent: str = ""
    skin_tones: str = ""
    saturation: str = ""
    temperature: str = ""


class CharacterDesignRules(SnapshotModel):
    proportions: str = ""
    eye_style: str = ""
    line_weight: str = ""
    detail_level: str = ""


class ArtDirection(SnapshotModel):
    color_palette: ColorPalette = Field(default_factory=ColorPalette)
    character_design_rules: CharacterDesignRules = Field(default_factory=CharacterDesignRules)
    lighting_style: str = ""
    texture_style: str = ""
    mood_keywords: List[str] = Field(default_factory=list)
    consistency_anchors: str = ""


class ScriptData(SnapshotModel):
    title: str = ""
    genre: str = ""
    logline: str = ""
    target_duration: str = ""
    language: Optional[str] = None
    visual_style: Optional[str] = None
    characters: List[Character] = Field(default_factory=list)
    scenes: List[Scene] = Field(default_factory=list)
    art_direction: Optional[ArtDirection] = None

    def scene(self, scene_id: str) -> Optional[Scene]:
        return next((s for s in self.scenes if str(s.id) == str(scene_id)), None)

    def character(self, character_id: str) -> Optional[Character]:
        return next((c for c in self.characters if str(c.id) == str(character_id)), None)


class Shot(SnapshotModel):
    id: str
    scene_id: str = ""
    action_summary: str = ""
    dialogue: Optional[str] = None
    camera_movement: str = ""
    character_ids: List[str] = Field(default_factory=list, alias="characters")
    character_variations: Dict[str, str] = Field(default_factory=dict)
    keyframes: List[Keyframe] = Field(default_factory=list)
    interval: Optional[Interval] = None
    video_model: Optional[VideoModel] = None
    nine_grid: Optional[NineGridData] = None

    def keyframe(self, role: FrameRole) -> Optional[Keyframe]:
        return next((k for k in self.keyframes if k.type == role), None)

    def with_keyframe(self, keyframe: Keyframe) -> "Shot":
        """Return a copy with ``keyframe`` replacing the one of the same type (or appended)."""
        keyframes = [k for k in self.keyframes if k.type != keyframe.type]
        position = next((i for i, k in enumerate(self.keyframes) if k.type == keyframe.type), len(keyframes))
        keyframes.insert(position, keyframe)
        return self.model_copy(update={"keyframes": keyframes})

    def has_completed_start(self) -> bool:
        start = self.keyframe(FrameRole.START)
        return bool(start and start.is_completed)


class RenderLog(SnapshotModel):
    id: str
    type: RenderLogType
    resource_id: str
    resource_name: str = ""
    status: RenderLogStatus
    model: str = ""
    prompt: str = ""
    error: Optional[str] = None
    duration_ms: int = 0
    timestamp: int = Field(default_factory=now_ms)


class Project(SnapshotModel):
    id: str
    title: str = ""
    language: Optional[str] = None
    visual_style: Optional[str] = None
    shots: List[Shot] = Field(default_factory=list)
    script_data: Optional[ScriptData] = None
    render_logs: List[RenderLog] = Field(default_factory=list)
    created_at: int = Field(default_factory=now_ms)
    last_modified: int = Field(default_factory=now_ms)

    def shot_index(self, shot_id: str) -> int:
        for i, shot in enumerate(self.shots):
            if shot.id == shot_id:
                return i
        return -1

    def shot(self, shot_id: str) -> Optional[Shot]:
        idx = self.shot_index(shot_id)
        return self.shots[idx] if idx >= 0 else None

    def effective_visual_style(self, default: str = VisualStyle.LIVE_ACTION.value) -> str:
        return self.visual_style or (self.script_data.visual_style if self.script_data else None) or default

    def effective_language(self, default: str = DEFAULT_LANGUAGE) -> str:
        return self.language or (self.script_data.language if self.script_data else None) or default

    def art_direction(self) -> Optional[ArtDirection]:
        return self.script_data.art_direction if self.script_data else None

    def to_snapshot(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
