"""
Prompt assembly for keyframes, videos and the nine-grid storyboard.

Keyframe prompts are layered: narrative text first, then the style section
(which starts with VISUAL_STYLE_MARKER), camera guidance and a fixed block of
technical requirements. Everything from the marker onwards is derived, so
``extract_base_prompt`` can always recover the narrative part of a prompt that
was assembled earlier.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple

from .camera_guides import guide
from .models import (
    DEFAULT_LANGUAGE,
    ArtDirection,
    FrameRole,
    NineGridPanel,
    ScriptData,
    Shot,
    VideoModel,
    VisualStyle,
)

VISUAL_STYLE_MARKER = "\n\nVisual Style:"

STYLE_PHRASES: Dict[VisualStyle, str] = {
    VisualStyle.LIVE_ACTION: "photorealistic, cinematic film quality, real human actors, professional cinematography, natural lighting, 8K resolution",
    VisualStyle.ANIME: "Japanese anime style, cel-shaded, vibrant colors, expressive eyes, dynamic poses, Studio Ghibli/Makoto Shinkai quality",
    VisualStyle.ANIMATION_2D: "classic 2D animation, hand-drawn style, Disney/Pixar quality, smooth lines, expressive characters, painterly backgrounds",
    VisualStyle.ANIMATION_3D: "high-quality 3D CGI animation, Pixar/DreamWorks style, subsurface scattering, detailed textures, stylized characters",
    VisualStyle.CYBERPUNK: "cyberpunk aesthetic, neon-lit, rain-soaked streets, holographic displays, high-tech low-life, Blade Runner style",
    VisualStyle.OIL_PAINTING: "oil painting style, visible brushstrokes, rich textures, classical art composition, museum quality fine art",
}

VISUAL_REQUIREMENTS = (
    "Visual Requirements: High definition, cinematic composition, 16:9 widescreen format. "
    "Focus on lighting hierarchy, color saturation, and depth of field effects. "
    "Ensure the subject is clear and the background transitions naturally."
)

_CHINESE_NAMES = {DEFAULT_LANGUAGE, "Chinese"}


def is_default_language(language: Optional[str]) -> bool:
    return (language or DEFAULT_LANGUAGE) in _CHINESE_NAMES


def style_phrase(visual_style: str) -> str:
    try:
        return STYLE_PHRASES[VisualStyle(visual_style)]
    except ValueError:
        return visual_style


def build_keyframe_prompt(
    base_prompt: str,
    visual_style: str,
    camera_movement: str,
    frame_role: FrameRole,
    art_direction: Optional[ArtDirection] = None,
) -> str:
    role = FrameRole(frame_role)
    label = "Initial" if role == FrameRole.START else "Final"
    sections = [base_prompt, f"{VISUAL_STYLE_MARKER.lstrip()} {style_phrase(visual_style)}"]
    if art_direction is not None and art_direction.consistency_anchors.strip():
        sections.append(f"Art Direction: {art_direction.consistency_anchors.strip()}")
    sections.append(f"Camera Movement: {camera_movement} ({label} frame)\n{guide(camera_movement, role)}")
    sections.append(VISUAL_REQUIREMENTS)
    return "\n\n".join(sections)


def extract_base_prompt(full_prompt: Optional[str], fallback: str) -> str:
    """Strip the derived layers from an assembled keyframe prompt."""
    text = full_prompt or ""
    idx = text.find(VISUAL_STYLE_MARKER)
    if idx >= 0:
        text = text[:idx]
    return text or fallback


# --- video prompts ---

SORA_TRANSITION_TEMPLATES = {
    "chinese": """从第一张图片（起始帧）到第二张图片（结束帧）生成平滑过渡的视频。

动作描述：{action_summary}

技术要求：
- 关键：视频必须从第一张图片的精确构图开始，逐渐过渡到第二张图片的精确构图结束
- 画面比例：16:9 宽屏横向格式
- 镜头运动：{camera_movement}
- 过渡：确保起始帧和结束帧之间自然流畅的运动，避免跳跃或不连续
- 视觉风格：电影质感，全程保持一致的光照和色调
- 细节：保持两帧之间角色和场景的连续性和一致性
- 语言：配音和字幕使用中文""",
    "other": """Generate a smooth transition video from the first image (start frame) to the second image (end frame).

Action Description: {action_summary}

Technical Requirements:
- CRITICAL: The video MUST begin with the exact composition of the first image and gradually transition to end with the exact composition of the second image
- Aspect Ratio: 16:9 widescreen landscape format
- Camera Movement: {camera_movement}
- Transition: Ensure natural and fluid motion between start and end frames, avoid jumps or discontinuities
- Visual Style: Cinematic quality with consistent lighting and color tone throughout
- Details: Maintain character and scene continuity and consistency between both frames
- Language: Use {language} for voiceover and subtitles""",
}

VEO_TEMPLATES = {
    "chinese": "{action_summary}\n\n镜头运动：{camera_movement}\n配音语言：使用中文配音",
    "other": "{action_summary}\n\nCamera Movement: {camera_movement}\nVoiceover Language: Use {language} for voiceover",
}

SORA_NINE_GRID_TEMPLATES = {
    "chinese": """提供的参考图片是一张3x3九宫格分镜板，仅作为镜头规划参考，请勿在视频中展示该分镜板图片本身。
视频必须直接从面板1的镜头画面开始，然后按照从左到右、从上到下的顺序（面板1→9）依次切换镜头视角，生成一段连贯的视频。

动作描述：{action_summary}

九宫格各面板镜头规划：
{panel_descriptions}

技术要求：
- 最关键：视频的第一帧就必须是面板1所描述的镜头画面（全屏呈现），绝对不要展示九宫格分镜板原图
- 按面板1→9的顺序依次切换不同的镜头视角，形成流畅的蒙太奇剪辑效果
- 镜头切换：每个面板视角停留约{seconds_per_panel}秒
- 整体镜头运动：{camera_movement}
- 角色一致性：全程保持角色外观（面部、发型、服装）完全一致
- 视觉风格：电影质感，全程保持一致的光照和色调
- 语言：配音和字幕使用中文""",
    "other": """The provided reference image is a 3x3 storyboard grid containing 9 different camera angles of the same scene. It is ONLY for shot planning reference; do NOT display the storyboard grid image itself in the video.
The video MUST begin directly with the full-screen shot described in Panel 1, then transition through each panel's camera angle in order (Panel 1 through 9, left to right, top to bottom).

Action Description: {action_summary}

Storyboard Panel Breakdown:
{panel_descriptions}

Technical Requirements:
- MOST CRITICAL: The very first frame of the video MUST be the full-screen shot described in Panel 1. NEVER show the nine-grid storyboard image at any point in the video
- Transition through the camera angles of panels 1 to 9 sequentially, creating a smooth montage-style edit
- Shot Pacing: Each panel's angle should last approximately {seconds_per_panel} seconds
- Overall Camera Movement: {camera_movement}
- Character Consistency: Maintain identical character appearance (face, hair, clothing) throughout
- Visual Style: Cinematic quality with consistent lighting and color tone throughout
- Language: Use {language} for voiceover and subtitles""",
}

VEO_NINE_GRID_TEMPLATES = {
    "chinese": """参考图片描述了同一场景的9个不同镜头视角（3x3九宫格分镜板），仅作为镜头规划参考，请勿在视频中展示分镜板图片本身。

动作描述：{action_summary}

九宫格各面板镜头规划：
{panel_descriptions}

镜头切换：每个面板视角停留约{seconds_per_panel}秒
整体镜头运动：{camera_movement}
配音语言：使用中文配音""",
    "other": """The reference image depicts 9 different camera angles of the same scene (3x3 storyboard grid). It is ONLY for shot planning reference; do NOT display the storyboard grid in the video.

Action Description: {action_summary}

Storyboard Panel Breakdown:
{panel_descriptions}

Shot Pacing: each panel's angle lasts approximately {seconds_per_panel} seconds
Overall Camera Movement: {camera_movement}
Voiceover Language: Use {language} for voiceover""",
}


def _template_family(video_model: VideoModel, sora: Dict[str, str], veo: Dict[str, str]) -> Dict[str, str]:
    model = VideoModel(video_model)
    if model == VideoModel.SORA_2:
        return sora
    if model == VideoModel.VEO_FAST_FL:
        return veo
    raise ValueError(f"no prompt template for video model {model}")


def build_video_prompt(action_summary: str, camera_movement: str, video_model: VideoModel, language: str) -> str:
    family = _template_family(video_model, SORA_TRANSITION_TEMPLATES, VEO_TEMPLATES)
    template = family["chinese"] if is_default_language(language) else family["other"]
    return template.format(
        action_summary=action_summary,
        camera_movement=camera_movement,
        language=language,
    )


def format_panel_descriptions(panels: Sequence[NineGridPanel]) -> str:
    return "\n".join(
        f"Panel {p.index + 1} [{p.shot_size} / {p.camera_angle}]: {p.description}" for p in panels
    )


def build_nine_grid_video_prompt(
    action_summary: str,
    camera_movement: str,
    video_model: VideoModel,
    language: str,
    panels: Sequence[NineGridPanel],
    duration: float,
) -> str:
    family = _template_family(video_model, SORA_NINE_GRID_TEMPLATES, VEO_NINE_GRID_TEMPLATES)
    template = family["chinese"] if is_default_language(language) else family["other"]
    seconds_per_panel = round(duration / 9, 1) if panels else duration
    return template.format(
        action_summary=action_summary,
        camera_movement=camera_movement,
        language=language,
        panel_descriptions=format_panel_descriptions(panels),
        seconds_per_panel=seconds_per_panel,
    )


# --- nine-grid ---

GRID_POSITION_LABELS = [
    "Top-Left", "Top-Center", "Top-Right",
    "Middle-Left", "Center", "Middle-Right",
    "Bottom-Left", "Bottom-Center", "Bottom-Right",
]

# Fallbacks for panels the planner leaves incomplete, by grid position.
DEFAULT_SHOT_SIZES = [
    "extreme wide", "wide", "medium wide",
    "medium", "medium close-up", "close-up",
    "close-up", "big close-up", "extreme close-up",
]
DEFAULT_CAMERA_ANGLES = [
    "high angle", "eye level", "low angle",
    "side", "front", "back",
    "dutch angle", "bird's eye", "low angle",
]

PANEL_PLAN_SYSTEM = (
    "You are a professional storyboard artist and director of photography. "
    "Break a single shot down into 9 distinct camera viewpoints for a 3x3 storyboard preview. "
    "Every viewpoint shows the same moment of the same scene with a different combination of "
    "shot size and camera angle, covering the range from wide establishing shots to extreme "
    "close-ups and from high to low angles."
)

PANEL_PLAN_USER = """Break the following shot into 9 different camera viewpoints for a single 3x3 storyboard image.

[Action] {action_summary}
[Original camera movement] {camera_movement}
[Scene] location: {location}, time: {time}, atmosphere: {atmosphere}
[Characters] {characters}
[Visual style] {visual_style}

Requirements:
1. The 9 viewpoints must use different shot size / camera angle combinations without repeats.
2. Cover an establishing view (wide/full), character interaction (medium), emotion (close-up) and atmospheric detail.
3. Every description must state concrete frame content: character positions, action, expression and environment details.
4. Write each description in English; scene and character names may stay in their original language.

Return ONLY JSON in exactly this shape:
{{
  "panels": [
    {{"index": 0, "shotSize": "extreme wide", "cameraAngle": "high angle", "description": "Establishing aerial shot showing ..."}},
    {{"index": 1, "shotSize": "medium", "cameraAngle": "eye level", "description": "Medium shot at eye level ..."}}
  ]
}}

There must be exactly 9 panels (index 0-8), ordered left to right, top to bottom."""

NINE_GRID_IMAGE_PREFIX = """Generate a SINGLE image composed as a cinematic storyboard with a 3x3 grid layout (9 equal panels).
The image shows the SAME scene from 9 DIFFERENT camera angles and shot sizes.
Each panel is separated by thin white borders.

Visual Style: {visual_style}

Grid Layout (left to right, top to bottom):"""

NINE_GRID_IMAGE_SUFFIX = """CRITICAL REQUIREMENTS:
- The output MUST be a SINGLE image divided into exactly 9 equal rectangular panels in a 3x3 grid layout
- Each panel MUST have a thin white border/separator (2-3px) between panels
- All 9 panels show the SAME scene from DIFFERENT camera angles and shot sizes
- Maintain STRICT character consistency across ALL panels (same face, hair, clothing, body proportions)
- Maintain consistent lighting, color palette, and atmosphere across all panels
- Each panel should be a complete, well-composed frame suitable for use as a keyframe"""


def build_panel_plan_messages(shot: Shot, script_data: Optional[ScriptData], visual_style: str) -> Tuple[str, str]:
    scene = script_data.scene(shot.scene_id) if script_data else None
    names: List[str] = []
    if script_data:
        for char_id in shot.character_ids:
            char = script_data.character(char_id)
            if char:
                names.append(char.name)
    user = PANEL_PLAN_USER.format(
        action_summary=shot.action_summary,
        camera_movement=shot.camera_movement,
        location=scene.location if scene else "unknown",
        time=scene.time if scene else "unknown",
        atmosphere=scene.atmosphere if scene else "unknown",
        characters=", ".join(names) or "none",
        visual_style=f"{visual_style} ({style_phrase(visual_style)})",
    )
    return PANEL_PLAN_SYSTEM, user


def build_nine_grid_image_prompt(panels: Sequence[NineGridPanel], visual_style: str) -> str:
    lines = [NINE_GRID_IMAGE_PREFIX.format(visual_style=style_phrase(visual_style))]
    for panel in sorted(panels, key=lambda p: p.index):
        lines.append(
            f"Panel {panel.index + 1} ({GRID_POSITION_LABELS[panel.index]}): "
            f"[{panel.shot_size} / {panel.camera_angle}] - {panel.description}"
        )
    lines.append("")
    lines.append(NINE_GRID_IMAGE_SUFFIX)
    return "\n".join(lines)
