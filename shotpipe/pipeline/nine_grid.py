"""
Nine-grid storyboard workflow.

A shot is broken into nine camera viewpoints by the text model, rendered as a
single 3x3 composite image, and then either one panel (cropped out of the
composite) or the whole composite is adopted as a keyframe through the
Keyframe Generator's upload path.
"""

from __future__ import annotations

import asyncio
import json
import time
from io import BytesIO
from typing import Any, Callable, List, Optional, Protocol, Sequence, Tuple

from PIL import Image

from shotpipe.tools.base import setup_logger
from shotpipe.utils.image_codec import load_image_bytes
from shotpipe.utils.logging_setup import log_context

from .errors import GenerationInProgressError, PanelPlanError, PipelineValidationError
from .keyframes import ImageService, KeyframeGenerator
from .models import FrameRole, GenerationStatus, Keyframe, NineGridData, NineGridPanel, RenderLogType
from .prompts import (
    DEFAULT_CAMERA_ANGLES,
    DEFAULT_SHOT_SIZES,
    build_nine_grid_image_prompt,
    build_panel_plan_messages,
)
from .references import resolve_references
from .repository import ProjectRepository

logger = setup_logger(__name__)

NINE_GRID_SLOT = "nine_grid"
PANEL_COUNT = 9


class TextService(Protocol):
    async def complete_json(self, system: str, user: str) -> str:
        ...


def parse_panels(text: str) -> List[NineGridPanel]:
    """Validate a planner reply; anything but nine described panels is a PanelPlanError."""
    try:
        data: Any = json.loads(text)
    except (TypeError, json.JSONDecodeError) as e:
        raise PanelPlanError(f"Planner reply is not JSON: {e}") from e
    raw = data.get("panels") if isinstance(data, dict) else data
    if not isinstance(raw, list):
        raise PanelPlanError("Planner reply has no panel list")
    if len(raw) != PANEL_COUNT:
        raise PanelPlanError(f"Expected {PANEL_COUNT} panels, got {len(raw)}")

    panels: List[NineGridPanel] = []
    for position, item in enumerate(raw):
        if not isinstance(item, dict):
            raise PanelPlanError(f"Panel {position + 1} is not an object")
        description = str(item.get("description") or "").strip()
        if not description:
            raise PanelPlanError(f"Panel {position + 1} has no description")
        panels.append(
            NineGridPanel(
                index=position,
                shot_size=str(item.get("shotSize") or item.get("shot_size") or DEFAULT_SHOT_SIZES[position]),
                camera_angle=str(item.get("cameraAngle") or item.get("camera_angle") or DEFAULT_CAMERA_ANGLES[position]),
                description=description,
            )
        )
    return panels


def panel_rect(index: int, width: int, height: int) -> Tuple[int, int, int, int]:
    """(left, top, right, bottom) of panel ``index``; row-major, thirds of each side."""
    if not 0 <= index < PANEL_COUNT:
        raise ValueError(f"panel index must be 0-8, got {index}")
    row, col = divmod(index, 3)
    return (
        col * width // 3,
        row * height // 3,
        (col + 1) * width // 3,
        (row + 1) * height // 3,
    )


def crop_panel(image_bytes: bytes, index: int) -> bytes:
    with Image.open(BytesIO(image_bytes)) as img:
        panel = img.crop(panel_rect(index, *img.size))
        if panel.mode not in ("RGB", "RGBA"):
            panel = panel.convert("RGB")
        out = BytesIO()
        panel.save(out, format="PNG")
    return out.getvalue()


class NineGridDecomposer:
    def __init__(
        self,
        repository: ProjectRepository,
        text_service: TextService,
        image_service: ImageService,
        keyframes: KeyframeGenerator,
        aspect_ratio: str = "16:9",
        default_visual_style: str = "live-action",
        image_loader: Callable[[str], bytes] = load_image_bytes,
    ):
        self.repository = repository
        self.text_service = text_service
        self.image_service = image_service
        self.keyframes = keyframes
        self.aspect_ratio = aspect_ratio
        self.default_visual_style = default_visual_style
        self.image_loader = image_loader

    # --- generation ---

    async def plan_panels(self, project_id: str, shot_id: str) -> List[NineGridPanel]:
        with log_context(project_id=project_id, shot_id=shot_id, operation="nine_grid:plan"):
            with self.repository.in_flight(project_id, shot_id, NINE_GRID_SLOT):
                return await self._plan(project_id, shot_id)

    async def render_grid(self, project_id: str, shot_id: str) -> NineGridData:
        with log_context(project_id=project_id, shot_id=shot_id, operation="nine_grid:render"):
            with self.repository.in_flight(project_id, shot_id, NINE_GRID_SLOT):
                return await self._render(project_id, shot_id)

    async def generate(self, project_id: str, shot_id: str) -> NineGridData:
        with log_context(project_id=project_id, shot_id=shot_id, operation="nine_grid"):
            with self.repository.in_flight(project_id, shot_id, NINE_GRID_SLOT):
                await self._plan(project_id, shot_id)
                return await self._render(project_id, shot_id)

    async def regenerate(self, project_id: str, shot_id: str) -> NineGridData:
        if self.repository.is_in_flight(project_id, shot_id, NINE_GRID_SLOT):
            raise GenerationInProgressError(shot_id, NINE_GRID_SLOT)
        self._set(project_id, shot_id, None)
        return await self.generate(project_id, shot_id)

    async def _plan(self, project_id: str, shot_id: str) -> List[NineGridPanel]:
        project = self.repository.get(project_id)
        shot = self.repository.get_shot(project_id, shot_id)
        system, user = build_panel_plan_messages(
            shot, project.script_data, project.effective_visual_style(self.default_visual_style)
        )
        self._set(project_id, shot_id, NineGridData(status=GenerationStatus.GENERATING))

        started = time.monotonic()
        try:
            panels = parse_panels(await self.text_service.complete_json(system, user))
        except (Exception, asyncio.CancelledError) as e:
            self._set(project_id, shot_id, NineGridData(status=GenerationStatus.FAILED))
            self.repository.record_render(
                project_id, RenderLogType.NINE_GRID, shot_id, shot.action_summary, "panel-planner", user, started, e
            )
            logger.warning("Panel planning failed: %s", e)
            raise

        self._set(project_id, shot_id, NineGridData(status=GenerationStatus.PENDING, panels=panels))
        logger.info("Planned %d panels", len(panels))
        return panels

    async def _render(self, project_id: str, shot_id: str) -> NineGridData:
        project = self.repository.get(project_id)
        shot = self.repository.get_shot(project_id, shot_id)
        grid = shot.nine_grid
        if grid is None or len(grid.panels) != PANEL_COUNT:
            raise PipelineValidationError("Plan the nine-grid panels first.")

        prompt = build_nine_grid_image_prompt(grid.panels, project.effective_visual_style(self.default_visual_style))
        refs = resolve_references(shot, project.script_data)
        panels = grid.panels
        self._set(project_id, shot_id, NineGridData(status=GenerationStatus.GENERATING, panels=panels))

        model = getattr(self.image_service, "model", "")
        started = time.monotonic()
        try:
            image_url = await self.image_service.generate(prompt, refs, self.aspect_ratio)
        except (Exception, asyncio.CancelledError) as e:
            self._set(project_id, shot_id, NineGridData(status=GenerationStatus.FAILED, panels=panels))
            self.repository.record_render(
                project_id, RenderLogType.NINE_GRID, shot_id, shot.action_summary, model, prompt, started, e
            )
            logger.warning("Nine-grid render failed: %s", e)
            raise

        done = NineGridData(status=GenerationStatus.COMPLETED, image_url=image_url, panels=panels)
        self._set(project_id, shot_id, done)
        self.repository.record_render(
            project_id, RenderLogType.NINE_GRID, shot_id, shot.action_summary, model, prompt, started
        )
        logger.info("Nine-grid composite ready")
        return done

    # --- adoption ---

    async def select_panel(
        self,
        project_id: str,
        shot_id: str,
        panel_index: int,
        role: FrameRole = FrameRole.START,
    ) -> Keyframe:
        grid = self._completed_grid(project_id, shot_id)
        if not 0 <= panel_index < PANEL_COUNT:
            raise PipelineValidationError(f"Panel index must be between 0 and 8, got {panel_index}.")
        data = await asyncio.to_thread(self.image_loader, grid.image_url)
        cropped = crop_panel(data, panel_index)
        with log_context(project_id=project_id, shot_id=shot_id, operation="nine_grid:select"):
            logger.info("Adopting panel %d as %s frame", panel_index + 1, FrameRole(role).value)
        return self.keyframes.upload(project_id, shot_id, role, cropped)

    async def use_whole_image(self, project_id: str, shot_id: str, role: FrameRole = FrameRole.START) -> Keyframe:
        grid = self._completed_grid(project_id, shot_id)
        data = await asyncio.to_thread(self.image_loader, grid.image_url)
        # Keep the composite's URL verbatim so the video prompt can recognise it.
        return self.keyframes.upload(project_id, shot_id, role, data, image_url=grid.image_url)

    def _completed_grid(self, project_id: str, shot_id: str) -> NineGridData:
        grid = self.repository.get_shot(project_id, shot_id).nine_grid
        if grid is None or grid.status != GenerationStatus.COMPLETED:
            raise PipelineValidationError("The nine-grid composite is not ready yet.")
        return grid

    def _set(self, project_id: str, shot_id: str, grid: Optional[NineGridData]) -> None:
        self.repository.update_shot(project_id, shot_id, lambda s: s.model_copy(update={"nine_grid": grid}))


def panel_summary(panels: Sequence[NineGridPanel]) -> List[str]:
    return [f"{p.index + 1}. {p.shot_size} / {p.camera_angle}" for p in panels]
