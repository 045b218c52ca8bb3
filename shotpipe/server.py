import asyncio
import json
import os
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from shotpipe.director import StageDirector
from shotpipe.pipeline.batch import BatchProgress
from shotpipe.pipeline.errors import ErrorKind
from shotpipe.tools.base import ToolResponse, setup_logger

logger = setup_logger(__name__)

_STATUS_BY_KIND = {
    ErrorKind.VALIDATION.value: 400,
    ErrorKind.AUTHORIZATION.value: 401,
    ErrorKind.CONTENT_REJECTED.value: 422,
    ErrorKind.PARSE.value: 502,
    ErrorKind.OVERLOADED.value: 503,
    ErrorKind.OTHER.value: 500,
}


class TextBody(BaseModel):
    text: str


class ModelBody(BaseModel):
    model: str


class VariationBody(BaseModel):
    variation_id: Optional[str] = None


class ImageUrlBody(BaseModel):
    image_url: Optional[str] = None


class BatchRequest(BaseModel):
    mode: str = "auto"


class HealthResponse(BaseModel):
    status: str
    timestamp: str


def _respond(resp: ToolResponse) -> JSONResponse:
    status = 200 if resp.success else _STATUS_BY_KIND.get(resp.error_kind or "", 500)
    return JSONResponse(status_code=status, content=resp.model_dump(mode="json"))


def _sse(event: Dict[str, Any]) -> bytes:
    return f"data: {json.dumps(event, ensure_ascii=False)}\n\n".encode("utf-8")


async def batch_events(project_id: str, queue: asyncio.Queue, task: asyncio.Task, batch_tasks: set):
    """Relay queued batch events as SSE frames until the finish event.

    Closing the stream early leaves ``task`` running; it is parked in
    ``batch_tasks`` until it completes.
    """
    try:
        while True:
            event = await queue.get()
            yield _sse(event)
            if event["type"] == "finish":
                break
    except Exception as e:
        logger.error(f"Error in batch stream: {e}")
        yield _sse({"type": "error", "message": str(e)})
    finally:
        if not task.done():
            logger.info(f"Batch stream for {project_id} closed; batch keeps running")
            batch_tasks.add(task)
            task.add_done_callback(batch_tasks.discard)


def create_app(director: StageDirector) -> FastAPI:
    app = FastAPI(title="shotpipe API", version="0.1.0")

    # CORS middleware setting
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.director = director
    batch_tasks: set = set()
    app.state.batch_tasks = batch_tasks

    @app.get("/health")
    async def health():
        return HealthResponse(status="healthy", timestamp=datetime.now().isoformat())

    @app.get("/")
    async def root():
        return {"message": "shotpipe API is running"}

    # --- projects ---

    @app.post("/projects")
    async def import_project(snapshot: Dict[str, Any]):
        return _respond(director.import_project(snapshot))

    @app.get("/projects/{project_id}")
    async def open_project(project_id: str):
        return _respond(director.open_project(project_id))

    @app.get("/projects/{project_id}/status")
    async def project_status(project_id: str):
        return _respond(director.status(project_id))

    # --- keyframes ---

    @app.post("/projects/{project_id}/shots/{shot_id}/keyframes/{role}/generate")
    async def generate_keyframe(project_id: str, shot_id: str, role: str):
        return _respond(await director.generate_keyframe(project_id, shot_id, role))

    @app.post("/projects/{project_id}/shots/{shot_id}/keyframes/{role}/upload")
    async def upload_keyframe(project_id: str, shot_id: str, role: str, request: Request):
        data = await request.body()
        return _respond(director.upload_keyframe(project_id, shot_id, role, data))

    @app.patch("/projects/{project_id}/shots/{shot_id}/keyframes/{keyframe_id}")
    async def edit_keyframe_prompt(project_id: str, shot_id: str, keyframe_id: str, body: TextBody):
        return _respond(director.edit_keyframe_prompt(project_id, shot_id, keyframe_id, body.text))

    @app.post("/projects/{project_id}/shots/{shot_id}/copy-previous-end-frame")
    async def copy_previous(project_id: str, shot_id: str):
        return _respond(director.copy_previous_end_frame(project_id, shot_id))

    # --- video ---

    @app.post("/projects/{project_id}/shots/{shot_id}/video/generate")
    async def generate_video(project_id: str, shot_id: str):
        return _respond(await director.generate_video(project_id, shot_id))

    @app.patch("/projects/{project_id}/shots/{shot_id}/video")
    async def edit_video_prompt(project_id: str, shot_id: str, body: TextBody):
        return _respond(director.edit_video_prompt(project_id, shot_id, body.text))

    @app.put("/projects/{project_id}/shots/{shot_id}/video/model")
    async def set_video_model(project_id: str, shot_id: str, body: ModelBody):
        return _respond(director.set_video_model(project_id, shot_id, body.model))

    # --- batch ---

    @app.post("/projects/{project_id}/batch/stream")
    async def batch_stream(project_id: str, body: BatchRequest):
        """Run a batch and stream progress as server-sent events."""
        logger.info(f"POST /projects/{project_id}/batch/stream - mode: {body.mode}")
        queue: asyncio.Queue = asyncio.Queue()

        def on_progress(progress: BatchProgress) -> None:
            queue.put_nowait({"type": "progress", "current": progress.current, "total": progress.total, "message": progress.message})

        async def run() -> None:
            resp = await director.batch_generate(project_id, body.mode, on_progress)
            queue.put_nowait({"type": "finish", **resp.model_dump(mode="json")})

        return StreamingResponse(
            batch_events(project_id, queue, asyncio.create_task(run()), batch_tasks),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    # --- nine-grid ---

    @app.post("/projects/{project_id}/shots/{shot_id}/nine-grid/generate")
    async def generate_nine_grid(project_id: str, shot_id: str):
        return _respond(await director.generate_nine_grid(project_id, shot_id))

    @app.post("/projects/{project_id}/shots/{shot_id}/nine-grid/regenerate")
    async def regenerate_nine_grid(project_id: str, shot_id: str):
        return _respond(await director.regenerate_nine_grid(project_id, shot_id))

    @app.post("/projects/{project_id}/shots/{shot_id}/nine-grid/panels/{panel_index}/select")
    async def select_panel(project_id: str, shot_id: str, panel_index: int, role: str = "start"):
        return _respond(await director.select_nine_grid_panel(project_id, shot_id, panel_index, role))

    @app.post("/projects/{project_id}/shots/{shot_id}/nine-grid/use-whole-image")
    async def use_whole_image(project_id: str, shot_id: str, role: str = "start"):
        return _respond(await director.use_nine_grid_image(project_id, shot_id, role))

    # --- shot editing ---

    @app.patch("/projects/{project_id}/shots/{shot_id}")
    async def edit_action_summary(project_id: str, shot_id: str, body: TextBody):
        return _respond(director.edit_action_summary(project_id, shot_id, body.text))

    @app.put("/projects/{project_id}/shots/{shot_id}/characters/{character_id}/variation")
    async def set_variation(project_id: str, shot_id: str, character_id: str, body: VariationBody):
        return _respond(director.set_character_variation(project_id, shot_id, character_id, body.variation_id))

    @app.post("/projects/{project_id}/shots/{shot_id}/characters/{character_id}")
    async def add_character(project_id: str, shot_id: str, character_id: str):
        return _respond(director.add_character(project_id, shot_id, character_id))

    @app.delete("/projects/{project_id}/shots/{shot_id}/characters/{character_id}")
    async def remove_character(project_id: str, shot_id: str, character_id: str):
        return _respond(director.remove_character(project_id, shot_id, character_id))

    @app.put("/projects/{project_id}/scenes/{scene_id}/reference-image")
    async def set_scene_image(project_id: str, scene_id: str, body: ImageUrlBody):
        return _respond(director.set_scene_reference_image(project_id, scene_id, body.image_url))

    return app


def main() -> None:
    import uvicorn

    app = create_app(StageDirector.from_config())
    uvicorn.run(app, host=os.environ.get("SHOTPIPE_HOST", "0.0.0.0"), port=int(os.environ.get("SHOTPIPE_PORT", "8000")))


if __name__ == "__main__":
    main()
