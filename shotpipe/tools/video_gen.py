import asyncio
from typing import Any, Dict, List, Optional

from shotpipe.config.config import config
from shotpipe.pipeline.errors import GenerationError
from shotpipe.pipeline.models import VideoModel
from shotpipe.tools.base import setup_logger
from shotpipe.utils.generation_client import GenerationGatewayClient, with_retries

logger = setup_logger(__name__)


def build_video_payload(
    prompt: str,
    start_image: str,
    end_image: Optional[str],
    model: str,
    model_settings: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    images: List[str] = [start_image]
    if end_image:
        images.append(end_image)
    payload: Dict[str, Any] = {"model": model, "prompt": prompt, "images": images}
    for key, value in (model_settings or {}).items():
        payload.setdefault(key, value)
    return payload


def extract_video_url(result: Dict[str, Any]) -> str:
    for key in ("video_url", "url", "output_url"):
        if result.get(key):
            return result[key]
    outputs = result.get("outputs") or result.get("data") or []
    if isinstance(outputs, list):
        for item in outputs:
            if isinstance(item, str) and item:
                return item
            if isinstance(item, dict) and item.get("url"):
                return item["url"]
    raise GenerationError(f"Video task finished without a video URL: {result}")


class VideoGenerationService:
    """Start/end-frame conditioned video generation (submit then poll)."""

    def __init__(
        self,
        client: Optional[GenerationGatewayClient] = None,
        settings: Optional[Dict[str, Any]] = None,
    ):
        self.settings = settings if settings is not None else config.get("services", {}).get("video_gen", {})
        self.client = client or GenerationGatewayClient(
            api_key=config.get("api_key", ""),
            base_url=config.get("api_base", ""),
        )

    def generate_sync(
        self,
        prompt: str,
        start_image: str,
        end_image: Optional[str] = None,
        model: str = VideoModel.SORA_2.value,
    ) -> str:
        model = VideoModel(model).value
        payload = build_video_payload(
            prompt, start_image, end_image, model, (self.settings.get("models") or {}).get(model)
        )
        logger.info("Video submit: model=%s dual_image=%s", model, bool(end_image))
        task = with_retries(
            lambda: self.client.submit_video(self.settings.get("submit_endpoint", "/v1/videos"), payload),
            max_retries=int(self.settings.get("max_retries", 2)),
            retry_delay_sec=float(self.settings.get("retry_delay_sec", 2)),
            logger=logger,
        )
        task_id = task.get("id") or task.get("task_id")
        result = self.client.poll_video(
            self.settings.get("poll_endpoint", "/v1/videos/{task_id}"),
            task_id,
            timeout_sec=int(self.settings.get("timeout_sec", 900)),
            poll_interval_sec=float(self.settings.get("poll_interval_sec", 5)),
        )
        video_url = extract_video_url(result)
        logger.info("Video task %s completed", task_id)
        return video_url

    async def generate(
        self,
        prompt: str,
        start_image: str,
        end_image: Optional[str] = None,
        model: str = VideoModel.SORA_2.value,
    ) -> str:
        return await asyncio.to_thread(self.generate_sync, prompt, start_image, end_image, model)
