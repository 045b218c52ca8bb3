import asyncio
from typing import Any, Dict, List, Optional, Sequence

from shotpipe.config.config import config
from shotpipe.pipeline.errors import GenerationError
from shotpipe.tools.base import setup_logger
from shotpipe.utils.generation_client import GenerationGatewayClient, with_retries
from shotpipe.utils.image_codec import parse_data_url

logger = setup_logger(__name__)

DEFAULT_IMAGE_MODEL = "gemini-3-pro-image-preview"

CONSISTENCY_PREAMBLE = """CRITICAL REQUIREMENTS - CHARACTER CONSISTENCY

Reference Images Information:
- The FIRST image is the Scene/Environment reference.
- Subsequent images are Character references (Base Look or Variation).
- Any remaining images after characters are Prop/Item references (objects that must appear consistently).

Task:
Generate a cinematic shot matching this prompt: "{prompt}".

ABSOLUTE REQUIREMENTS (NON-NEGOTIABLE):
1. Scene Consistency:
   - STRICTLY maintain the visual style, lighting, and environment from the scene reference.

2. Character Consistency - HIGHEST PRIORITY:
   If characters are present in the prompt, they MUST be IDENTICAL to the character reference images:
   - Facial Features: Eyes (color, shape, size), nose structure, mouth shape, facial contours must be EXACTLY the same
   - Hairstyle & Hair Color: Length, color, texture, and style must be PERFECTLY matched
   - Clothing & Outfit: Style, color, material, and accessories must be IDENTICAL
   - Body Type: Height, build, proportions must remain consistent

3. Prop/Item Consistency:
   If prop reference images are provided, the objects in the shot MUST match the reference in shape, color, material and details.

DO NOT create variations or interpretations of the character - STRICT REPLICATION ONLY!"""


def wrap_with_references(prompt: str, reference_count: int) -> str:
    if reference_count == 0:
        return prompt
    return CONSISTENCY_PREAMBLE.format(prompt=prompt)


def build_image_request(
    prompt: str,
    reference_images: Sequence[str],
    aspect_ratio: str = "16:9",
) -> Dict[str, Any]:
    parts: List[Dict[str, Any]] = [{"text": wrap_with_references(prompt, len(reference_images))}]
    for url in reference_images:
        parsed = parse_data_url(url)
        if parsed is None:
            # Only inline images can be forwarded to generateContent.
            logger.debug("Skipping non-inline reference image %s", url[:60])
            continue
        mime_type, data = parsed
        parts.append({"inlineData": {"mimeType": mime_type, "data": data}})

    body: Dict[str, Any] = {
        "contents": [{"role": "user", "parts": parts}],
        "generationConfig": {"responseModalities": ["TEXT", "IMAGE"]},
    }
    if aspect_ratio != "16:9":
        body["generationConfig"]["imageConfig"] = {"aspectRatio": aspect_ratio}
    return body


def extract_image(response: Dict[str, Any]) -> str:
    """First inline image of a generateContent response as a data URL."""
    for candidate in response.get("candidates") or []:
        for part in (candidate.get("content") or {}).get("parts") or []:
            inline = part.get("inlineData") or part.get("inline_data")
            if inline and inline.get("data"):
                mime_type = inline.get("mimeType") or inline.get("mime_type") or "image/png"
                return f"data:{mime_type};base64,{inline['data']}"
    raise GenerationError("Image generation failed (no image data returned)")


class ImageGenerationService:
    """Image generation through the gateway's Gemini-compatible endpoint."""

    def __init__(
        self,
        client: Optional[GenerationGatewayClient] = None,
        settings: Optional[Dict[str, Any]] = None,
    ):
        self.settings = settings if settings is not None else config.get("services", {}).get("image_gen", {})
        self.client = client or GenerationGatewayClient(
            api_key=config.get("api_key", ""),
            base_url=config.get("api_base", ""),
            timeout_sec=int(self.settings.get("timeout_sec", 180)),
        )

    @property
    def model(self) -> str:
        return self.settings.get("model") or DEFAULT_IMAGE_MODEL

    def generate_sync(
        self,
        prompt: str,
        reference_images: Sequence[str] = (),
        aspect_ratio: str = "16:9",
    ) -> str:
        endpoint = self.settings.get("endpoint", "/v1beta/models/{model}:generateContent").format(model=self.model)
        body = build_image_request(prompt, reference_images, aspect_ratio)
        logger.info("Image request: model=%s refs=%d aspect=%s", self.model, len(reference_images), aspect_ratio)
        response = with_retries(
            lambda: self.client.generate_content(endpoint, body),
            max_retries=int(self.settings.get("max_retries", 2)),
            retry_delay_sec=float(self.settings.get("retry_delay_sec", 2)),
            logger=logger,
        )
        return extract_image(response)

    async def generate(
        self,
        prompt: str,
        reference_images: Sequence[str] = (),
        aspect_ratio: str = "16:9",
    ) -> str:
        return await asyncio.to_thread(self.generate_sync, prompt, list(reference_images), aspect_ratio)
