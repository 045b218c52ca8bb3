import json
import re
from typing import Any, Dict, Optional

import openai
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from shotpipe.config.config import config
from shotpipe.pipeline.errors import (
    AuthorizationError,
    ContentRejectedError,
    GenerationError,
    ServiceOverloadedError,
)
from shotpipe.tools.base import setup_logger

logger = setup_logger(__name__)

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def _parse_extra(extra: Optional[str | Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(extra, dict):
        return dict(extra)
    if isinstance(extra, str) and extra.strip():
        try:
            return json.loads(extra)
        except json.JSONDecodeError:
            logger.warning("Ignoring malformed TEXT_MODEL_EXTRA_PARAMS: %s", extra)
    return {}


def clean_json_string(text: str) -> str:
    """Strip markdown code fences a chat model may wrap around JSON."""
    return _FENCE.sub("", (text or "").strip()).strip()


def _create_chat_model(
    model_id: str,
    api_key: Optional[str],
    base_url: Optional[str],
    extra_params: Optional[str | Dict[str, Any]] = None,
    defaults: Optional[Dict[str, Any]] = None,
) -> ChatOpenAI:
    extra = {**(defaults or {}), **_parse_extra(extra_params)}
    # Pull known top-level args to avoid burying them in model_kwargs.
    temperature = extra.pop("temperature", None)
    top_p = extra.pop("top_p", None)
    max_completion_tokens = extra.pop("max_completion_tokens", None)

    return ChatOpenAI(
        model=model_id,
        api_key=api_key or None,
        base_url=base_url or None,
        temperature=temperature,
        top_p=top_p,
        max_completion_tokens=max_completion_tokens,
        model_kwargs=extra or {},
    )


def translate_openai_error(exc: Exception) -> Exception:
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return AuthorizationError(str(exc))
    if isinstance(exc, openai.BadRequestError):
        return ContentRejectedError(str(exc), status_code=400)
    if isinstance(exc, (openai.RateLimitError, openai.InternalServerError, openai.APIConnectionError)):
        return ServiceOverloadedError(str(exc), status_code=getattr(exc, "status_code", None))
    return GenerationError(str(exc), status_code=getattr(exc, "status_code", None))


class TextGenerationService:
    """JSON-producing chat completions used for shot planning."""

    def __init__(self, chat_model: Optional[Any] = None):
        if chat_model is None:
            chat_model = _create_chat_model(
                model_id=config.get("text_model_id", "gpt-5.1"),
                api_key=config.get("text_model_api_key"),
                base_url=config.get("text_model_base_url"),
                extra_params=config.get("text_model_extra_params"),
                defaults=config.get("services", {}).get("text_gen", {}),
            )
        self.chat_model = chat_model

    async def complete_json(self, system: str, user: str) -> str:
        messages = [SystemMessage(content=system), HumanMessage(content=user)]
        try:
            reply = await self.chat_model.bind(response_format={"type": "json_object"}).ainvoke(messages)
        except openai.OpenAIError as e:
            raise translate_openai_error(e) from e
        content = reply.content if hasattr(reply, "content") else reply
        if isinstance(content, list):
            content = "".join(part.get("text", "") if isinstance(part, dict) else str(part) for part in content)
        return clean_json_string(str(content))
