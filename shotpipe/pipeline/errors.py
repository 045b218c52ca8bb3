from __future__ import annotations

import asyncio
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    CONTENT_REJECTED = "content_rejected"
    OVERLOADED = "overloaded"
    AUTHORIZATION = "authorization"
    PARSE = "parse"
    OTHER = "other"


class PipelineError(Exception):
    kind = ErrorKind.OTHER


class PipelineValidationError(PipelineError):
    """Rejected before any state change (missing start frame, non-image upload, ...)."""

    kind = ErrorKind.VALIDATION


class GenerationInProgressError(PipelineValidationError):
    def __init__(self, shot_id: str, slot: str):
        super().__init__(f"A {slot} generation for shot {shot_id} is already running.")
        self.shot_id = shot_id
        self.slot = slot


class GenerationError(PipelineError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ContentRejectedError(GenerationError):
    kind = ErrorKind.CONTENT_REJECTED


class ServiceOverloadedError(GenerationError):
    kind = ErrorKind.OVERLOADED


class PanelPlanError(GenerationError):
    kind = ErrorKind.PARSE


class AuthorizationError(PipelineError):
    kind = ErrorKind.AUTHORIZATION


class BatchAbortedError(PipelineError):
    kind = ErrorKind.AUTHORIZATION

    def __init__(self, message: str, completed: int, total: int):
        super().__init__(message)
        self.completed = completed
        self.total = total


_MESSAGES = {
    ErrorKind.CONTENT_REJECTED: "The prompt may contain unsafe or disallowed content and was not processed. Edit it and try again.",
    ErrorKind.OVERLOADED: "The generation service is busy right now. Please try again in a moment.",
    ErrorKind.AUTHORIZATION: "The API key was rejected or is missing. Check your credentials.",
    ErrorKind.PARSE: "The shot breakdown could not be understood. Try planning the nine-grid again.",
}


def describe_error(exc: BaseException) -> str:
    """Human-readable message for a failure that reaches the user."""
    if isinstance(exc, asyncio.CancelledError):
        return "Generation was cancelled before it finished."
    kind = getattr(exc, "kind", ErrorKind.OTHER)
    if kind == ErrorKind.VALIDATION:
        return str(exc)
    if kind in _MESSAGES:
        detail = str(exc)
        return f"{_MESSAGES[kind]} ({detail})" if detail else _MESSAGES[kind]
    return f"Generation failed: {exc}"
