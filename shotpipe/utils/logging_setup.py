from __future__ import annotations

import contextvars
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(project_id)s | %(shot_id)s | %(operation)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

LOG_PROJECT_ID: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("log_project_id", default=None)
LOG_SHOT_ID: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("log_shot_id", default=None)
LOG_OPERATION: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("log_operation", default=None)


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.project_id = LOG_PROJECT_ID.get() or "-"
        record.shot_id = LOG_SHOT_ID.get() or "-"
        record.operation = LOG_OPERATION.get() or "-"
        return True


@contextmanager
def log_context(
    project_id: Optional[str] = None,
    shot_id: Optional[str] = None,
    operation: Optional[str] = None,
) -> Iterator[None]:
    """Stamp log records emitted inside the block with pipeline context.

    ``project_id`` and ``shot_id`` name the project and shot being worked on.
    ``operation`` names the generation slot or job, e.g. ``"keyframe:start"``,
    ``"video"``, ``"nine_grid:plan"`` or ``"batch:fill_missing"``. Fields left
    as None keep whatever an enclosing block set.
    """
    tokens = []
    if project_id is not None:
        tokens.append((LOG_PROJECT_ID, LOG_PROJECT_ID.set(project_id)))
    if shot_id is not None:
        tokens.append((LOG_SHOT_ID, LOG_SHOT_ID.set(shot_id)))
    if operation is not None:
        tokens.append((LOG_OPERATION, LOG_OPERATION.set(operation)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def configure_logging(
    log_file: str = "logs/app.log",
    level: int = logging.INFO,
    enable_console: bool = False,
    force: bool = False,
) -> logging.Logger:
    root = logging.getLogger()
    if getattr(root, "_shotpipe_logging_configured", False) and not force:
        return root

    if force:
        for handler in list(root.handlers):
            root.removeHandler(handler)
        for log_filter in list(root.filters):
            root.removeFilter(log_filter)

    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)
    context_filter = ContextFilter()

    # Filters on the root logger do not see records propagated from child
    # loggers, so the context fields are injected per handler.
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(formatter)
    file_handler.addFilter(context_filter)

    root.addHandler(file_handler)
    if enable_console:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        stream_handler.addFilter(context_filter)
        root.addHandler(stream_handler)

    root.addFilter(context_filter)
    root.setLevel(level)
    logging.captureWarnings(True)
    root._shotpipe_logging_configured = True
    return root
