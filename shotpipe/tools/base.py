import logging
from pydantic import BaseModel, ConfigDict
from typing import Optional, List, Any

from shotpipe.config.config import config
from shotpipe.utils.logging_setup import configure_logging


class ToolResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    success: bool
    message: Optional[str] = None
    content: Optional[Any] = None
    error_kind: Optional[str] = None
    aborted: bool = False


def setup_logger(name: str) -> logging.Logger:
    configure_logging(
        log_file=config.get("log_file", "logs/app.log"),
        level=logging.getLevelName(str(config.get("log_level", "INFO")).upper()),
        enable_console=bool(config.get("log_console", False)),
    )
    return logging.getLogger(name)
