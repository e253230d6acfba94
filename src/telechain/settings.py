"""Runner configuration and logging setup.

Values come from the environment with the ``TELECHAIN_`` prefix:

    TELECHAIN_RUNNER_NAME=shop TELECHAIN_LOG_FORMAT=json python -m mybot
"""

from __future__ import annotations

import logging
import sys
from functools import lru_cache
from typing import Literal

import structlog
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RunnerSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="TELECHAIN_", extra="ignore")

    runner_name: str = Field(default="default", min_length=1, description="Runner name stamped into chat metadata")
    short_message_lifetime: float = Field(default=2.0, ge=0, description="Seconds a short message stays visible")
    parse_mode: str | None = Field(default="MarkdownV2", description="Default parse mode for outgoing messages")
    log_level: str = Field(default="INFO", description="Log level")
    log_format: Literal["console", "json"] = Field(default="console", description="Log output format")


@lru_cache
def get_settings() -> RunnerSettings:
    return RunnerSettings()


def setup_logging(log_level: str = "INFO", log_format: str = "console") -> None:
    """Configure structlog over stdlib logging.

    ``json`` renders one JSON object per line; anything else renders for a
    terminal. Context bound with ``structlog.contextvars`` (``trace_id``,
    ``span_id``) is merged into every entry.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )
    # telegrinder logs every request at debug level
    logging.getLogger("telegrinder").setLevel(logging.WARNING)


__all__ = (
    "RunnerSettings",
    "get_settings",
    "setup_logging",
)
