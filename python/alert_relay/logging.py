"""
Structured logging for the alert relay.

Every module logs through ``get_logger``. ``setup_logging`` takes the
``logging`` config section and routes structlog through the stdlib root
logger: stdout always, plus a rotating JSONL file when ``logging.file``
is set. Slack tokens are masked before any renderer sees an event, and
``task_context`` tags the lines of one relay task within one pass.
"""

from __future__ import annotations

import logging
import os
import re
import sys
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from alert_relay.config import LoggingConfig, get_config

if TYPE_CHECKING:
    from structlog.types import Processor

SERVICE_NAME = "alert-relay"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5
MASKED_TOKEN = "xox?-[masked]"

_SLACK_TOKEN = re.compile(r"xox[a-z]-[A-Za-z0-9-]+")


def _add_service(
    _logger: Any, _method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    event_dict.setdefault("pid", os.getpid())
    return event_dict


def _mask_slack_tokens(
    _logger: Any, _method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Mask bot and user tokens that leak into messages or error strings."""
    for key, value in event_dict.items():
        if isinstance(value, str) and "xox" in value:
            event_dict[key] = _SLACK_TOKEN.sub(MASKED_TOKEN, value)
    return event_dict


def _pre_chain() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _add_service,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.format_exc_info,
        _mask_slack_tokens,
    ]


def _formatter(renderer: Processor) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_pre_chain(),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )


def setup_logging(config: LoggingConfig | None = None, enable_console: bool = True) -> None:
    """
    Configure structlog and the root logger.

    Args:
        config: Logging section to apply. Defaults to the global config's.
        enable_console: Whether to log to stdout.
    """
    config = config or get_config().logging
    level = getattr(logging, config.level.upper(), logging.INFO)

    structlog.configure(
        processors=[*_pre_chain(), structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handlers: list[logging.Handler] = []

    if config.file:
        path = Path(config.file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path,
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUPS,
            encoding="utf-8",
        )
        file_handler.setFormatter(_formatter(structlog.processors.JSONRenderer()))
        handlers.append(file_handler)

    if enable_console:
        if config.format.lower() == "json":
            renderer: Processor = structlog.processors.JSONRenderer()
        else:
            renderer = structlog.dev.ConsoleRenderer(colors=False)
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(_formatter(renderer))
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    root_logger.handlers = handlers
    root_logger.setLevel(level)


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger, e.g. ``get_logger(__name__)``."""
    return structlog.get_logger(name)


@contextmanager
def task_context(task: str, **kwargs: Any) -> Iterator[None]:
    """
    Tag every line logged inside the block with the relay task.

    Context variables are per thread here, so each pool task opens its
    own block.
    """
    with structlog.contextvars.bound_contextvars(task=task, **kwargs):
        yield
