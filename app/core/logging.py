# app/core/logging.py
from __future__ import annotations

import logging
import sys
from typing import Any, Dict

import structlog

from app.core.config import settings

_SECRET_KEYS = ("password", "token", "otp", "code", "secret", "authorization")


def _redact_secrets(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Mask values whose key looks like a credential."""
    for key in list(event_dict.keys()):
        if key in ("event", "status_code"):
            continue
        lower = key.lower()
        if any(s in lower for s in _SECRET_KEYS) and isinstance(event_dict[key], str):
            event_dict[key] = "***"
    return event_dict


def setup_logging(level: str | None = None, json_output: bool | None = None) -> None:
    level_name = (level or settings.LOG_LEVEL).upper()
    as_json = settings.LOG_JSON if json_output is None else json_output

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=getattr(logging, level_name, logging.INFO))

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _redact_secrets,
        structlog.processors.StackInfoRenderer(),
    ]
    if as_json:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors += [structlog.dev.ConsoleRenderer(colors=False)]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level_name, logging.INFO)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> Any:
    return structlog.get_logger(name)
