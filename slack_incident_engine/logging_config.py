"""Structlog setup for the incident service."""

from __future__ import annotations

import logging
import re
from typing import Any, MutableMapping

import structlog

LOG_LEVEL = logging.INFO
SERVICE_NAME = "slack-incident-engine"

_SLACK_TOKEN = re.compile(r"xox[abposr]-[A-Za-z0-9-]+")
_SECRET_KEYS = frozenset({"bot_token", "bot_access_token", "token", "signing_secret"})


def add_service_name(_logger: Any, _method: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def redact_slack_tokens(_logger: Any, _method: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    """Mask bot tokens and secrets; tenants carry them and Slack errors can echo them."""

    for key, value in list(event_dict.items()):
        if key in _SECRET_KEYS and value:
            event_dict[key] = "[redacted]"
        elif isinstance(value, str):
            event_dict[key] = _SLACK_TOKEN.sub("[redacted]", value)
    return event_dict


def configure_logging(level: int = LOG_LEVEL) -> None:
    """Emit one JSON object per event, carrying the bound trace and organization ids."""

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_service_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            redact_slack_tokens,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=level)
    # slack_sdk logs every request body at DEBUG, which would leak incident text.
    logging.getLogger("slack_sdk").setLevel(max(level, logging.INFO))
