"""Slack-shaped HTTP response bodies."""

from __future__ import annotations

from typing import Any, Dict

INTERNAL_ERROR_MESSAGE = (
    ":warning: Internal server error. This isn't your fault - please try again or contact support."
)


def ephemeral(text: str) -> Dict[str, Any]:
    return {"response_type": "ephemeral", "text": text}


def clear_modal() -> Dict[str, Any]:
    return {"response_action": "clear"}


def field_errors(block_id: str, message: str) -> Dict[str, Any]:
    return {"response_action": "errors", "errors": {block_id: message}}


def empty() -> Dict[str, Any]:
    return {}
