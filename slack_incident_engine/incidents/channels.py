"""Naming rules for dedicated incident channels."""

from __future__ import annotations

from slack_incident_engine.models import parameterize

MAX_CHANNEL_NAME_LENGTH = 80
CHANNEL_PREFIX = "inc"


def channel_prefix(number: int) -> str:
    return f"{CHANNEL_PREFIX}-{number:04d}-"


def channel_slug(title: str) -> str:
    return parameterize(title)


def build_channel_name(number: int, title: str, suffix: str | None = None) -> str:
    """Return ``inc-<4-digit number>-<slug>`` trimmed to Slack's name limit.

    A *suffix* is appended after the slug and is always kept whole; the slug
    is shortened to make room for it.
    """

    prefix = channel_prefix(number)
    tail = f"-{suffix}" if suffix else ""
    room = MAX_CHANNEL_NAME_LENGTH - len(prefix) - len(tail)
    slug = channel_slug(title)[: max(room, 0)].rstrip("-")
    if not slug:
        return f"{prefix.rstrip('-')}{tail}"[:MAX_CHANNEL_NAME_LENGTH]
    return f"{prefix}{slug}{tail}"


def channel_name_problem(title: str) -> str | None:
    """Describe why *title* cannot produce a usable channel name, if it cannot."""

    if not channel_slug(title):
        return "Title must contain letters or numbers so the incident channel can be named"
    return None
