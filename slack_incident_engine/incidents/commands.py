"""Parsing of slash-command text into incident actions."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Union

_DECLARE_PATTERN = re.compile(r"^declare\s+(.+)$", re.IGNORECASE | re.DOTALL)
_RESOLVE_PATTERN = re.compile(r"^resolve$", re.IGNORECASE)


@dataclass(frozen=True)
class Declare:
    title: str
    action: str = "declare"


@dataclass(frozen=True)
class Resolve:
    action: str = "resolve"


@dataclass(frozen=True)
class Help:
    action: str = "help"


CommandAction = Union[Declare, Resolve, Help]


def parse_command(text: str | None) -> CommandAction:
    """Classify the free text typed after the slash command.

    ``declare <title>`` yields :class:`Declare` with the trimmed
    title, a bare ``resolve`` yields :class:`Resolve`, and anything else
    (including empty text) yields :class:`Help`.
    """

    cleaned = (text or "").strip()

    match = _DECLARE_PATTERN.match(cleaned)
    if match:
        title = match.group(1).strip()
        if title:
            return Declare(title=title)
        return Help()

    if _RESOLVE_PATTERN.match(cleaned):
        return Resolve()

    return Help()


def help_text(command: str) -> str:
    return (
        ":rotating_light: *Rootly Commands:*\n"
        f"• `{command} declare <title>` - Create a new incident\n"
        f"• `{command} resolve` - Resolve current incident (only works in incident channels)"
    )
