"""Post-incident statistics computed from a channel's message history."""

from __future__ import annotations

import re
from collections import Counter
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from slack_incident_engine.models import Incident, as_utc

_LINK_PATTERN = re.compile(r"https?://[^\s<>|]+")


def human_messages(messages: Iterable[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
    """Drop bot posts and messages without an author."""

    return [
        message
        for message in messages
        if not message.get("bot_profile") and not message.get("bot_id") and message.get("user")
    ]


def participant_ids(messages: Iterable[Mapping[str, Any]]) -> List[str]:
    return list(dict.fromkeys(message["user"] for message in messages if message.get("user")))


def summarize_messages(messages: Sequence[Mapping[str, Any]], names: Mapping[str, str]) -> Dict[str, Any]:
    by_id = Counter(message["user"] for message in messages)
    by_user: Counter[str] = Counter()
    for user_id, count in by_id.items():
        by_user[names.get(user_id) or user_id] += count
    return {
        "total": sum(by_id.values()),
        "by_user": dict(by_user.most_common()),
        "by_id": dict(by_id),
    }


def shared_content(messages: Iterable[Mapping[str, Any]]) -> Dict[str, Any]:
    links: List[str] = []
    files: List[Dict[str, Any]] = []
    for message in messages:
        links.extend(_LINK_PATTERN.findall(message.get("text") or ""))
        for item in message.get("files") or []:
            files.append(
                {
                    "name": item.get("name"),
                    "type": item.get("filetype"),
                    "size": item.get("size"),
                    "url": item.get("url_private"),
                    "shared_by": message.get("user"),
                }
            )
    return {"links": list(dict.fromkeys(links)), "files": files}


def format_long_duration(total_seconds: int) -> str:
    minutes, seconds = divmod(max(int(total_seconds), 0), 60)
    hours, minutes = divmod(minutes, 60)
    days, hours = divmod(hours, 24)
    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if seconds or not parts:
        parts.append(f"{seconds}s")
    return " ".join(parts)


def resolution_speed(total_seconds: int) -> str:
    if total_seconds <= 5 * 60:
        return "Lightning Fast"
    if total_seconds <= 30 * 60:
        return "Quick Resolution"
    if total_seconds <= 60 * 60:
        return "Good Response Time"
    if total_seconds <= 2 * 60 * 60:
        return "Standard Resolution"
    return "Extended Resolution"


def build_report(
    *,
    incident: Incident,
    channel_name: str,
    messages: Sequence[Mapping[str, Any]],
    names: Mapping[str, str],
) -> Dict[str, Any]:
    """Assemble the analytics summary for a resolved incident."""

    people = human_messages(messages)
    duration = incident.duration_seconds
    return {
        "incident": {
            "number": incident.number,
            "title": incident.title,
            "severity": incident.severity.value,
            "channel_name": channel_name,
            "declared_at": as_utc(incident.declared_at).isoformat(),
            "resolved_at": as_utc(incident.resolved_at).isoformat() if incident.resolved_at else None,
            "duration_seconds": duration,
            "duration_human": format_long_duration(duration),
            "resolution_speed": resolution_speed(duration),
        },
        "participants": [
            {"slack_user_id": user_id, "name": names.get(user_id) or "Unknown User"}
            for user_id in participant_ids(people)
        ],
        "messages": summarize_messages(people, names),
        "shared": shared_content(people),
    }
