"""Block Kit message builders for incident channels."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Sequence, Tuple

from slack_incident_engine.models import (
    ACTIVE_STATUSES,
    Incident,
    IncidentStatus,
    SlackUser,
    as_utc,
)

from .interactions import RESOLVE_BUTTON_ACTION_ID, STATUS_SELECT_ACTION_ID

INCIDENT_CONTROLS_BLOCK_ID = "incident_controls"

SEVERITY_EMOJI = {
    "sev0": ":red_circle:",
    "sev1": ":large_orange_circle:",
    "sev2": ":large_yellow_circle:",
}


def slack_date(value: datetime) -> str:
    """Render *value* with Slack's localised date formatting."""

    value = as_utc(value)
    return f"<!date^{int(value.timestamp())}^{{date_short_pretty}} {{time}}|{value.isoformat()}>"


def format_duration(total_seconds: int) -> str:
    """Compact duration used in resolution announcements: ``1h 5m``, ``4m 2s``, ``9s``."""

    total_seconds = max(int(total_seconds), 0)
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def _count(value: int, unit: str) -> str:
    return f"{value} {unit}" if value == 1 else f"{value} {unit}s"


def time_ago(total_seconds: int) -> str:
    """Coarse relative time in the largest whole unit, e.g. ``"2 hours"``."""

    seconds = max(int(total_seconds), 0)
    if seconds == 0:
        return "a moment"
    if seconds < 60:
        return _count(seconds, "second")
    if seconds < 3600:
        return _count(seconds // 60, "minute")
    if seconds < 86400:
        return _count(seconds // 3600, "hour")
    return _count(seconds // 86400, "day")


def speed_label(total_seconds: int) -> Tuple[str, str]:
    """Return the emoji and praise for how quickly an incident was resolved."""

    if total_seconds < 5 * 60:
        return ":zap:", "Lightning fast resolution!"
    if total_seconds < 30 * 60:
        return ":rocket:", "Quick resolution!"
    if total_seconds < 60 * 60:
        return ":+1:", "Good response time!"
    return ":muscle:", "Thanks for seeing this through!"


def _field(label: str, value: str) -> Dict[str, str]:
    return {"type": "mrkdwn", "text": f"*{label}:*\n{value}"}


def _status_option(status: IncidentStatus) -> Dict[str, Any]:
    return {
        "text": {"type": "plain_text", "text": status.value.capitalize()},
        "value": status.value,
    }


def _controls_block(incident: Incident) -> Dict[str, Any]:
    return {
        "type": "actions",
        "block_id": INCIDENT_CONTROLS_BLOCK_ID,
        "elements": [
            {
                "type": "static_select",
                "action_id": STATUS_SELECT_ACTION_ID,
                "placeholder": {"type": "plain_text", "text": "Update status"},
                "initial_option": _status_option(incident.status),
                "options": [_status_option(status) for status in ACTIVE_STATUSES],
            },
            {
                "type": "button",
                "action_id": RESOLVE_BUTTON_ACTION_ID,
                "style": "primary",
                "text": {"type": "plain_text", "text": "Resolve", "emoji": True},
                "value": str(incident.id),
                "confirm": {
                    "title": {"type": "plain_text", "text": "Resolve incident"},
                    "text": {"type": "mrkdwn", "text": f"Mark incident #{incident.number} as resolved?"},
                    "confirm": {"type": "plain_text", "text": "Resolve"},
                    "deny": {"type": "plain_text", "text": "Cancel"},
                },
            },
        ],
    }


def build_welcome_message(*, incident: Incident, creator: SlackUser | None, channel_id: str) -> Dict[str, Any]:
    """First message posted into a freshly created incident channel."""

    declared_by = creator.best_name if creator else "Unknown User"
    blocks: List[Dict[str, Any]] = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": f":rotating_light: Incident #{incident.number}", "emoji": True},
        },
        {
            "type": "section",
            "fields": [
                _field("Title", incident.title),
                _field("Severity", incident.severity.label),
                _field("Status", incident.status.value.capitalize()),
                _field("Declared", slack_date(incident.declared_at)),
                _field("Declared by", declared_by),
            ],
        },
    ]
    if incident.description:
        blocks.append(
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*Description:*\n{incident.description}"},
            }
        )
    blocks.append(_controls_block(incident))

    return {
        "channel": channel_id,
        "text": f":rotating_light: *Incident #{incident.number}* has been declared",
        "blocks": blocks,
    }


def build_resolution_message(
    *,
    incident: Incident,
    resolver_id: str,
    resolved_at: datetime,
    channel_id: str,
) -> Dict[str, Any]:
    duration = int((as_utc(resolved_at) - as_utc(incident.declared_at)).total_seconds())
    human = format_duration(duration)
    emoji, praise = speed_label(duration)

    return {
        "channel": channel_id,
        "text": f":tada: Incident #{incident.number} has been resolved!",
        "blocks": [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": ":tada: Incident Resolved!", "emoji": True},
            },
            {
                "type": "section",
                "fields": [
                    _field("Incident", f"#{incident.number} - {incident.title}"),
                    _field("Severity", incident.severity.label),
                    _field("Resolution Time", human),
                    _field("Resolved By", f"<@{resolver_id}>"),
                    _field("Declared", slack_date(incident.declared_at)),
                    _field("Resolved", slack_date(resolved_at)),
                ],
            },
            {
                "type": "context",
                "elements": [{"type": "mrkdwn", "text": f"{emoji} {praise} • Total time: {human}"}],
            },
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": (
                        ":white_check_mark: *Status:* Resolved\n"
                        ":bar_chart: Great work team! This channel will remain available "
                        "for post-incident discussion."
                    ),
                },
            },
        ],
    }


def build_commander_card(*, incident: Incident, user: SlackUser, channel_id: str) -> Dict[str, Any]:
    header: Dict[str, Any] = {
        "type": "section",
        "text": {"type": "mrkdwn", "text": "*:fire: INCIDENT COMMANDER :fire:*"},
    }
    if user.avatar_url:
        header["accessory"] = {
            "type": "image",
            "image_url": user.avatar_url,
            "alt_text": f"{user.best_name}'s profile picture",
        }

    fields = []
    if user.real_name:
        fields.append(_field("Name", user.real_name))
    if user.email:
        fields.append(_field("Email", user.email))
    if user.title:
        fields.append(_field("Title", user.title))
    fields.append(_field("Declared", slack_date(incident.declared_at)))

    return {
        "channel": channel_id,
        "text": f":fire: Incident COMMANDER: {user.best_name} :fire:",
        "blocks": [header, {"type": "section", "fields": fields}],
    }


def build_channel_topic(incident: Incident) -> str:
    emoji = SEVERITY_EMOJI.get(incident.severity.value, ":large_yellow_circle:")
    return f"{emoji} {incident.severity.label} {incident.status.value.upper()}"


def build_channel_purpose(incident: Incident) -> str:
    purpose = f"Incident #{incident.number}: {incident.title}"
    if incident.description:
        purpose += f"\n\n{incident.description}"
    return purpose


def build_active_incidents_text(entries: Sequence[Tuple[int, str, str]] | Iterable[Tuple[int, str, str]]) -> str:
    """Explain that resolve only works in incident channels, listing where it does.

    *entries* are ``(number, title, channel link)`` tuples.
    """

    lines = [f"• <{link}|#{number}: {title}>" for number, title, link in entries]
    if not lines:
        return (
            ":x: This command only works in incident channels.\n\n"
            ":white_check_mark: No active incidents found - great job! :tada:"
        )
    listing = "\n".join(lines)
    return (
        ":x: This command only works in incident channels.\n\n"
        f":mag: *Active incident channels:*\n{listing}"
    )
