"""Tests for incident message builders and formatting helpers."""

from datetime import UTC, datetime, timedelta
from pathlib import Path
import sys

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from slack_incident_engine.incidents import analytics  # noqa: E402
from slack_incident_engine.incidents.messages import (  # noqa: E402
    INCIDENT_CONTROLS_BLOCK_ID,
    build_active_incidents_text,
    build_channel_topic,
    build_resolution_message,
    build_welcome_message,
    format_duration,
    speed_label,
    time_ago,
)
from slack_incident_engine.models import Incident, IncidentStatus, Severity, SlackUser  # noqa: E402

DECLARED_AT = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def _incident(**overrides):
    values = {
        "id": 5,
        "number": 12,
        "title": "Database down",
        "severity": Severity.SEV0,
        "status": IncidentStatus.INVESTIGATING,
        "declared_at": DECLARED_AT,
    }
    values.update(overrides)
    return Incident(**values)


@pytest.mark.parametrize(
    "seconds, expected",
    [(9, "9s"), (242, "4m 2s"), (3900, "1h 5m"), (-3, "0s")],
)
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected


@pytest.mark.parametrize(
    "seconds, expected",
    [
        (0, "a moment"),
        (1, "1 second"),
        (30, "30 seconds"),
        (60, "1 minute"),
        (600, "10 minutes"),
        (3600, "1 hour"),
        (7200, "2 hours"),
        (86400, "1 day"),
        (3 * 86400, "3 days"),
    ],
)
def test_time_ago(seconds, expected):
    assert time_ago(seconds) == expected


@pytest.mark.parametrize(
    "seconds, emoji",
    [
        (4 * 60 + 59, ":zap:"),
        (5 * 60, ":rocket:"),
        (29 * 60, ":rocket:"),
        (30 * 60, ":+1:"),
        (60 * 60 - 1, ":+1:"),
        (60 * 60, ":muscle:"),
    ],
)
def test_speed_label_buckets(seconds, emoji):
    assert speed_label(seconds)[0] == emoji


def test_welcome_message_lists_fields_and_controls():
    creator = SlackUser(slack_user_id="U1", real_name="Ana Lopez")

    message = build_welcome_message(
        incident=_incident(description="Primary unreachable"),
        creator=creator,
        channel_id="CINC",
    )

    assert message["channel"] == "CINC"
    header, fields, description, controls = message["blocks"]
    assert header["type"] == "header"
    field_text = " ".join(field["text"] for field in fields["fields"])
    for expected in ("Database down", "SEV0", "Investigating", "Ana Lopez", "<!date^"):
        assert expected in field_text
    assert "Primary unreachable" in description["text"]["text"]
    assert controls["block_id"] == INCIDENT_CONTROLS_BLOCK_ID
    action_ids = [element["action_id"] for element in controls["elements"]]
    assert action_ids == ["update_status_select", "resolve_button"]
    status_values = [option["value"] for option in controls["elements"][0]["options"]]
    assert status_values == ["investigating", "identified", "monitoring"]


def test_welcome_message_omits_missing_description():
    message = build_welcome_message(incident=_incident(), creator=None, channel_id="CINC")

    assert [block["type"] for block in message["blocks"]] == ["header", "section", "actions"]
    assert "Unknown User" in str(message["blocks"][1])


def test_resolution_message_reports_duration_and_resolver():
    message = build_resolution_message(
        incident=_incident(),
        resolver_id="U9",
        resolved_at=DECLARED_AT + timedelta(minutes=12, seconds=5),
        channel_id="CINC",
    )

    text = str(message["blocks"])
    assert "12m 5s" in text
    assert "<@U9>" in text
    assert "#12 - Database down" in text
    assert ":rocket: Quick resolution!" in text


def test_channel_topic_shows_severity_and_status():
    assert build_channel_topic(_incident(status=IncidentStatus.MONITORING)) == ":red_circle: SEV0 MONITORING"


def test_active_incident_listing():
    text = build_active_incidents_text([(3, "API errors", "https://app.slack.com/client/T1/C3")])

    assert "<https://app.slack.com/client/T1/C3|#3: API errors>" in text
    assert "No active incidents" not in text


@pytest.mark.parametrize(
    "seconds, expected",
    [(300, "Lightning Fast"), (1800, "Quick Resolution"), (3600, "Good Response Time"), (7200, "Standard Resolution"), (7201, "Extended Resolution")],
)
def test_analytics_resolution_speed(seconds, expected):
    assert analytics.resolution_speed(seconds) == expected


def test_analytics_long_duration_format():
    assert analytics.format_long_duration(90061) == "1d 1h 1m 1s"
    assert analytics.format_long_duration(0) == "0s"


def test_analytics_ignores_bot_messages():
    messages = [
        {"user": "U1", "text": "hi"},
        {"bot_id": "B1", "user": "U2", "text": "bot"},
        {"bot_profile": {"id": "B2"}, "text": "bot"},
        {"text": "no author"},
    ]

    assert analytics.human_messages(messages) == [{"user": "U1", "text": "hi"}]
