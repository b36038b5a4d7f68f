"""Tests for resolving incidents from their channel."""

from datetime import UTC, datetime, timedelta
from pathlib import Path
import sys

import pytest
from slack_sdk.errors import SlackApiError

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from slack_incident_engine import Base, config  # noqa: E402
from slack_incident_engine.db import get_engine, get_session_factory, session_scope  # noqa: E402
from slack_incident_engine.incidents.resolve import (  # noqa: E402
    RESOLVE_FAILED_MESSAGE,
    handle_resolve_command,
    resolve_incident_in_channel,
)
from slack_incident_engine.jobs import JobType  # noqa: E402
from slack_incident_engine.models import (  # noqa: E402
    Incident,
    IncidentStatus,
    Organization,
    Severity,
    SlackChannel,
    SlackInstallation,
)
from slack_incident_engine.slack_client import SlackClient  # noqa: E402
from slack_incident_engine.tenancy import Tenant  # noqa: E402

DECLARED_AT = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def configure_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("SLACK_SIGNING_SECRET", "secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'incidents.db'}")
    config.get_settings.cache_clear()
    get_engine.cache_clear()
    get_session_factory.cache_clear()

    engine = get_engine()
    Base.metadata.create_all(engine)

    yield

    Base.metadata.drop_all(engine)
    engine.dispose()
    config.get_settings.cache_clear()
    get_engine.cache_clear()
    get_session_factory.cache_clear()


def _create_tenant(name="Acme", team_id="T1") -> Tenant:
    with session_scope() as session:
        organization = Organization(name=name)
        organization.installation = SlackInstallation(team_id=team_id, bot_access_token=f"xoxb-{team_id}")
        session.add(organization)
        session.flush()
        return Tenant(
            organization_id=organization.id,
            organization_name=name,
            team_id=team_id,
            bot_token=f"xoxb-{team_id}",
        )


def _create_incident(tenant, number, *, channel_id, status=IncidentStatus.INVESTIGATING, declared_at=DECLARED_AT, resolved_at=None):
    with session_scope() as session:
        incident = Incident(
            organization_id=tenant.organization_id,
            number=number,
            title=f"Outage {number}",
            severity=Severity.SEV1,
            status=status,
            declared_at=declared_at,
            resolved_at=resolved_at,
        )
        incident.slack_channel = SlackChannel(slack_channel_id=channel_id, name=f"inc-{number:04d}-outage-{number}")
        session.add(incident)
        session.flush()
        return incident.id


class DummySlackWebClient:
    def __init__(self, *, fail=False):
        self.posts = []
        self.fail = fail

    def chat_postMessage(self, **kwargs):
        if self.fail:
            raise SlackApiError("failure", {"ok": False, "error": "channel_not_found"})
        self.posts.append(kwargs)
        return {"ok": True, "ts": "1.0"}


class RecordingJobs:
    def __init__(self):
        self.enqueued = []

    def enqueue(self, job_type, **payload):
        self.enqueued.append((JobType(job_type), payload))


def _context_text(message):
    return next(block for block in message["blocks"] if block["type"] == "context")["elements"][0]["text"]


def test_resolve_updates_incident_and_announces():
    tenant = _create_tenant()
    incident_id = _create_incident(tenant, 1, channel_id="CINC1")
    web = DummySlackWebClient()
    jobs = RecordingJobs()

    response = handle_resolve_command(
        tenant=tenant,
        channel_id="CINC1",
        user_id="U9",
        slack=SlackClient(client=web),
        jobs=jobs,
    )

    assert response == {"response_type": "ephemeral", "text": ":white_check_mark: Incident #1 has been resolved!"}
    with session_scope() as session:
        incident = session.get(Incident, incident_id)
        assert incident.status == IncidentStatus.RESOLVED
        assert incident.resolved_at is not None

    (announcement,) = web.posts
    assert announcement["channel"] == "CINC1"
    assert "Incident #1 has been resolved" in announcement["text"]
    assert "<@U9>" in str(announcement["blocks"])
    assert jobs.enqueued == [
        (JobType.GATHER_INCIDENT_ANALYTICS, {"incident_id": incident_id}),
        (JobType.UPDATE_SLACK_CHANNEL_METADATA, {"incident_id": incident_id, "pin_link": False}),
    ]


@pytest.mark.parametrize(
    "elapsed, label",
    [
        (timedelta(minutes=4), "Lightning fast"),
        (timedelta(minutes=29), "Quick resolution"),
        (timedelta(minutes=59), "Good response time"),
        (timedelta(hours=3), "Thanks for seeing this through"),
    ],
)
def test_announcement_carries_speed_label(elapsed, label):
    tenant = _create_tenant()
    _create_incident(tenant, 1, channel_id="CINC1")
    web = DummySlackWebClient()

    outcome = resolve_incident_in_channel(
        tenant=tenant,
        channel_id="CINC1",
        user_id="U9",
        slack=SlackClient(client=web),
        now=DECLARED_AT + elapsed,
    )

    assert outcome.resolved is True
    assert label in _context_text(web.posts[0])


def test_resolving_twice_is_a_no_op():
    tenant = _create_tenant()
    _create_incident(tenant, 1, channel_id="CINC1")
    web = DummySlackWebClient()
    jobs = RecordingJobs()

    handle_resolve_command(tenant=tenant, channel_id="CINC1", user_id="U9", slack=SlackClient(client=web), jobs=jobs)
    second = handle_resolve_command(
        tenant=tenant, channel_id="CINC1", user_id="U9", slack=SlackClient(client=web), jobs=jobs
    )

    assert second["response_type"] == "ephemeral"
    assert "already resolved" in second["text"]
    assert second["text"].endswith("ago!")
    assert len(web.posts) == 1
    assert len(jobs.enqueued) == 2


def test_already_resolved_reports_elapsed_time():
    tenant = _create_tenant()
    _create_incident(
        tenant,
        1,
        channel_id="CINC1",
        status=IncidentStatus.RESOLVED,
        resolved_at=DECLARED_AT + timedelta(minutes=10),
    )

    outcome = resolve_incident_in_channel(
        tenant=tenant,
        channel_id="CINC1",
        user_id="U9",
        slack=SlackClient(client=DummySlackWebClient()),
        now=DECLARED_AT + timedelta(hours=2, minutes=10),
    )

    assert outcome.resolved is False
    assert outcome.text == ":white_check_mark: This incident was already resolved 2 hours ago!"


def test_outside_incident_channel_lists_active_incidents():
    tenant = _create_tenant()
    for number in range(1, 13):
        _create_incident(tenant, number, channel_id=f"C{number}", declared_at=DECLARED_AT + timedelta(minutes=number))
    _create_incident(
        tenant,
        13,
        channel_id="C13",
        status=IncidentStatus.RESOLVED,
        declared_at=DECLARED_AT + timedelta(hours=1),
        resolved_at=DECLARED_AT + timedelta(hours=2),
    )
    web = DummySlackWebClient()
    jobs = RecordingJobs()

    response = handle_resolve_command(
        tenant=tenant, channel_id="CGENERAL", user_id="U9", slack=SlackClient(client=web), jobs=jobs
    )

    text = response["text"]
    assert "only works in incident channels" in text
    assert text.count("https://app.slack.com/client/T1/") == 10
    assert "https://app.slack.com/client/T1/C12|#12: Outage 12" in text
    assert "C13" not in text
    assert web.posts == []
    assert jobs.enqueued == []


def test_outside_incident_channel_without_active_incidents():
    tenant = _create_tenant()

    response = handle_resolve_command(
        tenant=tenant,
        channel_id="CGENERAL",
        user_id="U9",
        slack=SlackClient(client=DummySlackWebClient()),
        jobs=RecordingJobs(),
    )

    assert "No active incidents found" in response["text"]


def test_channels_of_other_organizations_are_not_matched():
    acme = _create_tenant("Acme", "T1")
    globex = _create_tenant("Globex", "T2")
    _create_incident(globex, 1, channel_id="CSHARED")

    outcome = resolve_incident_in_channel(
        tenant=acme,
        channel_id="CSHARED",
        user_id="U9",
        slack=SlackClient(client=DummySlackWebClient()),
    )

    assert outcome.resolved is False
    assert "No active incidents found" in outcome.text


def test_failures_become_ephemeral_errors():
    tenant = _create_tenant()
    _create_incident(tenant, 1, channel_id="CINC1")
    jobs = RecordingJobs()

    response = handle_resolve_command(
        tenant=tenant,
        channel_id="CINC1",
        user_id="U9",
        slack=SlackClient(client=DummySlackWebClient(fail=True)),
        jobs=jobs,
    )

    assert response == {"response_type": "ephemeral", "text": RESOLVE_FAILED_MESSAGE}
    assert jobs.enqueued == []
