"""Tests for database schema creation and model rules."""

from datetime import UTC, datetime, timedelta
from pathlib import Path
import sys

import pytest
from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from slack_incident_engine import Base, config  # noqa: E402
from slack_incident_engine.db import get_engine, get_session_factory, session_scope  # noqa: E402
from slack_incident_engine.models import (  # noqa: E402
    Incident,
    IncidentStatus,
    InvalidResolutionError,
    Organization,
    Severity,
    SlackChannel,
    SlackUser,
    SlugConflictError,
    normalize_slug,
    parameterize,
)

DECLARED_AT = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def override_database(monkeypatch, tmp_path):
    test_db = tmp_path / "test.db"
    monkeypatch.setenv("SLACK_SIGNING_SECRET", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{test_db}")
    config.get_settings.cache_clear()
    get_engine.cache_clear()
    get_session_factory.cache_clear()
    yield
    get_engine().dispose()
    config.get_settings.cache_clear()
    get_engine.cache_clear()
    get_session_factory.cache_clear()


@pytest.fixture
def schema():
    engine = get_engine()
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)


def _organization(session, name="Acme"):
    organization = Organization(name=name)
    session.add(organization)
    session.flush()
    return organization


def test_create_all_creates_expected_tables(schema):
    inspector = inspect(schema)
    tables = set(inspector.get_table_names())
    assert tables.issuperset(
        {
            "organizations",
            "slack_installations",
            "incident_counters",
            "incidents",
            "slack_channels",
            "slack_users",
        }
    )

    incident_columns = {column["name"] for column in inspector.get_columns("incidents")}
    assert incident_columns.issuperset(
        {"organization_id", "number", "title", "description", "severity", "status", "declared_at", "resolved_at"}
    )
    channel_columns = {column["name"] for column in inspector.get_columns("slack_channels")}
    assert channel_columns.issuperset({"incident_id", "slack_channel_id", "name"})


def test_organization_slug_is_derived_from_name(schema):
    with session_scope() as session:
        organization = _organization(session, "Acme Corp!")
        assert organization.slug == "acme-corp"


def test_organization_slug_conflict_is_rejected(schema):
    with session_scope() as session:
        _organization(session, "Acme Corp")

    with pytest.raises(SlugConflictError):
        with session_scope() as session:
            _organization(session, "acme  corp")


def test_incident_numbers_are_unique_per_organization(schema):
    with pytest.raises(IntegrityError):
        with session_scope() as session:
            organization = _organization(session)
            for _ in range(2):
                session.add(
                    Incident(
                        organization_id=organization.id,
                        number=1,
                        title="Duplicate",
                        declared_at=DECLARED_AT,
                    )
                )
            session.flush()


def test_incident_defaults_and_helpers(schema):
    with session_scope() as session:
        organization = _organization(session)
        incident = Incident(organization_id=organization.id, number=3, title="Payments: 502s", declared_at=DECLARED_AT)
        incident.slack_channel = SlackChannel(slack_channel_id="C3", name="inc-0003-payments-502s")
        session.add(incident)
        session.flush()

        assert incident.severity == Severity.SEV2
        assert incident.status == IncidentStatus.INVESTIGATING
        assert incident.is_active is True
        assert incident.duration_seconds == 0
        assert incident.slug == f"payments-502s-{incident.id}"
        assert incident.slack_channel.deep_link("T1") == "https://app.slack.com/client/T1/C3"

        incident.status = IncidentStatus.RESOLVED
        incident.resolved_at = DECLARED_AT + timedelta(minutes=90)
        assert incident.is_resolved is True
        assert incident.duration_seconds == 90 * 60


def test_resolution_before_declaration_is_invalid():
    incident = Incident(number=1, title="Clock skew", declared_at=DECLARED_AT)

    with pytest.raises(InvalidResolutionError):
        incident.check_resolution_time(DECLARED_AT - timedelta(seconds=1))


def test_slack_user_profile_helpers():
    user = SlackUser(slack_user_id="U1")
    assert user.needs_profile is True
    assert user.best_name == "<@U1>"

    user.real_name = "Ana Lopez"
    assert user.best_name == "Ana Lopez"
    user.display_name = "ana"
    user.avatar_url = "https://img/512.png"
    assert user.needs_profile is False
    assert user.best_name == "ana"


def test_slug_helpers():
    assert parameterize("Café Outage #2") == "cafe-outage-2"
    assert normalize_slug("My  Company, Inc.") == "my-company-inc"
