"""Tests for resolving the organization behind a Slack request."""

import json
from pathlib import Path
import sys

import pytest
from slack_bolt.authorization import AuthorizeResult

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from slack_incident_engine import Base, config, slack_client as slack_client_module  # noqa: E402
from slack_incident_engine.db import get_engine, get_session_factory, session_scope  # noqa: E402
from slack_incident_engine.models import Organization, SlackInstallation  # noqa: E402
from slack_incident_engine.slack_client import SlackClient  # noqa: E402
from slack_incident_engine.tenancy import (  # noqa: E402
    WorkspaceNotInstalledError,
    build_authorize,
    extract_team_id,
    resolve_tenant,
    slack_client_for_organization,
)


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


@pytest.fixture
def organization_id():
    with session_scope() as session:
        organization = Organization(name="Acme Corp")
        organization.installation = SlackInstallation(
            team_id="T1", bot_access_token="xoxb-acme", bot_user_id="UBOT"
        )
        session.add(organization)
        session.flush()
        return organization.id


def test_extract_team_id_from_command_form():
    assert extract_team_id({"team_id": "T1", "text": "help"}) == "T1"


def test_extract_team_id_from_interaction_payload():
    form = {"payload": json.dumps({"type": "block_actions", "team": {"id": "T2"}})}

    assert extract_team_id(form) == "T2"


@pytest.mark.parametrize("form", [{}, {"payload": "not json"}, {"payload": json.dumps({"type": "x"})}])
def test_extract_team_id_returns_none_when_absent(form):
    assert extract_team_id(form) is None


def test_resolve_tenant_returns_installation_credentials(organization_id):
    tenant = resolve_tenant("T1")

    assert tenant.organization_id == organization_id
    assert tenant.organization_name == "Acme Corp"
    assert tenant.bot_token == "xoxb-acme"
    assert tenant.bot_user_id == "UBOT"


@pytest.mark.parametrize("team_id", ["T404", None, ""])
def test_resolve_tenant_rejects_unknown_teams(organization_id, team_id):
    with pytest.raises(WorkspaceNotInstalledError):
        resolve_tenant(team_id)


def test_authorize_sets_tenant_on_context(organization_id):
    authorize = build_authorize()
    context = {}

    result = authorize(enterprise_id=None, team_id="T1", context=context)

    assert isinstance(result, AuthorizeResult)
    assert result.bot_token == "xoxb-acme"
    assert result.bot_user_id == "UBOT"
    assert context["tenant"].organization_id == organization_id


def test_authorize_returns_none_for_unknown_team(organization_id):
    assert build_authorize()(enterprise_id=None, team_id="T404", context={}) is None


def test_slack_client_for_organization_uses_bot_token(organization_id, monkeypatch):
    tokens = []

    def fake_web_client(*, token):
        tokens.append(token)
        return object()

    monkeypatch.setattr(slack_client_module, "WebClient", fake_web_client)

    client = slack_client_for_organization(organization_id)

    assert isinstance(client, SlackClient)
    assert tokens == ["xoxb-acme"]

    with pytest.raises(WorkspaceNotInstalledError):
        slack_client_for_organization(organization_id + 1)
