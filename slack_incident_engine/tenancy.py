"""Resolve the tenant behind an inbound Slack request."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable, Mapping

import structlog
from slack_bolt.authorization import AuthorizeResult
from sqlalchemy import select
from sqlalchemy.orm import Session

from slack_incident_engine.db import session_scope
from slack_incident_engine.models import Organization, SlackInstallation
from slack_incident_engine.slack_client import SlackClient

NOT_INSTALLED_MESSAGE = (
    ":x: This Slack workspace is not authorized to use Rootly. Please reinstall the app."
)

logger = structlog.get_logger(__name__)


class WorkspaceNotInstalledError(Exception):
    """Raised when no installation matches the requesting Slack team."""

    def __init__(self, team_id: str | None) -> None:
        super().__init__(f"No installation found for team: {team_id}")
        self.team_id = team_id


@dataclass(frozen=True)
class Tenant:
    """The organization and credentials that serve one Slack team."""

    organization_id: int
    organization_name: str
    team_id: str
    bot_token: str
    bot_user_id: str | None = None


def extract_team_id(form: Mapping[str, Any]) -> str | None:
    """Read the team id from a command form or from an interaction's JSON payload."""

    team_id = form.get("team_id")
    if team_id:
        return team_id

    raw_payload = form.get("payload")
    if not raw_payload:
        return None
    try:
        payload = json.loads(raw_payload)
    except (TypeError, json.JSONDecodeError):
        return None
    team = payload.get("team") if isinstance(payload, dict) else None
    if isinstance(team, dict):
        return team.get("id") or None
    return None


def find_tenant(session: Session, team_id: str | None) -> Tenant:
    if not team_id:
        raise WorkspaceNotInstalledError(team_id)

    row = session.execute(
        select(SlackInstallation, Organization)
        .join(Organization, SlackInstallation.organization_id == Organization.id)
        .where(SlackInstallation.team_id == team_id)
    ).first()
    if row is None:
        raise WorkspaceNotInstalledError(team_id)

    installation, organization = row
    return Tenant(
        organization_id=organization.id,
        organization_name=organization.name,
        team_id=installation.team_id,
        bot_token=installation.bot_access_token,
        bot_user_id=installation.bot_user_id,
    )


def resolve_tenant(team_id: str | None) -> Tenant:
    """Look up the tenant for *team_id* in its own short transaction."""

    with session_scope() as session:
        tenant = find_tenant(session, team_id)
    logger.info("tenant_resolved", organization_id=tenant.organization_id, team_id=team_id)
    return tenant


def build_authorize(resolver: Callable[[str | None], Tenant] = resolve_tenant):
    """Return a Bolt ``authorize`` callable that loads bot credentials per team."""

    def authorize(enterprise_id, team_id, context) -> AuthorizeResult | None:
        try:
            tenant = resolver(team_id)
        except WorkspaceNotInstalledError:
            logger.warning("tenant_not_installed", team_id=team_id)
            return None
        context["tenant"] = tenant
        return AuthorizeResult(
            enterprise_id=enterprise_id,
            team_id=tenant.team_id,
            bot_token=tenant.bot_token,
            bot_user_id=tenant.bot_user_id,
        )

    return authorize


def slack_client_for_organization(organization_id: int) -> SlackClient:
    """Build a gateway using the bot token of the organization's installation."""

    with session_scope() as session:
        token = session.execute(
            select(SlackInstallation.bot_access_token).where(
                SlackInstallation.organization_id == organization_id
            )
        ).scalar_one_or_none()
    if token is None:
        raise WorkspaceNotInstalledError(None)
    return SlackClient(token=token)
