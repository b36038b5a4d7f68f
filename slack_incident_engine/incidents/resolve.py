"""Resolving the incident bound to the channel a request came from."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Dict

import structlog
from sqlalchemy import update

from slack_incident_engine.db import session_scope
from slack_incident_engine.jobs.queue import JobQueue, JobType
from slack_incident_engine.models import Incident, IncidentStatus, as_utc
from slack_incident_engine.slack_client import SlackClient
from slack_incident_engine.tenancy import Tenant

from .messages import build_active_incidents_text, build_resolution_message, time_ago
from .responses import ephemeral
from .storage import find_incident_for_channel, list_active_incidents

logger = structlog.get_logger(__name__)

RESOLVE_FAILED_MESSAGE = ":warning: Failed to resolve incident. Please try again."


@dataclass(frozen=True)
class ResolveOutcome:
    resolved: bool
    text: str
    incident_id: int | None = None


def _already_resolved(incident: Incident, now: datetime) -> ResolveOutcome:
    elapsed = (as_utc(now) - as_utc(incident.resolved_at)).total_seconds()
    return ResolveOutcome(
        resolved=False,
        text=f":white_check_mark: This incident was already resolved {time_ago(elapsed)} ago!",
        incident_id=incident.id,
    )


def resolve_incident_in_channel(
    *,
    tenant: Tenant,
    channel_id: str | None,
    user_id: str,
    slack: SlackClient,
    now: datetime | None = None,
) -> ResolveOutcome:
    """Mark the channel's incident resolved and announce it there.

    The status change is committed before the announcement is posted, so a
    failed announcement leaves the incident resolved and the next attempt
    reports it as already resolved.
    """

    resolved_at = now or datetime.now(UTC)
    log = logger.bind(organization_id=tenant.organization_id, channel_id=channel_id)

    with session_scope() as session:
        incident = find_incident_for_channel(
            session, organization_id=tenant.organization_id, channel_id=channel_id
        )
        if incident is None:
            entries = [
                (item.number, item.title, item.slack_channel.deep_link(tenant.team_id))
                for item in list_active_incidents(session, organization_id=tenant.organization_id)
            ]
            log.info("resolve_outside_incident_channel", active_incidents=len(entries))
            return ResolveOutcome(resolved=False, text=build_active_incidents_text(entries))

        if incident.is_resolved:
            log.info("incident_already_resolved", incident_id=incident.id)
            return _already_resolved(incident, resolved_at)

        incident.check_resolution_time(resolved_at)
        result = session.execute(
            update(Incident)
            .where(Incident.id == incident.id, Incident.status != IncidentStatus.RESOLVED)
            .values(status=IncidentStatus.RESOLVED, resolved_at=resolved_at)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            session.refresh(incident)
            log.info("incident_already_resolved", incident_id=incident.id)
            return _already_resolved(incident, resolved_at)

        announcement = build_resolution_message(
            incident=incident,
            resolver_id=user_id,
            resolved_at=resolved_at,
            channel_id=incident.slack_channel.slack_channel_id,
        )
        incident_id = incident.id
        number = incident.number

    log = log.bind(incident_id=incident_id, incident_number=number)
    log.info("incident_resolved", resolved_by=user_id)

    slack.post_message(**announcement)
    log.info("incident_resolution_announced")

    return ResolveOutcome(
        resolved=True,
        text=f":white_check_mark: Incident #{number} has been resolved!",
        incident_id=incident_id,
    )


def enqueue_resolve_followups(jobs: JobQueue, *, incident_id: int) -> None:
    jobs.enqueue(JobType.GATHER_INCIDENT_ANALYTICS, incident_id=incident_id)
    jobs.enqueue(JobType.UPDATE_SLACK_CHANNEL_METADATA, incident_id=incident_id, pin_link=False)


def run_resolve(
    *,
    tenant: Tenant,
    channel_id: str | None,
    user_id: str,
    slack: SlackClient,
    jobs: JobQueue,
) -> ResolveOutcome:
    """Resolve and schedule follow-ups, converting any failure into an outcome."""

    try:
        outcome = resolve_incident_in_channel(
            tenant=tenant, channel_id=channel_id, user_id=user_id, slack=slack
        )
    except Exception:
        logger.exception(
            "incident_resolve_failed",
            organization_id=tenant.organization_id,
            channel_id=channel_id,
        )
        return ResolveOutcome(resolved=False, text=RESOLVE_FAILED_MESSAGE)

    if outcome.resolved and outcome.incident_id is not None:
        enqueue_resolve_followups(jobs, incident_id=outcome.incident_id)
    return outcome


def handle_resolve_command(
    *,
    tenant: Tenant,
    channel_id: str | None,
    user_id: str,
    slack: SlackClient,
    jobs: JobQueue,
) -> Dict[str, Any]:
    outcome = run_resolve(tenant=tenant, channel_id=channel_id, user_id=user_id, slack=slack, jobs=jobs)
    return ephemeral(outcome.text)
