"""Status changes made from the incident controls in the welcome message."""

from __future__ import annotations

import structlog

from slack_incident_engine.db import session_scope
from slack_incident_engine.jobs.queue import JobQueue, JobType
from slack_incident_engine.models import ACTIVE_STATUSES, IncidentStatus

from .storage import find_incident_for_channel

logger = structlog.get_logger(__name__)


def update_incident_status(
    *,
    organization_id: int,
    channel_id: str | None,
    new_status: str | None,
    user_id: str | None,
    jobs: JobQueue,
) -> bool:
    """Move an active incident to another active status.

    Returns True when the stored status changed. Resolution goes through the
    resolve workflow instead, and resolved incidents are never reopened here.
    """

    log = logger.bind(organization_id=organization_id, channel_id=channel_id, status=new_status)
    try:
        status = IncidentStatus(new_status or "")
    except ValueError:
        log.warning("incident_status_rejected", reason="unknown_status")
        return False
    if status not in ACTIVE_STATUSES:
        log.warning("incident_status_rejected", reason="not_active_status")
        return False

    with session_scope() as session:
        incident = find_incident_for_channel(session, organization_id=organization_id, channel_id=channel_id)
        if incident is None:
            log.warning("incident_status_rejected", reason="no_incident")
            return False
        if not incident.is_active:
            log.info("incident_status_rejected", reason="incident_resolved", incident_id=incident.id)
            return False
        if incident.status == status:
            return False
        previous = incident.status
        incident.status = status
        incident_id = incident.id

    log.info(
        "incident_status_updated",
        incident_id=incident_id,
        previous_status=previous.value,
        updated_by=user_id,
    )
    jobs.enqueue(JobType.UPDATE_SLACK_CHANNEL_METADATA, incident_id=incident_id, pin_link=False)
    return True
