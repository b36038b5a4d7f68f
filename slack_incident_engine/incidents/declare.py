"""Declaring incidents: opening the modal and handling its submission."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Dict, Mapping
from uuid import uuid4

import structlog

from slack_incident_engine.db import session_scope
from slack_incident_engine.jobs.queue import JobQueue, JobType
from slack_incident_engine.models import MAX_TITLE_LENGTH, Incident, IncidentStatus, Severity, SlackChannel
from slack_incident_engine.slack_client import SlackClient, SlackGatewayError

from .channels import build_channel_name, channel_name_problem
from .commands import Declare, parse_command
from .messages import build_welcome_message
from .modal import (
    DEFAULT_SEVERITY,
    DESCRIPTION_ACTION_ID,
    DESCRIPTION_BLOCK_ID,
    SEVERITY_ACTION_ID,
    SEVERITY_BLOCK_ID,
    TITLE_ACTION_ID,
    TITLE_BLOCK_ID,
    build_declare_modal,
)
from .numbering import next_incident_number
from .payloads import InteractionPayload, SlashCommand
from .responses import INTERNAL_ERROR_MESSAGE, clear_modal, empty, ephemeral, field_errors
from .storage import find_or_create_slack_user

logger = structlog.get_logger(__name__)

CHANNEL_NAME_TAKEN = "name_taken"


class IncidentValidationError(ValueError):
    """A submitted value the user must fix; reported against one modal block."""

    def __init__(self, message: str, block_id: str = TITLE_BLOCK_ID) -> None:
        super().__init__(message)
        self.block_id = block_id


@dataclass(frozen=True)
class DeclareSubmission:
    title: str
    description: str | None
    severity: Severity
    slack_user_id: str


@dataclass(frozen=True)
class DeclaredIncident:
    incident_id: int
    number: int
    channel_id: str
    channel_name: str
    needs_profile: bool


def open_declare_modal(*, command: SlashCommand, slack: SlackClient, slash_command: str) -> Dict[str, Any]:
    """Open the pre-filled declare modal; the modal itself is the visible result."""

    action = parse_command(command.text)
    if not isinstance(action, Declare) or not command.trigger_id:
        return ephemeral(f"Usage: `{slash_command} declare <title>`")

    view = build_declare_modal(title=action.title, channel_id=command.channel_id)
    try:
        slack.open_view(trigger_id=command.trigger_id, view=view)
    except SlackGatewayError as exc:
        logger.error("declare_modal_open_failed", error=exc.error)
        return ephemeral(":x: Slack error opening modal. Please try again.")

    logger.info("declare_modal_opened", user_id=command.user_id)
    return empty()


def extract_submission(payload: InteractionPayload) -> DeclareSubmission:
    """Read and validate the declare modal's fields."""

    title = (payload.input_value(TITLE_BLOCK_ID, TITLE_ACTION_ID) or "").strip()
    if not title:
        raise IncidentValidationError("Title cannot be empty")
    if len(title) > MAX_TITLE_LENGTH:
        raise IncidentValidationError(f"Title must be {MAX_TITLE_LENGTH} characters or fewer")
    problem = channel_name_problem(title)
    if problem:
        raise IncidentValidationError(problem)

    description = (payload.input_value(DESCRIPTION_BLOCK_ID, DESCRIPTION_ACTION_ID) or "").strip() or None

    raw_severity = payload.selected_value(SEVERITY_BLOCK_ID, SEVERITY_ACTION_ID)
    try:
        severity = Severity(raw_severity) if raw_severity else DEFAULT_SEVERITY
    except ValueError:
        raise IncidentValidationError("Choose a valid severity", block_id=SEVERITY_BLOCK_ID) from None

    if not payload.user_id:
        raise IncidentValidationError("Could not identify the submitting user")

    return DeclareSubmission(
        title=title,
        description=description,
        severity=severity,
        slack_user_id=payload.user_id,
    )


def create_incident_channel(slack: SlackClient, *, number: int, title: str, log) -> Mapping[str, Any]:
    """Create the incident channel, retrying once under a suffixed name if Slack reports it taken.

    A declaration that failed after creating its channel leaves that channel
    behind while its number is handed out again, so the plain name can already
    exist.
    """

    name = build_channel_name(number, title)
    try:
        channel = slack.create_channel(name=name)
    except SlackGatewayError as exc:
        if exc.error != CHANNEL_NAME_TAKEN:
            raise
        name = build_channel_name(number, title, suffix=uuid4().hex[:4])
        log.warning("incident_channel_name_taken", retry_name=name)
        channel = slack.create_channel(name=name)
    return {"id": channel["id"], "name": channel.get("name") or name}


def declare_incident(
    *,
    organization_id: int,
    submission: DeclareSubmission,
    slack: SlackClient,
    now: datetime | None = None,
) -> DeclaredIncident:
    """Create the incident, its channel and welcome message in one transaction.

    The Slack channel cannot be rolled back: if a later step fails the
    transaction is undone but the channel stays behind and is logged as
    orphaned. Inviting the declarer is best effort.
    """

    declared_at = now or datetime.now(UTC)
    log = logger.bind(organization_id=organization_id, slack_user_id=submission.slack_user_id)
    created_channel_id: str | None = None

    try:
        with session_scope() as session:
            creator, created = find_or_create_slack_user(
                session, organization_id=organization_id, slack_user_id=submission.slack_user_id
            )
            if created:
                log.info("slack_user_created")
            needs_profile = creator.needs_profile

            number = next_incident_number(session, organization_id)
            log = log.bind(incident_number=number)
            log.info("incident_number_allocated")

            incident = Incident(
                organization_id=organization_id,
                number=number,
                title=submission.title,
                description=submission.description,
                severity=submission.severity,
                status=IncidentStatus.INVESTIGATING,
                slack_creator=creator,
                declared_at=declared_at,
            )
            session.add(incident)
            session.flush()

            channel = create_incident_channel(slack, number=number, title=submission.title, log=log)
            created_channel_id = channel["id"]
            incident.slack_channel = SlackChannel(slack_channel_id=created_channel_id, name=channel["name"])
            session.flush()
            log.info("incident_channel_linked", channel_id=created_channel_id)

            try:
                slack.invite_users(channel=created_channel_id, users=[submission.slack_user_id])
            except Exception as exc:
                log.warning("incident_channel_invite_failed", error=str(exc))

            slack.post_message(
                **build_welcome_message(incident=incident, creator=creator, channel_id=created_channel_id)
            )

            result = DeclaredIncident(
                incident_id=incident.id,
                number=number,
                channel_id=created_channel_id,
                channel_name=incident.slack_channel.name,
                needs_profile=needs_profile,
            )
    except Exception:
        if created_channel_id:
            log.error("incident_channel_orphaned", channel_id=created_channel_id)
        raise

    log.info("incident_declared", incident_id=result.incident_id, channel_id=result.channel_id)
    return result


def enqueue_declare_followups(jobs: JobQueue, *, organization_id: int, slack_user_id: str, declared: DeclaredIncident) -> None:
    if declared.needs_profile:
        jobs.enqueue(
            JobType.FETCH_SLACK_USER_PROFILE,
            organization_id=organization_id,
            slack_user_id=slack_user_id,
        )
    jobs.enqueue(JobType.POST_USER_PROFILE_MESSAGE, incident_id=declared.incident_id, slack_user_id=slack_user_id)
    jobs.enqueue(JobType.UPDATE_SLACK_CHANNEL_METADATA, incident_id=declared.incident_id)


def handle_declare_submission(
    *,
    organization_id: int,
    payload: InteractionPayload,
    slack: SlackClient,
    jobs: JobQueue,
) -> Dict[str, Any]:
    """Turn a declare modal submission into the response Slack expects."""

    try:
        submission = extract_submission(payload)
    except IncidentValidationError as exc:
        logger.info("incident_submission_rejected", block_id=exc.block_id, reason=str(exc))
        return field_errors(exc.block_id, str(exc))

    try:
        declared = declare_incident(organization_id=organization_id, submission=submission, slack=slack)
    except Exception:
        logger.exception("incident_declare_failed", organization_id=organization_id)
        return field_errors(TITLE_BLOCK_ID, INTERNAL_ERROR_MESSAGE)

    enqueue_declare_followups(
        jobs,
        organization_id=organization_id,
        slack_user_id=submission.slack_user_id,
        declared=declared,
    )
    return clear_modal()
