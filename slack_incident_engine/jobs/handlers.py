"""Handlers for the follow-up jobs enqueued by the incident workflows."""

from __future__ import annotations

from typing import Any, Dict, Mapping

import structlog
from sqlalchemy import select
from sqlalchemy.orm import joinedload

from slack_incident_engine.config import get_settings
from slack_incident_engine.db import session_scope
from slack_incident_engine.incidents import analytics
from slack_incident_engine.incidents.messages import (
    build_channel_purpose,
    build_channel_topic,
    build_commander_card,
)
from slack_incident_engine.incidents.storage import find_or_create_slack_user
from slack_incident_engine.models import Incident, SlackUser
from slack_incident_engine.slack_client import SlackGatewayError

from .queue import Job, JobQueue, JobSpec, JobType, RetryJob

logger = structlog.get_logger(__name__)

AVATAR_SIZES = ("image_512", "image_192", "image_72", "image_48", "image_32", "image_original")
TERMINAL_PROFILE_ERRORS = {"user_not_found", "account_inactive"}


def select_avatar_url(profile: Mapping[str, Any]) -> str | None:
    for size in AVATAR_SIZES:
        url = profile.get(size)
        if url:
            return url
    return profile.get("image") or None


def _load_incident(session, incident_id: int) -> Incident | None:
    return session.execute(
        select(Incident)
        .options(joinedload(Incident.slack_channel))
        .where(Incident.id == incident_id)
    ).scalar_one_or_none()


def fetch_slack_user_profile(queue: JobQueue, job: Job) -> None:
    """Fill a cached member's profile from ``users.list``."""

    organization_id = job.payload["organization_id"]
    slack_user_id = job.payload["slack_user_id"]
    log = logger.bind(organization_id=organization_id, slack_user_id=slack_user_id)
    slack = queue.slack_for(organization_id)

    profile_update: Dict[str, Any]
    try:
        members = slack.list_users(limit=200)
    except SlackGatewayError as exc:
        if exc.error not in TERMINAL_PROFILE_ERRORS:
            raise
        log.warning("slack_profile_unavailable", error=exc.error)
        profile_update = {"display_name": "Unknown User", "real_name": "User Not Found"}
    else:
        member = next((item for item in members if item.get("id") == slack_user_id), None)
        if member is None:
            log.error("slack_profile_not_listed")
            return
        profile = member.get("profile") or {}
        profile_update = {
            "display_name": profile.get("display_name") or None,
            "real_name": member.get("real_name") or profile.get("real_name") or None,
            "email": profile.get("email") or None,
            "title": profile.get("title") or None,
            "avatar_url": select_avatar_url(profile),
        }

    with session_scope() as session:
        user = session.execute(
            select(SlackUser).where(
                SlackUser.organization_id == organization_id,
                SlackUser.slack_user_id == slack_user_id,
            )
        ).scalar_one_or_none()
        if user is None:
            log.warning("slack_user_missing")
            return
        for key, value in profile_update.items():
            setattr(user, key, value)

    log.info("slack_profile_updated", has_avatar=bool(profile_update.get("avatar_url")))


def post_user_profile_message(queue: JobQueue, job: Job) -> None:
    """Post the commander card once the declaring member's profile is cached."""

    incident_id = job.payload["incident_id"]
    slack_user_id = job.payload["slack_user_id"]
    log = logger.bind(incident_id=incident_id, slack_user_id=slack_user_id)

    with session_scope() as session:
        incident = _load_incident(session, incident_id)
        if incident is None or incident.slack_channel is None:
            log.warning("profile_message_skipped", reason="no_channel")
            return
        user = session.execute(
            select(SlackUser).where(
                SlackUser.organization_id == incident.organization_id,
                SlackUser.slack_user_id == slack_user_id,
            )
        ).scalar_one_or_none()
        if user is None:
            log.warning("profile_message_skipped", reason="no_user")
            return
        if not (user.avatar_url or user.real_name):
            raise RetryJob(f"Profile for {slack_user_id} not fetched yet")
        organization_id = incident.organization_id
        message = build_commander_card(
            incident=incident,
            user=user,
            channel_id=incident.slack_channel.slack_channel_id,
        )

    queue.slack_for(organization_id).post_message(**message)
    log.info("profile_message_posted")


def update_slack_channel_metadata(queue: JobQueue, job: Job) -> None:
    """Set topic and purpose, then pin a link back to the incident page."""

    incident_id = job.payload["incident_id"]
    log = logger.bind(incident_id=incident_id)

    with session_scope() as session:
        incident = _load_incident(session, incident_id)
        if incident is None or incident.slack_channel is None:
            log.warning("channel_metadata_skipped", reason="no_channel")
            return
        organization_id = incident.organization_id
        channel_id = incident.slack_channel.slack_channel_id
        topic = build_channel_topic(incident)
        purpose = build_channel_purpose(incident)
        incident_url = f"{get_settings().app_base_url}/incidents/{incident.slug}"

    slack = queue.slack_for(organization_id)
    slack.set_topic(channel=channel_id, topic=topic)
    slack.set_purpose(channel=channel_id, purpose=purpose)
    log.info("channel_topic_updated", topic=topic)

    if not job.payload.get("pin_link", True):
        return
    try:
        response = slack.post_message(
            channel=channel_id,
            text=f":link: Incident Link: {incident_url}",
            unfurl_links=False,
            unfurl_media=False,
        )
        ts = (response.get("message") or {}).get("ts") or response.get("ts")
        if ts:
            slack.add_pin(channel=channel_id, timestamp=ts)
            log.info("incident_link_pinned")
    except SlackGatewayError as exc:
        log.warning("incident_link_pin_failed", error=exc.error)


def gather_incident_analytics(queue: JobQueue, job: Job) -> None:
    """Summarise a resolved incident's channel and log the report."""

    incident_id = job.payload["incident_id"]
    log = logger.bind(incident_id=incident_id)

    with session_scope() as session:
        incident = _load_incident(session, incident_id)
        if incident is None or incident.slack_channel is None:
            log.warning("incident_analytics_skipped", reason="no_channel")
            return
        if not incident.is_resolved:
            log.warning("incident_analytics_skipped", reason="not_resolved")
            return
        organization_id = incident.organization_id
        channel_id = incident.slack_channel.slack_channel_id
        channel_name = incident.slack_channel.name

    messages = queue.slack_for(organization_id).fetch_history(channel=channel_id)
    people = analytics.human_messages(messages)

    names: Dict[str, str] = {}
    created = []
    with session_scope() as session:
        for slack_user_id in analytics.participant_ids(people):
            user, was_created = find_or_create_slack_user(
                session, organization_id=organization_id, slack_user_id=slack_user_id
            )
            if was_created:
                created.append(slack_user_id)
            if user.display_name or user.real_name:
                names[slack_user_id] = user.display_name or user.real_name
        incident = _load_incident(session, incident_id)
        report = analytics.build_report(
            incident=incident,
            channel_name=channel_name,
            messages=messages,
            names=names,
        )

    for slack_user_id in created:
        queue.enqueue(
            JobType.FETCH_SLACK_USER_PROFILE,
            organization_id=organization_id,
            slack_user_id=slack_user_id,
        )

    log.info("incident_analytics", **report)


JOB_HANDLERS: Mapping[str, JobSpec] = {
    JobType.FETCH_SLACK_USER_PROFILE.value: JobSpec(fetch_slack_user_profile, max_attempts=4),
    JobType.POST_USER_PROFILE_MESSAGE.value: JobSpec(post_user_profile_message, max_attempts=3),
    JobType.UPDATE_SLACK_CHANNEL_METADATA.value: JobSpec(update_slack_channel_metadata, max_attempts=4),
    JobType.GATHER_INCIDENT_ANALYTICS.value: JobSpec(gather_incident_analytics, max_attempts=3),
}
