"""Queries and lazy upserts used by the incident workflows."""

from __future__ import annotations

from typing import List

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from slack_incident_engine.models import ACTIVE_STATUSES, Incident, SlackChannel, SlackUser

ACTIVE_LISTING_LIMIT = 10


def find_or_create_slack_user(session: Session, *, organization_id: int, slack_user_id: str) -> tuple[SlackUser, bool]:
    """Return the cached member row, creating an empty one on first reference."""

    user = session.execute(
        select(SlackUser).where(
            SlackUser.organization_id == organization_id,
            SlackUser.slack_user_id == slack_user_id,
        )
    ).scalar_one_or_none()
    if user is not None:
        return user, False

    user = SlackUser(organization_id=organization_id, slack_user_id=slack_user_id)
    session.add(user)
    session.flush()
    return user, True


def find_incident_for_channel(session: Session, *, organization_id: int, channel_id: str | None) -> Incident | None:
    if not channel_id:
        return None
    return session.execute(
        select(Incident)
        .join(SlackChannel, SlackChannel.incident_id == Incident.id)
        .options(joinedload(Incident.slack_channel))
        .where(
            SlackChannel.slack_channel_id == channel_id,
            Incident.organization_id == organization_id,
        )
    ).scalar_one_or_none()


def list_active_incidents(session: Session, *, organization_id: int, limit: int = ACTIVE_LISTING_LIMIT) -> List[Incident]:
    """Most recently declared unresolved incidents that have a channel."""

    return list(
        session.execute(
            select(Incident)
            .join(SlackChannel, SlackChannel.incident_id == Incident.id)
            .options(joinedload(Incident.slack_channel))
            .where(
                Incident.organization_id == organization_id,
                Incident.status.in_(ACTIVE_STATUSES),
            )
            .order_by(Incident.declared_at.desc())
            .limit(limit)
        ).scalars().all()
    )
