"""Per-organization incident number allocation."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from slack_incident_engine.models import IncidentCounter

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def next_incident_number(session: Session, organization_id: int) -> int:
    """Atomically bump and return the organization's incident counter.

    The counter row is created on first use; the first number handed out is 1.
    On PostgreSQL and SQLite this is a single ``INSERT .. ON CONFLICT DO UPDATE
    .. RETURNING`` statement, so the row lock is taken and held by the caller's
    transaction. Other backends fall back to ``SELECT .. FOR UPDATE``.
    """

    insert = _UPSERT_DIALECTS.get(session.get_bind().dialect.name)
    if insert is not None:
        statement = insert(IncidentCounter).values(organization_id=organization_id, last_number=1)
        statement = statement.on_conflict_do_update(
            index_elements=[IncidentCounter.organization_id],
            set_={"last_number": IncidentCounter.last_number + 1},
        ).returning(IncidentCounter.last_number)
        return session.execute(statement).scalar_one()

    counter = session.execute(
        select(IncidentCounter)
        .where(IncidentCounter.organization_id == organization_id)
        .with_for_update()
    ).scalar_one_or_none()
    if counter is None:
        counter = IncidentCounter(organization_id=organization_id, last_number=0)
        session.add(counter)
    counter.last_number += 1
    session.flush()
    return counter.last_number
