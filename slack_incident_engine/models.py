"""SQLAlchemy models for tenants, incidents and their Slack counterparts."""

from __future__ import annotations

import re
import unicodedata
from datetime import UTC, datetime
from enum import Enum
from typing import List

from sqlalchemy import (
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from slack_incident_engine.db import Base

MAX_TITLE_LENGTH = 100


class Severity(str, Enum):
    SEV0 = "sev0"
    SEV1 = "sev1"
    SEV2 = "sev2"

    @property
    def label(self) -> str:
        return self.value.upper()


class IncidentStatus(str, Enum):
    INVESTIGATING = "investigating"
    IDENTIFIED = "identified"
    MONITORING = "monitoring"
    RESOLVED = "resolved"


ACTIVE_STATUSES = (
    IncidentStatus.INVESTIGATING,
    IncidentStatus.IDENTIFIED,
    IncidentStatus.MONITORING,
)


class SlugConflictError(Exception):
    """Raised when an organization slug derived from its name is already taken."""


class InvalidResolutionError(Exception):
    """Raised when an incident would be resolved before it was declared."""


def _utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive timestamps read back from SQLite."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parameterize(text: str) -> str:
    """Return a lowercase, hyphen-separated ASCII slug for *text*."""

    ascii_text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", ascii_text.lower())
    return slug.strip("-")


def normalize_slug(name: str) -> str:
    if not name:
        return ""
    slug = re.sub(r"[^a-z0-9\s\-]", "", name.lower())
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip().strip("-")


class Organization(Base):
    """A tenant: one Slack workspace installation and everything it owns."""

    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    installation: Mapped["SlackInstallation"] = relationship(
        "SlackInstallation", back_populates="organization", uselist=False, cascade="all, delete-orphan"
    )
    incident_counter: Mapped["IncidentCounter"] = relationship(
        "IncidentCounter", back_populates="organization", uselist=False, cascade="all, delete-orphan"
    )
    incidents: Mapped[List["Incident"]] = relationship(
        "Incident", back_populates="organization", cascade="all, delete-orphan"
    )
    slack_users: Mapped[List["SlackUser"]] = relationship(
        "SlackUser", back_populates="organization", cascade="all, delete-orphan"
    )


@event.listens_for(Session, "before_flush")
def _assign_organization_slugs(session: Session, _flush_context, _instances) -> None:
    for instance in session.new:
        if not isinstance(instance, Organization) or instance.slug or not instance.name:
            continue
        base_slug = normalize_slug(instance.name)
        with session.no_autoflush:
            taken = session.execute(
                select(Organization.id).where(Organization.slug == base_slug)
            ).first()
        if taken is not None:
            raise SlugConflictError(
                f"Organization with slug '{base_slug}' already exists. "
                f"Cannot derive a unique slug from name '{instance.name}'."
            )
        instance.slug = base_slug


class SlackInstallation(Base):
    """Bot credentials for one Slack team, owned by an organization."""

    __tablename__ = "slack_installations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    team_id: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    bot_user_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    bot_access_token: Mapped[str] = mapped_column(String(255), nullable=False)
    installed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    organization: Mapped[Organization] = relationship("Organization", back_populates="installation")


class IncidentCounter(Base):
    """Per-organization incident number sequence; only touched by ``next_incident_number``."""

    __tablename__ = "incident_counters"

    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), primary_key=True
    )
    last_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    organization: Mapped[Organization] = relationship("Organization", back_populates="incident_counter")


class SlackUser(Base):
    """Per-organization cache of a Slack member; profile fields fill in asynchronously."""

    __tablename__ = "slack_users"
    __table_args__ = (
        UniqueConstraint("organization_id", "slack_user_id", name="uq_slack_users_org_member"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    slack_user_id: Mapped[str] = mapped_column(String(32), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    real_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)

    organization: Mapped[Organization] = relationship("Organization", back_populates="slack_users")

    @property
    def needs_profile(self) -> bool:
        return not (self.display_name and self.real_name and self.avatar_url)

    @property
    def best_name(self) -> str:
        return self.display_name or self.real_name or f"<@{self.slack_user_id}>"


class Incident(Base):
    """The incident aggregate declared and resolved from Slack."""

    __tablename__ = "incidents"
    __table_args__ = (
        UniqueConstraint("organization_id", "number", name="uq_incidents_org_number"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(MAX_TITLE_LENGTH), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    severity: Mapped[Severity] = mapped_column(
        SAEnum(Severity, values_callable=lambda enum: [item.value for item in enum], native_enum=False),
        nullable=False,
        default=Severity.SEV2,
    )
    status: Mapped[IncidentStatus] = mapped_column(
        SAEnum(IncidentStatus, values_callable=lambda enum: [item.value for item in enum], native_enum=False),
        nullable=False,
        default=IncidentStatus.INVESTIGATING,
    )
    slack_creator_id: Mapped[int | None] = mapped_column(
        ForeignKey("slack_users.id", ondelete="SET NULL"), nullable=True
    )
    declared_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    organization: Mapped[Organization] = relationship("Organization", back_populates="incidents")
    slack_creator: Mapped[SlackUser | None] = relationship("SlackUser")
    slack_channel: Mapped["SlackChannel"] = relationship(
        "SlackChannel", back_populates="incident", uselist=False, cascade="all, delete-orphan"
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_resolved(self) -> bool:
        return self.status == IncidentStatus.RESOLVED

    @property
    def duration_seconds(self) -> int:
        if self.resolved_at is None or self.declared_at is None:
            return 0
        return int((as_utc(self.resolved_at) - as_utc(self.declared_at)).total_seconds())

    @property
    def slug(self) -> str:
        return f"{parameterize(self.title)}-{self.id}"

    def check_resolution_time(self, resolved_at: datetime) -> None:
        if as_utc(resolved_at) < as_utc(self.declared_at):
            raise InvalidResolutionError(
                f"Incident #{self.number} cannot be resolved before it was declared"
            )


class SlackChannel(Base):
    """The dedicated Slack channel created for exactly one incident."""

    __tablename__ = "slack_channels"
    __table_args__ = (
        UniqueConstraint("incident_id", name="uq_slack_channels_incident"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    incident_id: Mapped[int] = mapped_column(
        ForeignKey("incidents.id", ondelete="CASCADE"), nullable=False
    )
    slack_channel_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(80), nullable=False)

    incident: Mapped[Incident] = relationship("Incident", back_populates="slack_channel")

    def deep_link(self, team_id: str) -> str:
        return f"https://app.slack.com/client/{team_id}/{self.slack_channel_id}"
