"""Slack Incident Engine package initialisation."""

from .config import AppSettings, get_settings  # noqa: F401
from .db import Base, get_engine, get_session_factory, session_scope  # noqa: F401
from .logging_config import configure_logging  # noqa: F401
from .models import (  # noqa: F401
    Incident,
    IncidentCounter,
    Organization,
    SlackChannel,
    SlackInstallation,
    SlackUser,
)

__all__ = [
    "AppSettings",
    "get_settings",
    "Base",
    "get_engine",
    "get_session_factory",
    "session_scope",
    "Organization",
    "SlackInstallation",
    "IncidentCounter",
    "Incident",
    "SlackChannel",
    "SlackUser",
    "configure_logging",
]
