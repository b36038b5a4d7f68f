"""Incident declaration and resolution driven from Slack."""

from .commands import Declare, Help, Resolve, parse_command
from .interactions import RoutedInteraction, route_interaction

__all__ = [
    "Declare",
    "Help",
    "Resolve",
    "parse_command",
    "RoutedInteraction",
    "route_interaction",
]
