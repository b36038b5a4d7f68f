"""Classification of modal submissions and block actions.

Slack never calls back when a user cancels or closes a modal, so there is no
route for it and nothing may wait on one.
"""

from __future__ import annotations

from dataclasses import dataclass

from .payloads import InteractionPayload

DECLARE_CALLBACK_ID = "incident_declare"
RESOLVE_CALLBACK_ID = "incident_resolve"
RESOLVE_BUTTON_ACTION_ID = "resolve_button"
STATUS_SELECT_ACTION_ID = "update_status_select"

_VIEW_ACTIONS = {
    DECLARE_CALLBACK_ID: "create_incident",
    RESOLVE_CALLBACK_ID: "resolve_incident",
}
_BLOCK_ACTIONS = {
    RESOLVE_BUTTON_ACTION_ID: "resolve_incident_button",
    STATUS_SELECT_ACTION_ID: "update_incident_status",
}


@dataclass(frozen=True)
class RoutedInteraction:
    action: str
    payload: InteractionPayload
    callback_id: str | None = None
    action_id: str | None = None


def route_interaction(interaction_type: str, payload: InteractionPayload) -> RoutedInteraction:
    if interaction_type == "view_submission":
        callback_id = payload.view.callback_id if payload.view else None
        action = _VIEW_ACTIONS.get(callback_id or "", "unknown_modal")
        return RoutedInteraction(action=action, payload=payload, callback_id=callback_id)

    if interaction_type == "block_actions":
        first = payload.first_action
        action_id = first.action_id if first else None
        action = _BLOCK_ACTIONS.get(action_id or "", "unknown_action")
        return RoutedInteraction(action=action, payload=payload, action_id=action_id)

    return RoutedInteraction(action="unknown", payload=payload)
