"""Typed models for the Slack payloads the incident endpoints accept."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Mapping

from pydantic import BaseModel, Field, ValidationError


class InvalidPayloadError(ValueError):
    """Raised when an inbound Slack payload does not have the expected shape."""


class SlackRef(BaseModel):
    id: str


class SelectedOption(BaseModel):
    value: str


class ElementState(BaseModel):
    """State of a single input element inside a submitted modal."""

    value: str | None = None
    selected_option: SelectedOption | None = None


class ViewState(BaseModel):
    values: Dict[str, Dict[str, ElementState]] = Field(default_factory=dict)


class SlackView(BaseModel):
    id: str | None = None
    callback_id: str = ""
    private_metadata: str = ""
    state: ViewState = Field(default_factory=ViewState)

    def metadata(self) -> Dict[str, Any]:
        if not self.private_metadata:
            return {}
        try:
            data = json.loads(self.private_metadata)
        except json.JSONDecodeError:
            return {}
        return data if isinstance(data, dict) else {}


class BlockAction(BaseModel):
    action_id: str
    block_id: str | None = None
    value: str | None = None
    selected_option: SelectedOption | None = None


class SlashCommand(BaseModel):
    """Form fields Slack posts to the slash-command endpoint."""

    command: str = ""
    text: str = ""
    team_id: str
    user_id: str
    trigger_id: str | None = None
    channel_id: str | None = None


class InteractionPayload(BaseModel):
    """The JSON document carried in the ``payload`` field of an interaction."""

    type: str
    team: SlackRef | None = None
    user: SlackRef | None = None
    channel: SlackRef | None = None
    trigger_id: str | None = None
    view: SlackView | None = None
    actions: List[BlockAction] = Field(default_factory=list)

    @property
    def user_id(self) -> str | None:
        return self.user.id if self.user else None

    @property
    def channel_id(self) -> str | None:
        return self.channel.id if self.channel else None

    @property
    def first_action(self) -> BlockAction | None:
        return self.actions[0] if self.actions else None

    def input_value(self, block_id: str, action_id: str) -> str | None:
        if self.view is None:
            return None
        element = self.view.state.values.get(block_id, {}).get(action_id)
        if element is None:
            return None
        return element.value

    def selected_value(self, block_id: str, action_id: str) -> str | None:
        if self.view is None:
            return None
        element = self.view.state.values.get(block_id, {}).get(action_id)
        if element is None or element.selected_option is None:
            return None
        return element.selected_option.value


def parse_slash_command(form: Mapping[str, Any]) -> SlashCommand:
    try:
        return SlashCommand.model_validate(dict(form))
    except ValidationError as exc:
        raise InvalidPayloadError("Invalid slash command payload.") from exc


def parse_interaction(payload: Mapping[str, Any] | str) -> InteractionPayload:
    """Validate an interaction payload given as a mapping or its raw JSON text."""

    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise InvalidPayloadError("Interaction payload is not valid JSON.") from exc
    if not isinstance(payload, Mapping):
        raise InvalidPayloadError("Interaction payload must be an object.")
    try:
        return InteractionPayload.model_validate(dict(payload))
    except ValidationError as exc:
        raise InvalidPayloadError("Invalid interaction payload.") from exc
