"""Per-organization gateway over the Slack Web API."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Sequence

import structlog
from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError

HISTORY_PAGE_SIZE = 100

logger = structlog.get_logger(__name__)


class SlackGatewayError(Exception):
    """Raised when a Slack Web API call fails or answers with ``ok: false``."""

    def __init__(self, method: str, error: str) -> None:
        super().__init__(f"Slack API error: {error} for {method}")
        self.method = method
        self.error = error


class SlackClient:
    """Encapsulate the Slack calls the incident workflows make.

    One instance is built per request from the organization's bot token, or
    around an injected client in tests.
    """

    def __init__(self, *, token: str | None = None, client: WebClient | None = None) -> None:
        if client is None and token is None:
            raise ValueError("Either an instantiated client or a bot token must be provided.")

        self._client = client or WebClient(token=token)

    def _call(self, method: str, **kwargs: Any) -> Mapping[str, Any]:
        func = getattr(self._client, method)
        try:
            response = func(**kwargs)
        except SlackApiError as exc:
            error = exc.response.get("error") if getattr(exc, "response", None) else str(exc)
            logger.error("slack_call_failed", method=method, error=error)
            raise SlackGatewayError(method, error or "unknown_slack_error") from exc

        if not response.get("ok"):
            error = response.get("error") or "unknown_slack_error"
            logger.error("slack_call_failed", method=method, error=error)
            raise SlackGatewayError(method, error)
        return response

    def open_view(self, *, trigger_id: str, view: Mapping[str, Any]) -> Mapping[str, Any]:
        return self._call("views_open", trigger_id=trigger_id, view=dict(view))

    def create_channel(self, *, name: str, is_private: bool = False) -> Mapping[str, Any]:
        """Create a channel and return Slack's ``channel`` object."""

        response = self._call("conversations_create", name=name, is_private=is_private)
        return response["channel"]

    def invite_users(self, *, channel: str, users: Sequence[str]) -> Mapping[str, Any]:
        return self._call("conversations_invite", channel=channel, users=",".join(users))

    def post_message(
        self,
        *,
        channel: str,
        text: str,
        blocks: Sequence[Mapping[str, Any]] | None = None,
        **extra: Any,
    ) -> Mapping[str, Any]:
        """Post a message with optional Block Kit content to a Slack channel."""

        if blocks is not None:
            extra["blocks"] = list(blocks)
        return self._call("chat_postMessage", channel=channel, text=text, **extra)

    def set_topic(self, *, channel: str, topic: str) -> Mapping[str, Any]:
        return self._call("conversations_setTopic", channel=channel, topic=topic)

    def set_purpose(self, *, channel: str, purpose: str) -> Mapping[str, Any]:
        return self._call("conversations_setPurpose", channel=channel, purpose=purpose)

    def add_pin(self, *, channel: str, timestamp: str) -> Mapping[str, Any]:
        return self._call("pins_add", channel=channel, timestamp=timestamp)

    def fetch_history(self, *, channel: str) -> List[Dict[str, Any]]:
        """Return every message in *channel*, following pagination cursors."""

        messages: List[Dict[str, Any]] = []
        cursor: str | None = None
        while True:
            params: Dict[str, Any] = {"channel": channel, "limit": HISTORY_PAGE_SIZE}
            if cursor:
                params["cursor"] = cursor
            response = self._call("conversations_history", **params)
            messages.extend(response.get("messages") or [])
            cursor = (response.get("response_metadata") or {}).get("next_cursor")
            if not cursor:
                return messages

    def list_users(self, *, limit: int = 200) -> List[Dict[str, Any]]:
        response = self._call("users_list", limit=limit)
        return list(response.get("members") or [])
