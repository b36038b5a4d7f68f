"""Block Kit modal for declaring an incident.

Submit triggers a ``view_submission``; Cancel, the close button and Esc are
handled entirely by the Slack client.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List

from slack_incident_engine.models import Severity

from .interactions import DECLARE_CALLBACK_ID

TITLE_BLOCK_ID = "title_block"
TITLE_ACTION_ID = "title_input"
DESCRIPTION_BLOCK_ID = "description_block"
DESCRIPTION_ACTION_ID = "description_input"
SEVERITY_BLOCK_ID = "severity_block"
SEVERITY_ACTION_ID = "severity_select"

DEFAULT_SEVERITY = Severity.SEV2

SEVERITY_LABELS = {
    Severity.SEV0: "SEV0 - Critical",
    Severity.SEV1: "SEV1 - High",
    Severity.SEV2: "SEV2 - Medium",
}


def _severity_option(severity: Severity) -> Dict[str, Any]:
    return {
        "text": {"type": "plain_text", "text": SEVERITY_LABELS[severity]},
        "value": severity.value,
    }


def _plain(text: str) -> Dict[str, Any]:
    return {"type": "plain_text", "text": text}


def build_declare_modal(*, title: str, channel_id: str | None = None) -> Dict[str, Any]:
    """Build the declare modal pre-filled with *title*."""

    blocks: List[Dict[str, Any]] = [
        {
            "type": "input",
            "block_id": TITLE_BLOCK_ID,
            "element": {
                "type": "plain_text_input",
                "action_id": TITLE_ACTION_ID,
                "initial_value": title,
            },
            "label": _plain("Incident Title"),
        },
        {
            "type": "input",
            "block_id": DESCRIPTION_BLOCK_ID,
            "optional": True,
            "element": {
                "type": "plain_text_input",
                "action_id": DESCRIPTION_ACTION_ID,
                "multiline": True,
            },
            "label": _plain("Description (optional)"),
        },
        {
            "type": "input",
            "block_id": SEVERITY_BLOCK_ID,
            "optional": True,
            "element": {
                "type": "static_select",
                "action_id": SEVERITY_ACTION_ID,
                "initial_option": _severity_option(DEFAULT_SEVERITY),
                "options": [_severity_option(severity) for severity in Severity],
            },
            "label": _plain("Severity (optional)"),
        },
    ]

    return {
        "type": "modal",
        "callback_id": DECLARE_CALLBACK_ID,
        "private_metadata": json.dumps({"channel_id": channel_id}) if channel_id else "",
        "title": _plain("Declare Incident"),
        "submit": _plain("Declare"),
        "close": _plain("Cancel"),
        "blocks": blocks,
    }
