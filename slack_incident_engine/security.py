"""Verification of Slack request signatures."""

from __future__ import annotations

import hmac
import time
from hashlib import sha256


SLACK_SIGNATURE_HEADER = "X-Slack-Signature"
SLACK_TIMESTAMP_HEADER = "X-Slack-Request-Timestamp"
VERSION = "v0"
DEFAULT_TOLERANCE = 60 * 5  # replay window

MISSING_HEADERS = "missing_headers"
MALFORMED_TIMESTAMP = "malformed_timestamp"
STALE_TIMESTAMP = "stale_timestamp"
SIGNATURE_MISMATCH = "signature_mismatch"


def _to_text(body: str | bytes) -> str:
    if isinstance(body, bytes):
        return body.decode("utf-8")
    return body


def compute_signature(signing_secret: str, timestamp: str, body: str | bytes) -> str:
    """Return the ``v0=`` signature Slack would send for *body* at *timestamp*."""

    basestring = f"{VERSION}:{timestamp}:{_to_text(body)}".encode("utf-8")
    digest = hmac.new(signing_secret.encode("utf-8"), basestring, sha256).hexdigest()
    return f"{VERSION}={digest}"


def signature_problem(
    *,
    signing_secret: str,
    timestamp: str | None,
    body: str | bytes,
    signature: str | None,
    tolerance: int = DEFAULT_TOLERANCE,
) -> str | None:
    """Return why a Slack request must be rejected, or ``None`` when it is authentic.

    The freshness check runs before the HMAC so replayed requests are refused
    even when their signature is intact.
    """

    if not timestamp or not signature:
        return MISSING_HEADERS
    try:
        request_ts = int(timestamp)
    except (TypeError, ValueError):
        return MALFORMED_TIMESTAMP
    if abs(int(time.time()) - request_ts) > tolerance:
        return STALE_TIMESTAMP
    if not hmac.compare_digest(compute_signature(signing_secret, timestamp, body), signature):
        return SIGNATURE_MISMATCH
    return None


def is_valid_slack_request(
    *,
    signing_secret: str,
    timestamp: str | None,
    body: str | bytes,
    signature: str | None,
    tolerance: int = DEFAULT_TOLERANCE,
) -> bool:
    problem = signature_problem(
        signing_secret=signing_secret,
        timestamp=timestamp,
        body=body,
        signature=signature,
        tolerance=tolerance,
    )
    return problem is None
