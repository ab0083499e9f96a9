"""Webhook signature validation and payload parsing."""

from __future__ import annotations

import hashlib
import hmac
import json

from pydantic import ValidationError

from pushflight.errors import PayloadError
from pushflight.webhooks.models import PushPayload, WebhookEvent


def compute_signature(secret: str, body: bytes) -> str:
    """Return the ``sha1=<hex>`` signature GitHub sends for ``body``."""
    return "sha1=" + hmac.new(secret.encode(), body, hashlib.sha1).hexdigest()


def verify_signature(secret: str, body: bytes, signature: str | None) -> bool:
    """Validate a GitHub webhook HMAC-SHA1 signature in constant time.

    A missing signature, or no secret configured, is a failed verification.
    """
    if not secret:
        return False
    if not signature:
        return False
    expected = compute_signature(secret, body).encode()
    presented = signature.encode("utf-8", errors="replace")
    # compare_digest does not short-circuit on the first differing byte.
    return hmac.compare_digest(expected, presented)


def parse_push_event(body: bytes, signature: str | None = None) -> WebhookEvent:
    """Parse an authenticated request body into a WebhookEvent.

    Raises PayloadError only when the body is not JSON. Any JSON document
    without a string ``ref`` (a ``ping``, an issue event, a bare list) gives
    an event whose ``ref`` is None.
    """
    try:
        data = json.loads(body)
    except ValueError as e:
        raise PayloadError(f"Malformed push payload: {e}") from e

    ref = None
    if isinstance(data, dict):
        try:
            ref = PushPayload.model_validate(data).ref
        except ValidationError:
            ref = None
    return WebhookEvent(body=body, signature=signature, ref=ref)
