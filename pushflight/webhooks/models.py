"""Webhook event models."""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict


class PushPayload(BaseModel):
    """The part of a GitHub push notification this service reads.

    Other events delivered to the same hook (``ping``, issues, pull requests)
    carry no ``ref``.
    """

    model_config = ConfigDict(extra="allow")

    ref: str | None = None


@dataclass(frozen=True)
class WebhookEvent:
    body: bytes
    signature: str | None
    ref: str | None

    @property
    def branch(self) -> str | None:
        if self.ref is None:
            return None
        return self.ref.removeprefix("refs/heads/")
