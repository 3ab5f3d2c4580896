"""
Data contracts for storefront library notifications.

A notification tells us a user's library changed on a storefront.
Delivery is at-least-once, so every notification carries (or is
given) an idempotency key.
"""

import hashlib
import json
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, field_validator


class LibraryNotification(BaseModel):
    """Webhook payload announcing new or changed library entries."""

    storefront_id: str = Field(..., min_length=1, description="Storefront that sent the event")
    user_id: str = Field(..., min_length=1, description="Owner of the library")
    entries: list[dict[str, Any]] = Field(
        default_factory=list,
        description="Raw storefront records, in the storefront's own layout",
    )
    idempotency_key: str | None = Field(
        default=None,
        description="Sender-supplied deduplication key",
    )

    @field_validator("storefront_id")
    @classmethod
    def normalize_storefront(cls, v: str) -> str:
        return v.strip().lower()

    def derived_key(self) -> str:
        """Content hash used when the sender supplies no key."""
        payload = json.dumps(
            {
                "storefront_id": self.storefront_id,
                "user_id": self.user_id,
                "entries": self.entries,
            },
            sort_keys=True,
            default=str,
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    @property
    def key(self) -> str:
        return self.idempotency_key or self.derived_key()


class NotificationReceipt(BaseModel):
    """Acknowledgement returned once a notification is durably accepted."""

    idempotency_key: str
    duplicate: bool = Field(default=False, description="Already processed; nothing was done")
    accepted: int = Field(default=0, description="Entries upserted")
    enqueued: int = Field(default=0, description="Entries queued for resolution")
    rejected: list[str] = Field(default_factory=list, description="Entries that failed to parse")
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
