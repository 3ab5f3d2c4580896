"""
Library entry records.

A LibraryEntry is one storefront-owned title in a user's library
together with its resolution state. Entries are immutable: every
state change produces a new record for the caller to persist.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from game_library.storefronts import StoreRecord

# (storefront_id, store_game_id)
ResolutionKey = tuple[str, str]


class ResolutionStatus(str, Enum):
    """Resolution state of a library entry."""

    UNRESOLVED = "unresolved"
    RESOLVED = "resolved"
    AMBIGUOUS = "ambiguous"  # Needs approval, candidates kept
    FAILED = "failed"

    @classmethod
    def pending(cls) -> frozenset["ResolutionStatus"]:
        """Statuses a bulk pass considers (see LibraryEntry.awaits_resolution)."""
        return frozenset({cls.UNRESOLVED, cls.AMBIGUOUS, cls.FAILED})


class FailureKind(str, Enum):
    """Why an entry is Failed."""

    NO_MATCH = "no_match"  # No candidate reached the floor
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    UNMATCHED = "unmatched"  # Match removed by the user

    @property
    def retried_automatically(self) -> bool:
        return self in (FailureKind.NO_MATCH, FailureKind.TRANSIENT)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LibraryEntry:
    """A storefront title owned by a user."""

    storefront_id: str
    store_game_id: str
    raw_title: str
    resolved_id: int | None = None
    status: ResolutionStatus = ResolutionStatus.UNRESOLVED
    user_id: str = ""
    confidence: float | None = None
    failure: FailureKind | None = None
    candidates: tuple[int, ...] = ()
    release_year: int | None = None
    developers: tuple[str, ...] = ()
    error: str | None = None
    added_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime | None = None

    @property
    def key(self) -> ResolutionKey:
        """Resolution key shared by every user owning this store game."""
        return (self.storefront_id, self.store_game_id)

    @property
    def storage_key(self) -> tuple[str, str, str]:
        """Key of this entry in the library store."""
        return (self.user_id, self.storefront_id, self.store_game_id)

    @property
    def is_resolved(self) -> bool:
        return self.status == ResolutionStatus.RESOLVED

    @property
    def retryable(self) -> bool:
        return self.failure == FailureKind.TRANSIENT

    @property
    def awaits_resolution(self) -> bool:
        """Whether a bulk pass should attempt this entry again."""
        if self.status == ResolutionStatus.FAILED:
            return self.failure is None or self.failure.retried_automatically
        return self.status in ResolutionStatus.pending()

    @classmethod
    def from_store_record(cls, record: StoreRecord, *, user_id: str = "") -> "LibraryEntry":
        """Create an unresolved entry from a normalized storefront record."""
        return cls(
            storefront_id=record.storefront.value,
            store_game_id=record.store_game_id,
            raw_title=record.title,
            user_id=user_id,
            release_year=record.release_year,
            developers=record.developers,
        )

    def resolved(self, catalog_id: int, confidence: float) -> "LibraryEntry":
        return replace(
            self,
            resolved_id=catalog_id,
            status=ResolutionStatus.RESOLVED,
            confidence=confidence,
            failure=None,
            candidates=(),
            error=None,
            updated_at=_utcnow(),
        )

    def ambiguous(self, candidates: tuple[int, ...], confidence: float | None) -> "LibraryEntry":
        return replace(
            self,
            resolved_id=None,
            status=ResolutionStatus.AMBIGUOUS,
            confidence=confidence,
            failure=None,
            candidates=candidates,
            error=None,
            updated_at=_utcnow(),
        )

    def failed(self, error: str, *, kind: FailureKind = FailureKind.NO_MATCH) -> "LibraryEntry":
        return replace(
            self,
            resolved_id=None,
            status=ResolutionStatus.FAILED,
            confidence=None,
            failure=kind,
            candidates=(),
            error=error,
            updated_at=_utcnow(),
        )

    def retitled(self, record: StoreRecord) -> "LibraryEntry":
        """Refresh storefront-reported fields, keeping resolution state."""
        return replace(
            self,
            raw_title=record.title,
            release_year=record.release_year or self.release_year,
            developers=record.developers or self.developers,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible document."""
        return {
            "storefront_id": self.storefront_id,
            "store_game_id": self.store_game_id,
            "raw_title": self.raw_title,
            "resolved_id": self.resolved_id,
            "status": self.status.value,
            "user_id": self.user_id,
            "confidence": self.confidence,
            "failure": self.failure.value if self.failure else None,
            "candidates": list(self.candidates),
            "release_year": self.release_year,
            "developers": list(self.developers),
            "error": self.error,
            "added_at": self.added_at.isoformat(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, doc: dict[str, Any]) -> "LibraryEntry":
        """Rebuild an entry from a document written by to_dict()."""
        updated_at = doc.get("updated_at")
        return cls(
            storefront_id=doc["storefront_id"],
            store_game_id=str(doc["store_game_id"]),
            raw_title=doc["raw_title"],
            resolved_id=doc.get("resolved_id"),
            status=ResolutionStatus(doc.get("status", ResolutionStatus.UNRESOLVED.value)),
            user_id=doc.get("user_id", ""),
            confidence=doc.get("confidence"),
            failure=FailureKind(doc["failure"]) if doc.get("failure") else None,
            candidates=tuple(doc.get("candidates", ())),
            release_year=doc.get("release_year"),
            developers=tuple(doc.get("developers", ())),
            error=doc.get("error"),
            added_at=datetime.fromisoformat(doc["added_at"]) if doc.get("added_at") else _utcnow(),
            updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
        )
