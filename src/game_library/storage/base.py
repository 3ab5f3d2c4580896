"""
Persistence interface for library entries, mappings and the
webhook notification ledger.

Implementations raise StorageError for any backend failure.
"""

from collections.abc import Collection
from typing import Protocol, runtime_checkable

from game_library.catalog.models import ExternalGameMapping
from game_library.library.models import LibraryEntry, ResolutionStatus


@runtime_checkable
class LibraryStore(Protocol):
    """Durable store used by the resolution pipeline and refresh coordinator."""

    async def get_entry(
        self, user_id: str, storefront_id: str, store_game_id: str
    ) -> LibraryEntry | None: ...

    async def put_entry(self, entry: LibraryEntry) -> None: ...

    async def list_entries(
        self,
        *,
        statuses: Collection[ResolutionStatus] | None = None,
        user_id: str | None = None,
    ) -> list[LibraryEntry]: ...

    async def get_mapping(
        self, storefront_id: str, store_game_id: str
    ) -> ExternalGameMapping | None: ...

    async def put_mapping(self, mapping: ExternalGameMapping) -> None: ...

    async def delete_mapping(self, storefront_id: str, store_game_id: str) -> bool: ...

    async def list_mappings(self) -> list[ExternalGameMapping]: ...

    async def has_notification(self, idempotency_key: str) -> bool: ...

    async def record_notification(self, idempotency_key: str) -> None: ...
