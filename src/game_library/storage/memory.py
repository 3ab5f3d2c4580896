"""
In-memory library store.

Used by tests and single-process runs where durability does not matter.
"""

from collections.abc import Collection

from game_library.catalog.models import ExternalGameMapping
from game_library.library.models import LibraryEntry, ResolutionStatus


class InMemoryStore:
    """Dict-backed LibraryStore."""

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str, str], LibraryEntry] = {}
        self._mappings: dict[tuple[str, str], ExternalGameMapping] = {}
        self._notifications: set[str] = set()

    async def get_entry(
        self, user_id: str, storefront_id: str, store_game_id: str
    ) -> LibraryEntry | None:
        return self._entries.get((user_id, storefront_id, store_game_id))

    async def put_entry(self, entry: LibraryEntry) -> None:
        self._entries[entry.storage_key] = entry

    async def list_entries(
        self,
        *,
        statuses: Collection[ResolutionStatus] | None = None,
        user_id: str | None = None,
    ) -> list[LibraryEntry]:
        return [
            entry
            for entry in self._entries.values()
            if (statuses is None or entry.status in statuses)
            and (user_id is None or entry.user_id == user_id)
        ]

    async def get_mapping(
        self, storefront_id: str, store_game_id: str
    ) -> ExternalGameMapping | None:
        return self._mappings.get((storefront_id, store_game_id))

    async def put_mapping(self, mapping: ExternalGameMapping) -> None:
        self._mappings[mapping.key] = mapping

    async def delete_mapping(self, storefront_id: str, store_game_id: str) -> bool:
        return self._mappings.pop((storefront_id, store_game_id), None) is not None

    async def list_mappings(self) -> list[ExternalGameMapping]:
        return list(self._mappings.values())

    async def has_notification(self, idempotency_key: str) -> bool:
        return idempotency_key in self._notifications

    async def record_notification(self, idempotency_key: str) -> None:
        self._notifications.add(idempotency_key)
