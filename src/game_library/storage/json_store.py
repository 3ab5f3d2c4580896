"""
JSON document store on local disk.

Each collection (entries, mappings, notifications) is one JSON
document under the data directory. Documents are loaded once and
rewritten atomically (temp file + rename) on every write.
"""

import asyncio
import json
import os
from collections.abc import Collection
from pathlib import Path
from typing import Any

from game_library.catalog.models import ExternalGameMapping
from game_library.config import get_settings
from game_library.errors import StorageError
from game_library.library.models import LibraryEntry, ResolutionStatus
from game_library.logger import get_logger


def _entry_id(user_id: str, storefront_id: str, store_game_id: str) -> str:
    return f"{user_id}/{storefront_id}/{store_game_id}"


def _mapping_id(storefront_id: str, store_game_id: str) -> str:
    return f"{storefront_id}/{store_game_id}"


class JsonFileStore:
    """LibraryStore backed by one JSON document per collection, rewritten atomically."""

    def __init__(self, *, data_dir: Path | None = None) -> None:
        """
        Initialize the store.

        Args:
            data_dir: Directory for the documents (defaults to storage settings)
        """
        self._data_dir = data_dir or get_settings().storage.data_dir
        self._lock = asyncio.Lock()
        self._docs: dict[str, dict[str, Any]] = {}
        self._logger = get_logger(__name__, component="json_store")

    # File handling

    def _path(self, name: str) -> Path:
        return self._data_dir / f"{name}.json"

    def _load(self, name: str) -> dict[str, Any]:
        if name in self._docs:
            return self._docs[name]

        path = self._path(name)
        try:
            if path.exists():
                with path.open(encoding="utf-8") as f:
                    doc = json.load(f)
            else:
                doc = {}
        except (OSError, ValueError) as e:
            raise StorageError(
                f"Failed to read {path}",
                source="json_store",
                original_error=e,
            ) from e

        self._docs[name] = doc
        return doc

    def _flush(self, name: str) -> None:
        path = self._path(name)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            self._data_dir.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as f:
                json.dump(self._docs[name], f, indent=2, default=str)
            os.replace(tmp_path, path)
        except OSError as e:
            # Reload from disk next time so memory matches what was persisted
            self._docs.pop(name, None)
            raise StorageError(
                f"Failed to write {path}",
                source="json_store",
                original_error=e,
            ) from e

        self._logger.debug("Flushed document", document=name, records=len(self._docs[name]))

    async def _put(self, name: str, key: str, value: Any) -> None:
        async with self._lock:
            self._load(name)[key] = value
            self._flush(name)

    async def _delete(self, name: str, key: str) -> bool:
        async with self._lock:
            doc = self._load(name)
            if key not in doc:
                return False
            del doc[key]
            self._flush(name)
            return True

    async def _get(self, name: str, key: str) -> Any:
        async with self._lock:
            return self._load(name).get(key)

    async def _values(self, name: str) -> list[Any]:
        async with self._lock:
            return list(self._load(name).values())

    # LibraryStore

    async def get_entry(
        self, user_id: str, storefront_id: str, store_game_id: str
    ) -> LibraryEntry | None:
        doc = await self._get("entries", _entry_id(user_id, storefront_id, store_game_id))
        return LibraryEntry.from_dict(doc) if doc else None

    async def put_entry(self, entry: LibraryEntry) -> None:
        await self._put("entries", _entry_id(*entry.storage_key), entry.to_dict())

    async def list_entries(
        self,
        *,
        statuses: Collection[ResolutionStatus] | None = None,
        user_id: str | None = None,
    ) -> list[LibraryEntry]:
        entries = [LibraryEntry.from_dict(doc) for doc in await self._values("entries")]
        return [
            entry
            for entry in entries
            if (statuses is None or entry.status in statuses)
            and (user_id is None or entry.user_id == user_id)
        ]

    async def get_mapping(
        self, storefront_id: str, store_game_id: str
    ) -> ExternalGameMapping | None:
        doc = await self._get("mappings", _mapping_id(storefront_id, store_game_id))
        return ExternalGameMapping.from_dict(doc) if doc else None

    async def put_mapping(self, mapping: ExternalGameMapping) -> None:
        await self._put("mappings", _mapping_id(*mapping.key), mapping.to_dict())

    async def delete_mapping(self, storefront_id: str, store_game_id: str) -> bool:
        return await self._delete("mappings", _mapping_id(storefront_id, store_game_id))

    async def list_mappings(self) -> list[ExternalGameMapping]:
        return [ExternalGameMapping.from_dict(doc) for doc in await self._values("mappings")]

    async def has_notification(self, idempotency_key: str) -> bool:
        return await self._get("notifications", idempotency_key) is not None

    async def record_notification(self, idempotency_key: str) -> None:
        await self._put("notifications", idempotency_key, True)
