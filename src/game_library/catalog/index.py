"""
Reference index of canonical catalog entries.

The index is a sequence of immutable generations. Readers grab the
current generation (a single attribute read) and keep using it for the
whole operation; writers build a new generation off to the side and
swap it in under a lock. A reader therefore never sees a half-built
index and never waits on a rebuild.

Mappings written by the resolution pipeline live in an overlay next to
the generations, so a cache write does not copy the catalog. Crawled
mappings win over resolved ones; a manual approval wins over both.
"""

import threading
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any

import structlog

from game_library.catalog.models import (
    FAMILY_RECORD_TYPES,
    CatalogEntry,
    Collection,
    Company,
    EntityFamily,
    ExternalGameMapping,
    Genre,
    Keyword,
    MappingSource,
)
from game_library.catalog.normalize import normalize_company_name, normalize_title, title_tokens
from game_library.config import IndexConfig
from game_library.errors import IndexStaleError

logger = structlog.get_logger(__name__)

MappingKey = tuple[str, str]

DEFAULT_MAX_CANDIDATES = 50

# Table attribute on IndexGeneration for each family
_FAMILY_TABLES: dict[EntityFamily, str] = {
    EntityFamily.GAMES: "entries",
    EntityFamily.COLLECTIONS: "collections",
    EntityFamily.COMPANIES: "companies",
    EntityFamily.EXTERNAL_GAMES: "mappings",
    EntityFamily.GENRES: "genres",
    EntityFamily.KEYWORDS: "keywords",
}


@dataclass(frozen=True)
class IndexSnapshot:
    """A complete set of crawled entity families."""

    games: Sequence[CatalogEntry] = ()
    collections: Sequence[Collection] = ()
    companies: Sequence[Company] = ()
    external_games: Sequence[ExternalGameMapping] = ()
    genres: Sequence[Genre] = ()
    keywords: Sequence[Keyword] = ()

    def family(self, family: EntityFamily) -> Sequence[Any]:
        return getattr(self, family.value)  # type: ignore[no-any-return]


def _record_key(family: EntityFamily, record: Any) -> Any:
    if family == EntityFamily.GAMES:
        return record.catalog_id
    if family == EntityFamily.EXTERNAL_GAMES:
        return record.key
    return record.id


def _entry_tokens(entry: CatalogEntry) -> set[str]:
    tokens: set[str] = set()
    for name in entry.names:
        tokens.update(title_tokens(normalize_title(name)))
    return tokens


def _build_token_index(entries: Iterable[CatalogEntry]) -> dict[str, frozenset[int]]:
    postings: dict[str, set[int]] = {}
    for entry in entries:
        for token in _entry_tokens(entry):
            postings.setdefault(token, set()).add(entry.catalog_id)
    return {token: frozenset(ids) for token, ids in postings.items()}


def _build_company_names(companies: Iterable[Company]) -> dict[str, frozenset[int]]:
    names: dict[str, set[int]] = {}
    for company in companies:
        key = normalize_company_name(company.name)
        if key:
            names.setdefault(key, set()).add(company.id)
    return {key: frozenset(ids) for key, ids in names.items()}


@dataclass(frozen=True)
class IndexGeneration:
    """One immutable, versioned snapshot of the reference data."""

    version: int
    built_at: datetime
    entries: Mapping[int, CatalogEntry] = field(default_factory=dict)
    collections: Mapping[int, Collection] = field(default_factory=dict)
    companies: Mapping[int, Company] = field(default_factory=dict)
    genres: Mapping[int, Genre] = field(default_factory=dict)
    keywords: Mapping[int, Keyword] = field(default_factory=dict)
    mappings: Mapping[MappingKey, ExternalGameMapping] = field(default_factory=dict)
    token_index: Mapping[str, frozenset[int]] = field(default_factory=dict)
    company_names: Mapping[str, frozenset[int]] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> "IndexGeneration":
        return cls(version=0, built_at=datetime.now(timezone.utc))

    @classmethod
    def build(
        cls,
        version: int,
        tables: Mapping[EntityFamily, Mapping[Any, Any]],
        *,
        token_index: Mapping[str, frozenset[int]] | None = None,
        company_names: Mapping[str, frozenset[int]] | None = None,
    ) -> "IndexGeneration":
        """Assemble a generation, deriving lookup tables that were not given."""
        entries = tables[EntityFamily.GAMES]
        companies = tables[EntityFamily.COMPANIES]
        if token_index is None:
            token_index = _build_token_index(entries.values())
        if company_names is None:
            company_names = _build_company_names(companies.values())
        return cls(
            version=version,
            built_at=datetime.now(timezone.utc),
            entries=MappingProxyType(dict(entries)),
            collections=MappingProxyType(dict(tables[EntityFamily.COLLECTIONS])),
            companies=MappingProxyType(dict(companies)),
            genres=MappingProxyType(dict(tables[EntityFamily.GENRES])),
            keywords=MappingProxyType(dict(tables[EntityFamily.KEYWORDS])),
            mappings=MappingProxyType(dict(tables[EntityFamily.EXTERNAL_GAMES])),
            token_index=MappingProxyType(dict(token_index)),
            company_names=MappingProxyType(dict(company_names)),
        )

    def table(self, family: EntityFamily) -> Mapping[Any, Any]:
        return getattr(self, _FAMILY_TABLES[family])  # type: ignore[no-any-return]

    def tables(self) -> dict[EntityFamily, Mapping[Any, Any]]:
        return {family: self.table(family) for family in EntityFamily}

    def family_size(self, family: EntityFamily) -> int:
        return len(self.table(family))

    def get(self, catalog_id: int) -> CatalogEntry | None:
        return self.entries.get(catalog_id)

    def lookup(self, storefront_id: str, store_game_id: str) -> int | None:
        mapping = self.mappings.get((storefront_id, store_game_id))
        return mapping.catalog_id if mapping else None

    def search(self, normalized_title: str, limit: int = DEFAULT_MAX_CANDIDATES) -> list[CatalogEntry]:
        """
        Candidate entries sharing at least one token with the query.

        Ordered by number of shared tokens, then catalog id, and cut at
        `limit`. This is candidate generation, not ranking.
        """
        hits: Counter[int] = Counter()
        for token in title_tokens(normalized_title):
            hits.update(self.token_index.get(token, ()))

        ordered = sorted(hits.items(), key=lambda item: (-item[1], item[0]))
        return [self.entries[catalog_id] for catalog_id, _ in ordered[:limit]]

    def companies_by_name(self, names: Iterable[str]) -> frozenset[int]:
        ids: set[int] = set()
        for name in names:
            ids.update(self.company_names.get(normalize_company_name(name), ()))
        return frozenset(ids)

    def stats(self) -> dict[str, Any]:
        """Family sizes for logging and status output."""
        return {
            "version": self.version,
            "built_at": self.built_at.isoformat(),
            **{family.value: self.family_size(family) for family in EntityFamily},
        }


class ReferenceIndex:
    """
    Owner of the current index generation.

    Example:
        >>> index = ReferenceIndex(IndexConfig(min_catalog_entries=1))
        >>> index.rebuild(IndexSnapshot(games=[CatalogEntry(7, "Half-Life 2")], ...))
        >>> index.search(normalize_title("Half Life 2"))
    """

    def __init__(
        self,
        config: IndexConfig | None = None,
        *,
        max_candidates: int = DEFAULT_MAX_CANDIDATES,
    ) -> None:
        self._config = config or IndexConfig()
        self._max_candidates = max_candidates
        self._generation = IndexGeneration.empty()
        self._overlay: dict[MappingKey, ExternalGameMapping] = {}
        self._write_lock = threading.Lock()
        self._logger = logger.bind(component="reference_index")

    @property
    def current(self) -> IndexGeneration:
        """The live generation. Hold on to it for a consistent view."""
        return self._generation

    @property
    def version(self) -> int:
        return self._generation.version

    # Reads

    def get(self, catalog_id: int) -> CatalogEntry | None:
        return self._generation.get(catalog_id)

    def mapping(self, storefront_id: str, store_game_id: str) -> ExternalGameMapping | None:
        """Manual mapping for a key, else the crawled one, else one written by resolution."""
        key = (storefront_id, store_game_id)
        written = self._overlay.get(key)
        if written is not None and written.source == MappingSource.MANUAL:
            return written
        return self._generation.mappings.get(key) or written

    def lookup(self, storefront_id: str, store_game_id: str) -> int | None:
        mapping = self.mapping(storefront_id, store_game_id)
        return mapping.catalog_id if mapping else None

    def search(self, normalized_title: str, limit: int | None = None) -> list[CatalogEntry]:
        return self._generation.search(normalized_title, limit or self._max_candidates)

    def companies_by_name(self, names: Iterable[str]) -> frozenset[int]:
        return self._generation.companies_by_name(names)

    # Writes

    def rebuild(self, snapshot: IndexSnapshot) -> IndexGeneration:
        """
        Replace every family from a full snapshot in one swap.

        Raises:
            IndexStaleError: If any family is malformed or undersized.
                The current generation stays live.
        """
        tables = {
            family: self._validated_table(family, snapshot.family(family))
            for family in EntityFamily
        }
        with self._write_lock:
            generation = IndexGeneration.build(self._generation.version + 1, tables)
            self._publish(generation, reason="rebuild")
        return generation

    def rebuild_family(self, family: EntityFamily, records: Sequence[Any]) -> IndexGeneration:
        """
        Replace a single family, keeping the others from the current generation.

        Raises:
            IndexStaleError: If the records are malformed or undersized.
        """
        table = self._validated_table(family, records)
        with self._write_lock:
            current = self._generation
            tables = current.tables()
            tables[family] = table
            generation = IndexGeneration.build(
                current.version + 1,
                tables,
                token_index=None if family == EntityFamily.GAMES else current.token_index,
                company_names=None if family == EntityFamily.COMPANIES else current.company_names,
            )
            self._publish(generation, reason=f"rebuild_family:{family.value}")
        return generation

    def merge_family(self, family: EntityFamily, records: Sequence[Any]) -> IndexGeneration:
        """
        Upsert records into a family without size validation.

        Used for incremental catalog changes and for games fetched live.
        """
        records = [r for r in records if isinstance(r, FAMILY_RECORD_TYPES[family])]
        if not records:
            return self._generation

        with self._write_lock:
            current = self._generation
            tables = current.tables()
            table = dict(tables[family])
            token_index: dict[str, frozenset[int]] | None = None

            if family == EntityFamily.GAMES:
                token_index = dict(current.token_index)
                for entry in records:
                    previous = table.get(entry.catalog_id)
                    if previous is not None:
                        for token in _entry_tokens(previous):
                            token_index[token] = token_index.get(token, frozenset()) - {
                                entry.catalog_id
                            }
                    for token in _entry_tokens(entry):
                        token_index[token] = token_index.get(token, frozenset()) | {
                            entry.catalog_id
                        }

            for record in records:
                table[_record_key(family, record)] = record
            tables[family] = table

            generation = IndexGeneration.build(
                current.version + 1,
                tables,
                token_index=token_index if token_index is not None else current.token_index,
                company_names=None if family == EntityFamily.COMPANIES else current.company_names,
            )
            self._publish(generation, reason=f"merge:{family.value}", merged=len(records))
        return generation

    def record_mapping(self, mapping: ExternalGameMapping, *, overwrite: bool = False) -> bool:
        """
        Write a mapping into the cache.

        Mappings are write-once per key; `overwrite` lets reconciliation
        replace a previous resolution. Only a manual mapping shadows a
        crawled one.

        Returns:
            True if the mapping was stored
        """
        key = mapping.key
        with self._write_lock:
            if key in self._generation.mappings and mapping.source != MappingSource.MANUAL:
                return False
            existing = self._overlay.get(key)
            if existing is not None and not overwrite:
                return False
            self._overlay[key] = mapping

        self._logger.debug(
            "Recorded mapping",
            storefront_id=mapping.storefront_id,
            store_game_id=mapping.store_game_id,
            catalog_id=mapping.catalog_id,
            source=mapping.source.value,
            replaced=existing.catalog_id if existing else None,
        )
        return True

    def warm_mapping(self, mapping: ExternalGameMapping) -> None:
        """Load a durable mapping into the overlay (e.g. after a restart)."""
        with self._write_lock:
            if mapping.key not in self._generation.mappings or mapping.source == MappingSource.MANUAL:
                self._overlay.setdefault(mapping.key, mapping)

    def drop_mapping(self, storefront_id: str, store_game_id: str) -> ExternalGameMapping | None:
        """
        Remove a resolved or manual mapping from the cache.

        Crawled mappings belong to the generation and are left alone.

        Returns:
            The removed mapping, if there was one
        """
        with self._write_lock:
            removed = self._overlay.pop((storefront_id, store_game_id), None)

        if removed is not None:
            self._logger.info(
                "Dropped mapping",
                storefront_id=storefront_id,
                store_game_id=store_game_id,
                catalog_id=removed.catalog_id,
                source=removed.source.value,
            )
        return removed

    def resolution_mappings(self) -> list[ExternalGameMapping]:
        """Mappings written by resolution or manual approval."""
        return [m for m in self._overlay.values() if m.source != MappingSource.CRAWL]

    # Internals

    def _validated_table(self, family: EntityFamily, records: Sequence[Any]) -> dict[Any, Any]:
        record_type = FAMILY_RECORD_TYPES[family]
        minimum = (
            self._config.min_catalog_entries
            if family == EntityFamily.GAMES
            else self._config.min_family_records
        )

        malformed = [r for r in records if not isinstance(r, record_type)]
        if malformed:
            self._reject(family, f"{len(malformed)} malformed {family.value} records", len(records), minimum)

        table = {_record_key(family, record): record for record in records}
        if len(table) < minimum:
            self._reject(
                family,
                f"{family.value} snapshot has {len(table)} records, minimum is {minimum}",
                len(table),
                minimum,
            )
        return table

    def _reject(self, family: EntityFamily, message: str, received: int, minimum: int) -> None:
        self._logger.error(
            "Rejected index rebuild, keeping current generation",
            alarm="index_stale",
            family=family.value,
            received=received,
            minimum=minimum,
            live_version=self._generation.version,
            reason=message,
        )
        raise IndexStaleError(
            message,
            family=family.value,
            received=received,
            minimum=minimum,
            source="reference_index",
        )

    def _publish(self, generation: IndexGeneration, *, reason: str, **context: Any) -> None:
        self._generation = generation
        self._logger.info("Published index generation", reason=reason, **generation.stats(), **context)
