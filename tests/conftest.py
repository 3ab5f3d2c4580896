"""Shared fixtures for resolver tests."""

import asyncio
import os
from collections.abc import Iterator, Sequence
from typing import Any
from unittest.mock import patch

import pytest

from game_library.catalog.index import IndexSnapshot, ReferenceIndex
from game_library.catalog.models import (
    CatalogEntry,
    Collection,
    Company,
    EntityFamily,
    ExternalGameMapping,
    Genre,
    Keyword,
)
from game_library.catalog_api.rate_limiter import CallerClass
from game_library.config import IndexConfig, MatchingConfig, RefreshConfig, RetryConfig, get_settings
from game_library.matching.matcher import Matcher
from game_library.resolution.pipeline import ResolutionPipeline
from game_library.storage.memory import InMemoryStore

# Catalog ids used by the sample catalog
HALF_LIFE = 1
HALF_LIFE_2 = 2
PORTAL = 3
PORTAL_2 = 4
WITCHER_3 = 5
DOOM_1993 = 6
DOOM_2016 = 7

VALVE = 10
CD_PROJEKT = 20


@pytest.fixture
def mock_env() -> Iterator[None]:
    """Mock environment variables for tests."""
    with patch.dict(
        os.environ,
        {
            "IGDB_CLIENT_ID": "test_client_id",
            "IGDB_CLIENT_SECRET": "test_client_secret",
        },
    ):
        get_settings.cache_clear()
        yield
    get_settings.cache_clear()


@pytest.fixture
def catalog_entries() -> list[CatalogEntry]:
    """A small PC catalog."""
    return [
        CatalogEntry(HALF_LIFE, "Half-Life", release_year=1998, collection_id=1, company_ids=frozenset({VALVE})),
        CatalogEntry(
            HALF_LIFE_2,
            "Half-Life 2",
            aliases=frozenset({"HL2"}),
            release_year=2004,
            collection_id=1,
            company_ids=frozenset({VALVE}),
        ),
        CatalogEntry(PORTAL, "Portal", release_year=2007, collection_id=2, company_ids=frozenset({VALVE})),
        CatalogEntry(PORTAL_2, "Portal 2", release_year=2011, collection_id=2, company_ids=frozenset({VALVE})),
        CatalogEntry(
            WITCHER_3,
            "The Witcher 3: Wild Hunt",
            release_year=2015,
            company_ids=frozenset({CD_PROJEKT}),
        ),
        CatalogEntry(DOOM_1993, "DOOM"),
        CatalogEntry(DOOM_2016, "DOOM"),
    ]


@pytest.fixture
def catalog_snapshot(catalog_entries: list[CatalogEntry]) -> IndexSnapshot:
    """Every family, with one crawled Steam mapping for Portal."""
    return IndexSnapshot(
        games=catalog_entries,
        collections=[
            Collection(1, "Half-Life", "half-life", frozenset({HALF_LIFE, HALF_LIFE_2})),
            Collection(2, "Portal", "portal", frozenset({PORTAL, PORTAL_2})),
        ],
        companies=[Company(VALVE, "Valve Corporation"), Company(CD_PROJEKT, "CD Projekt RED")],
        external_games=[ExternalGameMapping("steam", "400", PORTAL)],
        genres=[Genre(5, "Shooter"), Genre(31, "Adventure")],
        keywords=[Keyword(100, "crowbar")],
    )


@pytest.fixture
def index_config() -> IndexConfig:
    return IndexConfig(min_catalog_entries=1, min_family_records=1)


@pytest.fixture
def index(catalog_snapshot: IndexSnapshot, index_config: IndexConfig) -> ReferenceIndex:
    """Reference index built from the sample catalog."""
    reference_index = ReferenceIndex(index_config)
    reference_index.rebuild(catalog_snapshot)
    return reference_index


@pytest.fixture
def matching_config() -> MatchingConfig:
    return MatchingConfig()


@pytest.fixture
def matcher(matching_config: MatchingConfig) -> Matcher:
    return Matcher(matching_config)


@pytest.fixture
def fast_retry() -> RetryConfig:
    """Retry configuration without backoff delays."""
    return RetryConfig(max_attempts=3, base_delay_seconds=0.0, max_delay_seconds=0.0)


@pytest.fixture
def refresh_config() -> RefreshConfig:
    return RefreshConfig(bulk_concurrency=2, webhook_workers=2, resolve_timeout_seconds=5.0)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


class FakeCatalogClient:
    """Catalog client double recording every call."""

    def __init__(self) -> None:
        self.search_results: dict[str, list[CatalogEntry]] = {}
        self.games: dict[int, CatalogEntry] = {}
        self.crawl_results: dict[EntityFamily, list[Any]] = {}
        self.errors: list[Exception] = []
        self.crawl_errors: dict[EntityFamily, Exception] = {}
        self.delay = 0.0
        self.search_calls: list[tuple[str, CallerClass]] = []
        self.get_calls: list[list[int]] = []
        self.crawl_calls: list[EntityFamily] = []

    async def _maybe_fail(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.errors:
            raise self.errors.pop(0)

    async def search_by_title(
        self, title: str, *, caller: CallerClass = CallerClass.INTERACTIVE, limit: int = 50
    ) -> list[CatalogEntry]:
        self.search_calls.append((title, caller))
        await self._maybe_fail()
        return self.search_results.get(title, [])

    async def get_games(
        self, ids: Sequence[int], *, caller: CallerClass = CallerClass.INTERACTIVE
    ) -> list[CatalogEntry]:
        self.get_calls.append(list(ids))
        await self._maybe_fail()
        return [self.games[i] for i in ids if i in self.games]

    async def crawl(
        self,
        family: EntityFamily,
        *,
        caller: CallerClass = CallerClass.BULK,
        updated_since: int | None = None,
    ) -> list[Any]:
        self.crawl_calls.append(family)
        if family in self.crawl_errors:
            raise self.crawl_errors.pop(family)
        return self.crawl_results.get(family, [])


@pytest.fixture
def fake_client() -> FakeCatalogClient:
    return FakeCatalogClient()


@pytest.fixture
def pipeline(
    index: ReferenceIndex,
    matcher: Matcher,
    fake_client: FakeCatalogClient,
    store: InMemoryStore,
) -> ResolutionPipeline:
    return ResolutionPipeline(index, matcher, fake_client, store)
