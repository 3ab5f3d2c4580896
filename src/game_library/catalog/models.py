"""
Canonical catalog records.

Records are immutable within a reference index generation and refer
to each other through plain integer ids, resolved through the index's
lookup tables.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class EntityFamily(str, Enum):
    """
    Entity families crawled from the catalog.

    Each family is refreshed and validated independently.
    """

    GAMES = "games"
    COLLECTIONS = "collections"
    COMPANIES = "companies"
    EXTERNAL_GAMES = "external_games"
    GENRES = "genres"
    KEYWORDS = "keywords"


class MappingSource(str, Enum):
    """Where an external game mapping came from."""

    CRAWL = "crawl"  # Catalog's own external_games table
    RESOLUTION = "resolution"  # Written by the resolution pipeline
    MANUAL = "manual"  # User approved a candidate


@dataclass(frozen=True)
class CatalogEntry:
    """A canonical game."""

    catalog_id: int
    title: str
    aliases: frozenset[str] = frozenset()
    release_year: int | None = None
    collection_id: int | None = None
    company_ids: frozenset[int] = frozenset()
    genre_ids: frozenset[int] = frozenset()
    keyword_ids: frozenset[int] = frozenset()

    @property
    def names(self) -> tuple[str, ...]:
        """Primary title followed by aliases."""
        return (self.title, *sorted(self.aliases))

    def to_dict(self) -> dict[str, Any]:
        return {
            "catalog_id": self.catalog_id,
            "title": self.title,
            "aliases": sorted(self.aliases),
            "release_year": self.release_year,
            "collection_id": self.collection_id,
            "company_ids": sorted(self.company_ids),
            "genre_ids": sorted(self.genre_ids),
            "keyword_ids": sorted(self.keyword_ids),
        }

    @classmethod
    def from_dict(cls, doc: dict[str, Any]) -> "CatalogEntry":
        return cls(
            catalog_id=int(doc["catalog_id"]),
            title=doc["title"],
            aliases=frozenset(doc.get("aliases", ())),
            release_year=doc.get("release_year"),
            collection_id=doc.get("collection_id"),
            company_ids=frozenset(doc.get("company_ids", ())),
            genre_ids=frozenset(doc.get("genre_ids", ())),
            keyword_ids=frozenset(doc.get("keyword_ids", ())),
        )


@dataclass(frozen=True)
class Collection:
    """A series of games (e.g. Half-Life)."""

    id: int
    name: str
    slug: str = ""
    game_ids: frozenset[int] = frozenset()

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "slug": self.slug, "game_ids": sorted(self.game_ids)}

    @classmethod
    def from_dict(cls, doc: dict[str, Any]) -> "Collection":
        return cls(
            id=int(doc["id"]),
            name=doc.get("name", ""),
            slug=doc.get("slug", ""),
            game_ids=frozenset(doc.get("game_ids", ())),
        )


@dataclass(frozen=True)
class Company:
    """A developer or publisher."""

    id: int
    name: str
    slug: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "slug": self.slug}

    @classmethod
    def from_dict(cls, doc: dict[str, Any]) -> "Company":
        return cls(id=int(doc["id"]), name=doc.get("name", ""), slug=doc.get("slug", ""))


@dataclass(frozen=True)
class Genre:
    id: int
    name: str
    slug: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "slug": self.slug}

    @classmethod
    def from_dict(cls, doc: dict[str, Any]) -> "Genre":
        return cls(id=int(doc["id"]), name=doc.get("name", ""), slug=doc.get("slug", ""))


@dataclass(frozen=True)
class Keyword:
    id: int
    name: str
    slug: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "slug": self.slug}

    @classmethod
    def from_dict(cls, doc: dict[str, Any]) -> "Keyword":
        return cls(id=int(doc["id"]), name=doc.get("name", ""), slug=doc.get("slug", ""))


@dataclass(frozen=True)
class ExternalGameMapping:
    """Maps a storefront game onto a canonical catalog id."""

    storefront_id: str
    store_game_id: str
    catalog_id: int
    confidence: float = 1.0
    source: MappingSource = MappingSource.CRAWL
    recorded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def key(self) -> tuple[str, str]:
        return (self.storefront_id, self.store_game_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "storefront_id": self.storefront_id,
            "store_game_id": self.store_game_id,
            "catalog_id": self.catalog_id,
            "confidence": self.confidence,
            "source": self.source.value,
            "recorded_at": self.recorded_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, doc: dict[str, Any]) -> "ExternalGameMapping":
        recorded_at = doc.get("recorded_at")
        return cls(
            storefront_id=doc["storefront_id"],
            store_game_id=str(doc["store_game_id"]),
            catalog_id=int(doc["catalog_id"]),
            confidence=float(doc.get("confidence", 1.0)),
            source=MappingSource(doc.get("source", MappingSource.CRAWL.value)),
            recorded_at=(
                datetime.fromisoformat(recorded_at)
                if recorded_at
                else datetime.now(timezone.utc)
            ),
        )


# Record type held by each family's table
FAMILY_RECORD_TYPES: dict[EntityFamily, type] = {
    EntityFamily.GAMES: CatalogEntry,
    EntityFamily.COLLECTIONS: Collection,
    EntityFamily.COMPANIES: Company,
    EntityFamily.EXTERNAL_GAMES: ExternalGameMapping,
    EntityFamily.GENRES: Genre,
    EntityFamily.KEYWORDS: Keyword,
}
