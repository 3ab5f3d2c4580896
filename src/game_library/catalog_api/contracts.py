"""
Data contracts for IGDB API responses.

These Pydantic models define the expected structure of records
returned by the IGDB v4 endpoints, and convert them into the
catalog's own records.
"""

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from game_library.catalog.models import (
    CatalogEntry,
    Collection,
    Company,
    EntityFamily,
    ExternalGameMapping,
    Genre,
    Keyword,
    MappingSource,
)
from game_library.errors import ParseError
from game_library.storefronts import storefront_for_category


class TwitchToken(BaseModel):
    """Twitch client-credentials token used for IGDB access."""

    access_token: str
    expires_in: int = Field(..., description="Lifetime in seconds")
    token_type: str = Field(default="bearer")


class IgdbAlternativeName(BaseModel):
    """Alternative title of a game (expanded `alternative_names.name`)."""

    model_config = ConfigDict(extra="ignore")

    id: int | None = None
    name: str


class IgdbInvolvedCompany(BaseModel):
    """Company involvement (expanded `involved_companies.company`)."""

    model_config = ConfigDict(extra="ignore")

    id: int | None = None
    company: int
    developer: bool = False
    publisher: bool = False


def _drop_unexpanded(value: Any) -> Any:
    # Unexpanded references arrive as bare ids
    if isinstance(value, list):
        return [item for item in value if isinstance(item, dict)]
    return value


class IgdbGame(BaseModel):
    """
    Game record from the `games` endpoint.

    Only the fields used for matching are modeled; IGDB returns many more.
    """

    model_config = ConfigDict(extra="ignore")

    id: int
    name: str = Field(..., min_length=1)
    slug: str = ""
    alternative_names: list[IgdbAlternativeName] = Field(default_factory=list)
    first_release_date: int | None = Field(default=None, description="Unix timestamp")
    collection: int | None = None
    collections: list[int] = Field(default_factory=list)
    involved_companies: list[IgdbInvolvedCompany] = Field(default_factory=list)
    genres: list[int] = Field(default_factory=list)
    keywords: list[int] = Field(default_factory=list)
    platforms: list[int] = Field(default_factory=list)

    @field_validator("alternative_names", "involved_companies", mode="before")
    @classmethod
    def drop_unexpanded(cls, v: Any) -> Any:
        """Keep only expanded sub-records."""
        return _drop_unexpanded(v)

    @property
    def release_year(self) -> int | None:
        """Year of first release, if known."""
        if self.first_release_date is None:
            return None
        return datetime.fromtimestamp(self.first_release_date, tz=timezone.utc).year

    @property
    def collection_id(self) -> int | None:
        """Primary collection. Newer records only carry `collections`."""
        if self.collection is not None:
            return self.collection
        return self.collections[0] if self.collections else None

    def to_catalog_entry(self) -> CatalogEntry:
        aliases = frozenset(
            alt.name for alt in self.alternative_names if alt.name and alt.name != self.name
        )
        return CatalogEntry(
            catalog_id=self.id,
            title=self.name,
            aliases=aliases,
            release_year=self.release_year,
            collection_id=self.collection_id,
            company_ids=frozenset(ic.company for ic in self.involved_companies),
            genre_ids=frozenset(self.genres),
            keyword_ids=frozenset(self.keywords),
        )


class IgdbExternalGame(BaseModel):
    """Record from the `external_games` endpoint."""

    model_config = ConfigDict(extra="ignore")

    id: int
    game: int
    uid: str = Field(..., min_length=1, description="Store-specific game id")
    category: int | None = Field(
        default=None,
        validation_alias=AliasChoices("category", "external_game_source"),
    )
    name: str | None = None

    @field_validator("uid", mode="before")
    @classmethod
    def coerce_uid(cls, v: Any) -> Any:
        """Some categories report numeric uids."""
        return str(v) if isinstance(v, int) else v

    def to_mapping(self) -> ExternalGameMapping | None:
        """Mapping for a supported storefront, None for other categories."""
        if self.category is None:
            return None
        storefront = storefront_for_category(self.category)
        if storefront is None:
            return None
        return ExternalGameMapping(
            storefront_id=storefront.value,
            store_game_id=self.uid,
            catalog_id=self.game,
            confidence=1.0,
            source=MappingSource.CRAWL,
        )


class IgdbCollection(BaseModel):
    """Record from the `collections` endpoint."""

    model_config = ConfigDict(extra="ignore")

    id: int
    name: str = ""
    slug: str = ""
    games: list[int] = Field(default_factory=list)

    def to_collection(self) -> Collection:
        return Collection(id=self.id, name=self.name, slug=self.slug, game_ids=frozenset(self.games))


class IgdbNamedEntity(BaseModel):
    """Record from `companies`, `genres` or `keywords`."""

    model_config = ConfigDict(extra="ignore")

    id: int
    name: str = ""
    slug: str = ""

    def to_company(self) -> Company:
        return Company(id=self.id, name=self.name, slug=self.slug)

    def to_genre(self) -> Genre:
        return Genre(id=self.id, name=self.name, slug=self.slug)

    def to_keyword(self) -> Keyword:
        return Keyword(id=self.id, name=self.name, slug=self.slug)


# Contract and converter per entity family
FAMILY_CONTRACTS: dict[EntityFamily, tuple[type[BaseModel], Callable[[Any], Any]]] = {
    EntityFamily.GAMES: (IgdbGame, IgdbGame.to_catalog_entry),
    EntityFamily.COLLECTIONS: (IgdbCollection, IgdbCollection.to_collection),
    EntityFamily.COMPANIES: (IgdbNamedEntity, IgdbNamedEntity.to_company),
    EntityFamily.EXTERNAL_GAMES: (IgdbExternalGame, IgdbExternalGame.to_mapping),
    EntityFamily.GENRES: (IgdbNamedEntity, IgdbNamedEntity.to_genre),
    EntityFamily.KEYWORDS: (IgdbNamedEntity, IgdbNamedEntity.to_keyword),
}


def parse_family_records(family: EntityFamily, records: list[dict[str, Any]]) -> list[Any]:
    """
    Validate raw IGDB records and convert them to catalog records.

    External games for unsupported storefronts are dropped.

    Raises:
        ParseError: If any record does not match the contract
    """
    contract, convert = FAMILY_CONTRACTS[family]
    try:
        parsed = [contract.model_validate(record) for record in records]
    except ValidationError as e:
        raise ParseError(
            f"Malformed {family.value} record: {e.error_count()} validation errors",
            source="igdb",
            endpoint=family.value,
            original_error=e,
        ) from e
    converted = [convert(item) for item in parsed]
    return [record for record in converted if record is not None]
