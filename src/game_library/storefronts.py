"""
Storefront variants and their raw record layouts.

Each storefront reports owned games with its own field names and
title quirks. Those differences are data (a StorefrontProfile per
variant) consumed by a single normalization function.
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from game_library.errors import ParseError


class Storefront(str, Enum):
    """Closed set of supported storefronts."""

    STEAM = "steam"
    GOG = "gog"
    EGS = "egs"


@dataclass(frozen=True)
class StorefrontProfile:
    """Field mapping and title quirks for one storefront."""

    storefront: Storefront
    external_category: int | None
    id_fields: tuple[str, ...]
    title_fields: tuple[str, ...]
    year_fields: tuple[str, ...] = ()
    developer_fields: tuple[str, ...] = ()
    title_noise: tuple[str, ...] = ()
    _noise_patterns: tuple[re.Pattern[str], ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        patterns = tuple(re.compile(p, re.IGNORECASE) for p in self.title_noise)
        object.__setattr__(self, "_noise_patterns", patterns)

    def clean_title(self, title: str) -> str:
        """Strip storefront-specific decorations from a reported title."""
        cleaned = title
        for pattern in self._noise_patterns:
            cleaned = pattern.sub("", cleaned)
        cleaned = cleaned.strip()
        return cleaned or title.strip()


# external_category values follow IGDB's external_games categories.
STOREFRONT_PROFILES: dict[Storefront, StorefrontProfile] = {
    Storefront.STEAM: StorefrontProfile(
        storefront=Storefront.STEAM,
        external_category=1,
        id_fields=("appid", "app_id", "id"),
        title_fields=("name", "title"),
        year_fields=("release_year", "release_date"),
        developer_fields=("developers",),
    ),
    Storefront.GOG: StorefrontProfile(
        storefront=Storefront.GOG,
        external_category=5,
        id_fields=("id", "product_id"),
        title_fields=("title", "name"),
        year_fields=("release_year", "release_date"),
        developer_fields=("developers", "developer"),
        title_noise=(
            r"[\s:-]*\b(?:game of the year|goty)(?:\s+edition)?\s*$",
            r"\s*\((?:windows|mac|linux)\)\s*$",
        ),
    ),
    Storefront.EGS: StorefrontProfile(
        storefront=Storefront.EGS,
        external_category=26,
        id_fields=("catalog_item_id", "catalogItemId", "id"),
        title_fields=("title", "name"),
        developer_fields=("developer", "developers"),
    ),
}

_CATEGORY_TO_STOREFRONT = {
    profile.external_category: storefront
    for storefront, profile in STOREFRONT_PROFILES.items()
    if profile.external_category is not None
}

_YEAR_PATTERN = re.compile(r"\b(19[5-9]\d|20\d{2})\b")


@dataclass(frozen=True)
class StoreRecord:
    """A raw storefront record reduced to the fields resolution uses."""

    storefront: Storefront
    store_game_id: str
    title: str
    release_year: int | None = None
    developers: tuple[str, ...] = ()


def parse_storefront(value: str | Storefront) -> Storefront:
    """Map a storefront identifier onto the closed variant set."""
    if isinstance(value, Storefront):
        return value
    try:
        return Storefront(value.strip().lower())
    except ValueError as e:
        raise ParseError(f"Unknown storefront: {value!r}", source="storefront") from e


def storefront_for_category(category: int) -> Storefront | None:
    """Return the storefront behind an IGDB external_games category, if supported."""
    return _CATEGORY_TO_STOREFRONT.get(category)


def get_profile(storefront: str | Storefront) -> StorefrontProfile:
    """Get the profile for a storefront."""
    return STOREFRONT_PROFILES[parse_storefront(storefront)]


def _first_present(raw: Mapping[str, Any], fields: tuple[str, ...]) -> Any:
    for name in fields:
        value = raw.get(name)
        if value not in (None, "", [], ()):
            return value
    return None


def _parse_year(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, int):
        return value if 1950 <= value <= 2100 else None
    match = _YEAR_PATTERN.search(str(value))
    return int(match.group(1)) if match else None


def _parse_developers(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value.strip(),) if value.strip() else ()
    return tuple(str(v).strip() for v in value if str(v).strip())


def normalize_store_record(storefront: str | Storefront, raw: Mapping[str, Any]) -> StoreRecord:
    """
    Convert a raw storefront record into a StoreRecord.

    Args:
        storefront: Storefront that reported the record
        raw: Record as delivered by the storefront integration

    Returns:
        StoreRecord with id, title and optional metadata

    Raises:
        ParseError: If the record lacks an id or a title
    """
    profile = get_profile(storefront)

    store_game_id = _first_present(raw, profile.id_fields)
    if store_game_id is None:
        raise ParseError(
            f"{profile.storefront.value} record has none of {profile.id_fields}",
            source=profile.storefront.value,
        )

    title = _first_present(raw, profile.title_fields)
    if not isinstance(title, str) or not title.strip():
        raise ParseError(
            f"{profile.storefront.value} record {store_game_id} has no title",
            source=profile.storefront.value,
        )

    return StoreRecord(
        storefront=profile.storefront,
        store_game_id=str(store_game_id),
        title=title.strip(),
        release_year=_parse_year(_first_present(raw, profile.year_fields)),
        developers=_parse_developers(_first_present(raw, profile.developer_fields)),
    )
