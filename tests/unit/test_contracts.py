"""Tests for IGDB data contracts."""

import json
from pathlib import Path
from typing import Any, cast

import pytest
from pydantic import ValidationError

from game_library.catalog.models import EntityFamily, MappingSource
from game_library.catalog_api.contracts import (
    IgdbExternalGame,
    IgdbGame,
    IgdbNamedEntity,
    TwitchToken,
    parse_family_records,
)
from game_library.errors import ParseError

FIXTURES_DIR = Path(__file__).parent.parent / "fixtures"


def load_fixture(name: str) -> list[dict[str, Any]]:
    """Load a JSON fixture file."""
    with (FIXTURES_DIR / name).open(encoding="utf-8") as f:
        return cast(list[dict[str, Any]], json.load(f))


class TestIgdbGame:
    """Tests for the games contract."""

    def test_full_record(self) -> None:
        """Test conversion of an expanded game record."""
        game = IgdbGame.model_validate(load_fixture("igdb_games_search.json")[0])

        entry = game.to_catalog_entry()

        assert entry.catalog_id == 233
        assert entry.title == "Half-Life 2"
        assert entry.aliases == frozenset({"HL2"})
        assert entry.release_year == 2004
        assert entry.collection_id == 5
        assert entry.company_ids == frozenset({56, 1})
        assert entry.keyword_ids == frozenset({184, 1016})

    def test_unexpanded_references_dropped(self) -> None:
        """Bare ids in place of expanded records are ignored."""
        game = IgdbGame.model_validate(load_fixture("igdb_games_search.json")[1])

        assert game.alternative_names == []
        assert game.release_year == 1998
        assert game.collection_id == 5

    def test_minimal_record(self) -> None:
        entry = IgdbGame.model_validate({"id": 1, "name": "Pong"}).to_catalog_entry()

        assert entry.release_year is None
        assert entry.collection_id is None
        assert entry.aliases == frozenset()

    def test_empty_name_rejected(self) -> None:
        with pytest.raises(ValidationError):
            IgdbGame.model_validate({"id": 1, "name": ""})


class TestIgdbExternalGame:
    """Tests for the external_games contract."""

    def test_steam_mapping(self) -> None:
        mapping = IgdbExternalGame.model_validate(
            {"id": 1, "game": 233, "uid": "220", "category": 1}
        ).to_mapping()

        assert mapping is not None
        assert mapping.key == ("steam", "220")
        assert mapping.catalog_id == 233
        assert mapping.source == MappingSource.CRAWL

    def test_numeric_uid_coerced(self) -> None:
        external = IgdbExternalGame.model_validate({"id": 1, "game": 231, "uid": 70, "category": 1})

        assert external.uid == "70"

    def test_external_game_source_alias(self) -> None:
        external = IgdbExternalGame.model_validate(
            {"id": 1, "game": 233, "uid": "1207658906", "external_game_source": 5}
        )

        assert external.to_mapping().storefront_id == "gog"  # type: ignore[union-attr]

    def test_unsupported_category(self) -> None:
        external = IgdbExternalGame.model_validate({"id": 1, "game": 233, "uid": "x", "category": 20})

        assert external.to_mapping() is None


class TestParseFamilyRecords:
    """Tests for parse_family_records."""

    def test_external_games_page(self) -> None:
        mappings = parse_family_records(
            EntityFamily.EXTERNAL_GAMES, load_fixture("igdb_external_games_page.json")
        )

        assert [m.key for m in mappings] == [
            ("steam", "220"),
            ("steam", "70"),
            ("gog", "1207658906"),
        ]

    def test_named_families(self) -> None:
        records = [{"id": 5, "name": "Shooter", "slug": "shooter"}]

        genres = parse_family_records(EntityFamily.GENRES, records)
        companies = parse_family_records(EntityFamily.COMPANIES, records)

        assert genres[0].name == "Shooter"
        assert type(genres[0]).__name__ == "Genre"
        assert type(companies[0]).__name__ == "Company"

    def test_collection(self) -> None:
        collections = parse_family_records(
            EntityFamily.COLLECTIONS, [{"id": 5, "name": "Half-Life", "games": [231, 233]}]
        )

        assert collections[0].game_ids == frozenset({231, 233})

    def test_malformed_record_raises_parse_error(self) -> None:
        with pytest.raises(ParseError) as exc_info:
            parse_family_records(EntityFamily.GAMES, [{"id": "not-an-id"}])

        assert exc_info.value.endpoint == "games"
        assert isinstance(exc_info.value.original_error, ValidationError)


class TestMiscContracts:
    """Tests for token and named entity contracts."""

    def test_twitch_token(self) -> None:
        token = TwitchToken.model_validate({"access_token": "abc", "expires_in": 3600, "token_type": "bearer"})

        assert token.expires_in == 3600

    def test_extra_fields_ignored(self) -> None:
        entity = IgdbNamedEntity.model_validate({"id": 1, "name": "RPG", "checksum": "abc", "url": "x"})

        assert entity.to_keyword().name == "RPG"
