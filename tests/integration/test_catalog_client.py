"""Integration tests for the IGDB client with mocked HTTP responses."""

import json
from pathlib import Path
from typing import Any, cast

import httpx
import pytest
import respx

from game_library.catalog.models import EntityFamily
from game_library.catalog_api.client import IgdbClient, family_queries, quote
from game_library.catalog_api.rate_limiter import AdmissionGate, CallerClass
from game_library.config import CatalogAPIConfig, RateLimitConfig, RetryConfig
from game_library.errors import ParseError, UpstreamError, UpstreamTransientError

FIXTURES_DIR = Path(__file__).parent.parent / "fixtures"

TOKEN_URL = "https://id.twitch.tv/oauth2/token"
GAMES_URL = "https://api.igdb.com/v4/games/"
EXTERNAL_GAMES_URL = "https://api.igdb.com/v4/external_games/"


def load_fixture(name: str) -> Any:
    """Load a JSON fixture file."""
    with (FIXTURES_DIR / name).open(encoding="utf-8") as f:
        return json.load(f)


@pytest.fixture
def token_response() -> dict[str, Any]:
    return cast(dict[str, Any], load_fixture("twitch_token.json"))


@pytest.fixture
def games_response() -> list[dict[str, Any]]:
    return cast(list[dict[str, Any]], load_fixture("igdb_games_search.json"))


def make_client(fast_retry: RetryConfig, **overrides: Any) -> IgdbClient:
    config = CatalogAPIConfig(client_id="test_client_id", client_secret="test_client_secret", **overrides)
    gate = AdmissionGate(RateLimitConfig(requests_per_second=100, burst_size=100))
    return IgdbClient(config=config, retry_config=fast_retry, gate=gate)


class TestSearch:
    """Integration tests for title search."""

    @respx.mock
    @pytest.mark.asyncio
    async def test_search_success(
        self,
        fast_retry: RetryConfig,
        token_response: dict[str, Any],
        games_response: list[dict[str, Any]],
    ) -> None:
        """Test successful title search."""
        # Setup mock
        respx.post(TOKEN_URL).mock(return_value=httpx.Response(200, json=token_response))
        route = respx.post(GAMES_URL).mock(return_value=httpx.Response(200, json=games_response))

        # Extract
        async with make_client(fast_retry) as client:
            games = await client.search_by_title("Half Life 2")

        # Verify
        assert [g.catalog_id for g in games] == [233, 231]
        assert games[0].aliases == frozenset({"HL2"})

        request = route.calls.last.request
        body = request.content.decode()
        assert 'search "Half Life 2";' in body
        assert "where platforms = (6,13,14);" in body
        assert request.headers["Client-ID"] == "test_client_id"
        assert request.headers["Authorization"] == f"Bearer {token_response['access_token']}"

    @respx.mock
    @pytest.mark.asyncio
    async def test_token_reused(
        self,
        fast_retry: RetryConfig,
        token_response: dict[str, Any],
    ) -> None:
        """The access token is requested once and cached."""
        token_route = respx.post(TOKEN_URL).mock(return_value=httpx.Response(200, json=token_response))
        respx.post(GAMES_URL).mock(return_value=httpx.Response(200, json=[]))

        async with make_client(fast_retry) as client:
            await client.search_by_title("Portal")
            await client.search_by_title("Portal 2")

        assert token_route.call_count == 1
        params = token_route.calls.last.request.url.params
        assert params["grant_type"] == "client_credentials"
        assert params["client_id"] == "test_client_id"

    @respx.mock
    @pytest.mark.asyncio
    async def test_retry_on_server_error(
        self,
        fast_retry: RetryConfig,
        token_response: dict[str, Any],
        games_response: list[dict[str, Any]],
    ) -> None:
        """Test retry on 500 error."""
        # Setup mock: fail twice, then succeed
        respx.post(TOKEN_URL).mock(return_value=httpx.Response(200, json=token_response))
        route = respx.post(GAMES_URL).mock(
            side_effect=[
                httpx.Response(500),
                httpx.Response(503),
                httpx.Response(200, json=games_response),
            ]
        )

        async with make_client(fast_retry) as client:
            games = await client.search_by_title("Half Life 2")

        assert len(games) == 2
        assert route.call_count == 3

    @respx.mock
    @pytest.mark.asyncio
    async def test_transient_error_after_retries(
        self,
        fast_retry: RetryConfig,
        token_response: dict[str, Any],
    ) -> None:
        respx.post(TOKEN_URL).mock(return_value=httpx.Response(200, json=token_response))
        route = respx.post(GAMES_URL).mock(return_value=httpx.Response(429))

        async with make_client(fast_retry) as client:
            with pytest.raises(UpstreamTransientError) as exc_info:
                await client.search_by_title("Half Life 2")

        assert exc_info.value.status_code == 429
        assert exc_info.value.retryable is True
        assert route.call_count == fast_retry.max_attempts

    @respx.mock
    @pytest.mark.asyncio
    async def test_network_error_is_transient(
        self,
        fast_retry: RetryConfig,
        token_response: dict[str, Any],
    ) -> None:
        respx.post(TOKEN_URL).mock(return_value=httpx.Response(200, json=token_response))
        respx.post(GAMES_URL).mock(side_effect=httpx.ConnectError("connection refused"))

        async with make_client(fast_retry) as client:
            with pytest.raises(UpstreamTransientError):
                await client.search_by_title("Half Life 2")

    @respx.mock
    @pytest.mark.asyncio
    async def test_client_error_not_retried(
        self,
        fast_retry: RetryConfig,
        token_response: dict[str, Any],
    ) -> None:
        """A 4xx other than 401/429 is permanent."""
        respx.post(TOKEN_URL).mock(return_value=httpx.Response(200, json=token_response))
        route = respx.post(GAMES_URL).mock(return_value=httpx.Response(400))

        async with make_client(fast_retry) as client:
            with pytest.raises(UpstreamError) as exc_info:
                await client.search_by_title("Half Life 2")

        assert not isinstance(exc_info.value, UpstreamTransientError)
        assert exc_info.value.transient is False
        assert route.call_count == 1

    @respx.mock
    @pytest.mark.asyncio
    async def test_rejected_token_refreshed(
        self,
        fast_retry: RetryConfig,
        token_response: dict[str, Any],
    ) -> None:
        token_route = respx.post(TOKEN_URL).mock(return_value=httpx.Response(200, json=token_response))
        respx.post(GAMES_URL).mock(
            side_effect=[httpx.Response(401), httpx.Response(200, json=[])]
        )

        async with make_client(fast_retry) as client:
            assert await client.search_by_title("Portal") == []

        assert token_route.call_count == 2

    @respx.mock
    @pytest.mark.asyncio
    async def test_non_array_response(
        self,
        fast_retry: RetryConfig,
        token_response: dict[str, Any],
    ) -> None:
        respx.post(TOKEN_URL).mock(return_value=httpx.Response(200, json=token_response))
        respx.post(GAMES_URL).mock(return_value=httpx.Response(200, json={"message": "unexpected"}))

        async with make_client(fast_retry) as client:
            with pytest.raises(ParseError, match="JSON array"):
                await client.search_by_title("Portal")


class TestGetGames:
    """Integration tests for fetching games by id."""

    @respx.mock
    @pytest.mark.asyncio
    async def test_get_games(
        self,
        fast_retry: RetryConfig,
        token_response: dict[str, Any],
        games_response: list[dict[str, Any]],
    ) -> None:
        respx.post(TOKEN_URL).mock(return_value=httpx.Response(200, json=token_response))
        route = respx.post(GAMES_URL).mock(return_value=httpx.Response(200, json=games_response[:1]))

        async with make_client(fast_retry) as client:
            games = await client.get_games([233, 233], caller=CallerClass.WEBHOOK)

        assert [g.title for g in games] == ["Half-Life 2"]
        assert "where id = (233);" in route.calls.last.request.content.decode()

    @pytest.mark.asyncio
    async def test_no_ids_no_request(self, fast_retry: RetryConfig) -> None:
        async with make_client(fast_retry) as client:
            assert await client.get_games([]) == []


class TestCrawl:
    """Integration tests for paginated crawls."""

    @respx.mock
    @pytest.mark.asyncio
    async def test_crawl_pages_until_short_page(
        self,
        fast_retry: RetryConfig,
        token_response: dict[str, Any],
    ) -> None:
        page = load_fixture("igdb_external_games_page.json")
        respx.post(TOKEN_URL).mock(return_value=httpx.Response(200, json=token_response))
        route = respx.post(EXTERNAL_GAMES_URL).mock(
            side_effect=[
                httpx.Response(200, json=page[:2]),
                httpx.Response(200, json=page[2:]),
                httpx.Response(200, json=[]),
            ]
        )

        async with make_client(fast_retry, page_size=2) as client:
            mappings = await client.crawl(EntityFamily.EXTERNAL_GAMES)

        # Unsupported category dropped, raw count still drives paging
        assert [m.key for m in mappings] == [("steam", "220"), ("steam", "70"), ("gog", "1207658906")]
        bodies = [call.request.content.decode() for call in route.calls]
        assert [("offset 0;" in b, "offset 2;" in b, "offset 4;" in b) for b in bodies] == [
            (True, False, False),
            (False, True, False),
            (False, False, True),
        ]
        assert "where category = (1,5,26);" in bodies[0]

    @respx.mock
    @pytest.mark.asyncio
    async def test_incremental_page(
        self,
        fast_retry: RetryConfig,
        token_response: dict[str, Any],
    ) -> None:
        respx.post(TOKEN_URL).mock(return_value=httpx.Response(200, json=token_response))
        route = respx.post(GAMES_URL).mock(return_value=httpx.Response(200, json=[]))

        async with make_client(fast_retry) as client:
            records, raw_count = await client.fetch_page(EntityFamily.GAMES, updated_since=1700000000)

        assert records == []
        assert raw_count == 0
        body = route.calls.last.request.content.decode()
        assert "where platforms = (6,13,14) & updated_at >= 1700000000;" in body
        assert "sort id asc;" in body


class TestQueryHelpers:
    """Tests for Apicalypse helpers."""

    def test_quote_escapes(self) -> None:
        assert quote('Say "Hi"') == '"Say \\"Hi\\""'

    def test_family_queries_cover_every_family(self) -> None:
        queries = family_queries([6])

        assert set(queries) == set(EntityFamily)
        assert queries[EntityFamily.GAMES].where == "platforms = (6)"
        assert queries[EntityFamily.GENRES].where is None
