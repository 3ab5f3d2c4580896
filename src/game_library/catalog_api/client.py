"""
IGDB catalog API client with retry logic, admission control and OAuth.

Requests are Apicalypse queries POSTed to `{base_url}/{endpoint}/`,
authenticated with a Twitch client-credentials token. Every request
passes the shared AdmissionGate under the caller's class; transient
failures are retried with exponential backoff.
"""

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

import httpx
from pydantic import ValidationError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from game_library.catalog.models import CatalogEntry, EntityFamily
from game_library.catalog_api.contracts import TwitchToken, parse_family_records
from game_library.catalog_api.rate_limiter import AdmissionGate, CallerClass
from game_library.config import CatalogAPIConfig, RetryConfig, get_settings
from game_library.errors import ParseError, UpstreamError, UpstreamTransientError
from game_library.logger import get_logger
from game_library.storefronts import STOREFRONT_PROFILES

GAME_FIELDS = (
    "name,slug,alternative_names.name,first_release_date,collection,collections,"
    "involved_companies.company,involved_companies.developer,involved_companies.publisher,"
    "genres,keywords,platforms"
)

# Refresh tokens this long before Twitch expires them
TOKEN_EXPIRY_MARGIN = timedelta(minutes=5)


@dataclass(frozen=True)
class FamilyQuery:
    """How one entity family is crawled."""

    endpoint: str
    fields: str
    where: str | None = None


def _external_categories() -> str:
    categories = sorted(
        p.external_category for p in STOREFRONT_PROFILES.values() if p.external_category is not None
    )
    return ",".join(str(c) for c in categories)


def family_queries(platforms: Sequence[int]) -> dict[EntityFamily, FamilyQuery]:
    """Crawl definition per entity family."""
    platform_list = ",".join(str(p) for p in platforms)
    return {
        EntityFamily.GAMES: FamilyQuery(
            endpoint="games",
            fields=GAME_FIELDS,
            where=f"platforms = ({platform_list})",
        ),
        EntityFamily.COLLECTIONS: FamilyQuery(
            endpoint="collections",
            fields="name,slug,games",
        ),
        EntityFamily.COMPANIES: FamilyQuery(
            endpoint="companies",
            fields="name,slug",
        ),
        EntityFamily.EXTERNAL_GAMES: FamilyQuery(
            endpoint="external_games",
            fields="game,uid,category,name",
            where=f"category = ({_external_categories()})",
        ),
        EntityFamily.GENRES: FamilyQuery(
            endpoint="genres",
            fields="name,slug",
        ),
        EntityFamily.KEYWORDS: FamilyQuery(
            endpoint="keywords",
            fields="name,slug",
        ),
    }


def quote(value: str) -> str:
    """Quote a string literal for an Apicalypse query."""
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


class IgdbClient:
    """
    Client for the IGDB v4 API.

    Example:
        >>> async with IgdbClient() as client:
        ...     games = await client.search_by_title("Half-Life 2")
    """

    source_name = "igdb"

    def __init__(
        self,
        *,
        config: CatalogAPIConfig | None = None,
        retry_config: RetryConfig | None = None,
        gate: AdmissionGate | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            config: IGDB settings (read from settings if None)
            retry_config: Custom retry configuration (uses defaults if None)
            gate: Admission gate shared with other clients
        """
        if config is None or retry_config is None or gate is None:
            settings = get_settings()
            config = config or settings.catalog
            retry_config = retry_config or settings.retry
            gate = gate or AdmissionGate(settings.rate_limit)

        self._config = config
        self._retry_config = retry_config
        self._gate = gate
        self._queries = family_queries(config.platforms)
        self._logger = get_logger(__name__, component="catalog_client", source=self.source_name)
        self._client: httpx.AsyncClient | None = None
        self._token: TwitchToken | None = None
        self._token_expires_at: datetime | None = None
        self._token_lock = asyncio.Lock()

    @property
    def gate(self) -> AdmissionGate:
        return self._gate

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._config.timeout_seconds),
                follow_redirects=True,
                headers={
                    "User-Agent": "GameLibraryResolver/1.0",
                    "Accept": "application/json",
                },
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "IgdbClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # Authentication

    async def _access_token(self) -> str:
        async with self._token_lock:
            now = datetime.now(timezone.utc)
            if (
                self._token is not None
                and self._token_expires_at is not None
                and now < self._token_expires_at - TOKEN_EXPIRY_MARGIN
            ):
                return self._token.access_token

            self._logger.info("Requesting Twitch access token")
            try:
                response = await self.client.post(
                    self._config.oauth_url,
                    params={
                        "client_id": self._config.client_id,
                        "client_secret": self._config.client_secret.get_secret_value(),
                        "grant_type": "client_credentials",
                    },
                )
            except httpx.HTTPError as e:
                raise UpstreamTransientError(
                    f"Token request failed: {e}",
                    source="twitch",
                    endpoint=self._config.oauth_url,
                    original_error=e,
                ) from e

            self._raise_for_status(response, source="twitch")
            try:
                self._token = TwitchToken.model_validate(response.json())
            except (ValueError, ValidationError) as e:
                raise ParseError(
                    "Malformed token response",
                    source="twitch",
                    endpoint=self._config.oauth_url,
                    original_error=e,
                ) from e

            self._token_expires_at = now + timedelta(seconds=self._token.expires_in)
            return self._token.access_token

    def _invalidate_token(self) -> None:
        self._token = None
        self._token_expires_at = None

    # Requests

    def _create_retry_decorator(self) -> Any:
        """Create retry decorator with current configuration."""
        return retry(
            retry=retry_if_exception_type(UpstreamTransientError),
            stop=stop_after_attempt(self._retry_config.max_attempts),
            wait=wait_exponential(
                multiplier=self._retry_config.base_delay_seconds,
                max=self._retry_config.max_delay_seconds,
                exp_base=self._retry_config.exponential_base,
            ),
            before_sleep=self._log_retry_attempt,
            reraise=True,
        )

    def _log_retry_attempt(self, retry_state: Any) -> None:
        """Log retry attempts for observability."""
        self._logger.warning(
            "Retrying request",
            attempt=retry_state.attempt_number,
            wait_seconds=retry_state.next_action.sleep if retry_state.next_action else 0,
            exception=str(retry_state.outcome.exception()) if retry_state.outcome else None,
        )

    def _raise_for_status(self, response: httpx.Response, *, source: str) -> None:
        url = str(response.request.url)
        if response.status_code == 429 or response.status_code >= 500:
            raise UpstreamTransientError(
                f"API error: {response.status_code}",
                source=source,
                endpoint=url,
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise UpstreamError(
                f"API error: {response.status_code}",
                source=source,
                endpoint=url,
                status_code=response.status_code,
            )

    async def _post(
        self,
        endpoint: str,
        body: str,
        *,
        caller: CallerClass,
    ) -> list[dict[str, Any]]:
        """
        POST an Apicalypse query with retry logic.

        Returns:
            Raw records from the response

        Raises:
            UpstreamTransientError: If the request kept failing transiently
            UpstreamError: On a permanent API error
            ParseError: If the response is not a JSON array
            RateLimitedError: If the caller's budget was exhausted
        """
        url = f"{self._config.base_url}/{endpoint}/"
        retry_decorator = self._create_retry_decorator()

        @retry_decorator
        async def _request() -> httpx.Response:
            token = await self._access_token()
            async with self._gate.admit(caller):
                self._logger.debug("Making request", endpoint=endpoint, caller_class=caller.value)
                try:
                    response = await self.client.post(
                        url,
                        content=body,
                        headers={
                            "Client-ID": self._config.client_id,
                            "Authorization": f"Bearer {token}",
                        },
                    )
                except httpx.HTTPError as e:
                    raise UpstreamTransientError(
                        f"Request failed: {e}",
                        source=self.source_name,
                        endpoint=url,
                        original_error=e,
                    ) from e

            if response.status_code == 401:
                # Token revoked or expired early
                self._invalidate_token()
                raise UpstreamTransientError(
                    "Access token rejected",
                    source=self.source_name,
                    endpoint=url,
                    status_code=401,
                )
            self._raise_for_status(response, source=self.source_name)
            return response

        try:
            response = await _request()
        except UpstreamTransientError:
            self._logger.error(
                "Request failed after retries",
                endpoint=endpoint,
                attempts=self._retry_config.max_attempts,
            )
            raise

        try:
            payload = response.json()
        except ValueError as e:
            raise ParseError(
                "Response is not valid JSON",
                source=self.source_name,
                endpoint=url,
                original_error=e,
            ) from e
        if not isinstance(payload, list):
            raise ParseError(
                f"Expected a JSON array, got {type(payload).__name__}",
                source=self.source_name,
                endpoint=url,
            )
        return payload

    # Operations

    async def search_by_title(
        self,
        title: str,
        *,
        caller: CallerClass = CallerClass.INTERACTIVE,
        limit: int = 50,
    ) -> list[CatalogEntry]:
        """Free-text search restricted to the configured platforms."""
        platform_list = ",".join(str(p) for p in self._config.platforms)
        body = (
            f"search {quote(title)}; fields {GAME_FIELDS}; "
            f"where platforms = ({platform_list}); limit {limit};"
        )
        records = await self._post("games", body, caller=caller)
        games = parse_family_records(EntityFamily.GAMES, records)

        self._logger.info("Searched catalog", title=title, results=len(games))
        return games

    async def get_games(
        self,
        ids: Sequence[int],
        *,
        caller: CallerClass = CallerClass.INTERACTIVE,
    ) -> list[CatalogEntry]:
        """Fetch games by catalog id."""
        if not ids:
            return []
        id_list = ",".join(str(i) for i in sorted(set(ids)))
        body = f"fields {GAME_FIELDS}; where id = ({id_list}); limit {len(ids)};"
        records = await self._post("games", body, caller=caller)
        return parse_family_records(EntityFamily.GAMES, records)

    async def fetch_page(
        self,
        family: EntityFamily,
        offset: int = 0,
        *,
        caller: CallerClass = CallerClass.BULK,
        updated_since: int | None = None,
    ) -> tuple[list[Any], int]:
        """
        Fetch one page of an entity family.

        Returns:
            Converted records and the number of raw records on the page
            (unsupported external game categories are dropped from the former)
        """
        query = self._queries[family]
        clauses = [query.where] if query.where else []
        if updated_since:
            clauses.append(f"updated_at >= {updated_since}")
        where = f" where {' & '.join(clauses)};" if clauses else ""
        body = (
            f"fields {query.fields};{where} sort id asc; "
            f"limit {self._config.page_size}; offset {offset};"
        )

        records = await self._post(query.endpoint, body, caller=caller)
        return parse_family_records(family, records), len(records)

    async def crawl(
        self,
        family: EntityFamily,
        *,
        caller: CallerClass = CallerClass.BULK,
        updated_since: int | None = None,
    ) -> list[Any]:
        """
        Crawl every page of an entity family.

        Args:
            family: Entity family to crawl
            caller: Caller class charged for the requests
            updated_since: Only records updated after this unix timestamp
        """
        records: list[Any] = []
        offset = 0
        while True:
            page, raw_count = await self.fetch_page(
                family, offset, caller=caller, updated_since=updated_since
            )
            records.extend(page)
            self._logger.debug(
                "Fetched page", family=family.value, offset=offset, records=raw_count
            )
            if raw_count < self._config.page_size:
                break
            offset += raw_count

        self._logger.info("Crawled family", family=family.value, records=len(records))
        return records


class CatalogClient(Protocol):
    """Catalog operations the resolution pipeline and coordinator depend on."""

    async def search_by_title(
        self, title: str, *, caller: CallerClass = CallerClass.INTERACTIVE, limit: int = 50
    ) -> list[CatalogEntry]: ...

    async def get_games(
        self, ids: Sequence[int], *, caller: CallerClass = CallerClass.INTERACTIVE
    ) -> list[CatalogEntry]: ...

    async def crawl(
        self,
        family: EntityFamily,
        *,
        caller: CallerClass = CallerClass.BULK,
        updated_since: int | None = None,
    ) -> list[Any]: ...
