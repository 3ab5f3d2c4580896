"""
Resolution pipeline: storefront entry in, canonical catalog id out.

Flow per entry:
1. Mapping cache (index generation, then overlay, then durable store)
2. Candidate generation from the reference index, falling back to a
   live catalog search
3. Scoring and decision
4. Mapping write on success (store first, then the in-memory overlay)

Calls for the same (storefront_id, store_game_id) are coalesced into
a single attempt whose outcome every caller applies to its own entry.
"""

import asyncio
from dataclasses import dataclass

from game_library.catalog.index import IndexGeneration, ReferenceIndex
from game_library.catalog.models import CatalogEntry, EntityFamily, ExternalGameMapping, MappingSource
from game_library.catalog.normalize import normalize_title, title_tokens
from game_library.catalog_api.client import CatalogClient
from game_library.catalog_api.rate_limiter import CallerClass
from game_library.errors import ParseError, ResolutionTimeoutError, UpstreamError
from game_library.library.models import FailureKind, LibraryEntry, ResolutionKey, ResolutionStatus
from game_library.logger import get_logger, resolution_context
from game_library.matching.matcher import Matcher, MatchQuery
from game_library.resolution.single_flight import SingleFlight
from game_library.storage.base import LibraryStore
from game_library.storefronts import get_profile


@dataclass(frozen=True)
class ResolutionOutcome:
    """Result of one resolution attempt for a key, independent of its owner."""

    status: ResolutionStatus
    catalog_id: int | None = None
    confidence: float | None = None
    candidates: tuple[int, ...] = ()
    error: str | None = None
    failure: FailureKind = FailureKind.NO_MATCH
    via: str = "match"

    def apply(self, entry: LibraryEntry) -> LibraryEntry:
        """Produce the updated entry for this outcome."""
        if self.status == ResolutionStatus.RESOLVED and self.catalog_id is not None:
            return entry.resolved(self.catalog_id, self.confidence or 0.0)
        if self.status == ResolutionStatus.AMBIGUOUS:
            return entry.ambiguous(self.candidates, self.confidence)
        return entry.failed(self.error or "unresolved", kind=self.failure)


class ResolutionPipeline:
    """
    Resolves library entries against the reference index.

    Example:
        >>> pipeline = ResolutionPipeline(index, Matcher(), client, store)
        >>> entry = await pipeline.resolve(entry, timeout=5.0)
    """

    def __init__(
        self,
        index: ReferenceIndex,
        matcher: Matcher,
        client: CatalogClient | None,
        store: LibraryStore,
        *,
        live_search: bool = True,
        default_timeout: float | None = None,
    ) -> None:
        """
        Initialize the pipeline.

        Args:
            index: Reference index consulted for mappings and candidates
            matcher: Candidate scorer
            client: Catalog API client (None disables every live call)
            store: Durable store for mappings
            live_search: Query the catalog API when the index has no candidates
            default_timeout: Deadline applied when a caller passes none
        """
        self._index = index
        self._matcher = matcher
        self._client = client
        self._store = store
        self._live_search = live_search
        self._default_timeout = default_timeout
        self._flights: SingleFlight[ResolutionKey, ResolutionOutcome] = SingleFlight()
        self._logger = get_logger(__name__, component="resolution_pipeline")

    @property
    def in_flight(self) -> int:
        return len(self._flights)

    async def resolve(
        self,
        entry: LibraryEntry,
        *,
        timeout: float | None = None,
        caller: CallerClass = CallerClass.INTERACTIVE,
        reconcile: bool = False,
    ) -> LibraryEntry:
        """
        Resolve one library entry.

        Resolved entries come back unchanged unless `reconcile` is set.

        Args:
            entry: Entry to resolve
            timeout: Seconds before the call is abandoned
            caller: Caller class charged for catalog API calls
            reconcile: Re-run matching for an already resolved entry

        Returns:
            The entry with its new status

        Raises:
            ResolutionTimeoutError: If the deadline passed
            RateLimitedError: If a catalog call was not admitted in time
            StorageError: If the mapping store failed
        """
        if entry.is_resolved and not reconcile:
            return entry

        timeout = timeout if timeout is not None else self._default_timeout
        with resolution_context(entry.storefront_id, entry.store_game_id, caller_class=caller.value):
            try:
                outcome = await asyncio.wait_for(
                    self._flights.do(entry.key, lambda: self._attempt(entry, caller, reconcile)),
                    timeout,
                )
            except asyncio.TimeoutError as e:
                self._logger.warning("Resolution timed out", timeout_seconds=timeout)
                raise ResolutionTimeoutError(
                    f"Resolution of {entry.storefront_id}/{entry.store_game_id} "
                    f"exceeded {timeout}s",
                    source="resolution_pipeline",
                ) from e

            updated = outcome.apply(entry)
            self._logger.info(
                "Resolved entry",
                status=updated.status.value,
                catalog_id=updated.resolved_id,
                confidence=updated.confidence,
                via=outcome.via,
            )
            return updated

    async def match_manually(
        self,
        entry: LibraryEntry,
        catalog_id: int,
        *,
        caller: CallerClass = CallerClass.INTERACTIVE,
    ) -> LibraryEntry:
        """
        Resolve an entry to a user-approved catalog id.

        Replaces any mapping previously written by resolution.

        Raises:
            ValueError: If the catalog id is unknown
        """
        with resolution_context(entry.storefront_id, entry.store_game_id, caller_class=caller.value):
            if await self._catalog_entry(catalog_id, caller) is None:
                raise ValueError(f"Unknown catalog id: {catalog_id}")

            mapping = ExternalGameMapping(
                storefront_id=entry.storefront_id,
                store_game_id=entry.store_game_id,
                catalog_id=catalog_id,
                confidence=1.0,
                source=MappingSource.MANUAL,
            )
            await self._store.put_mapping(mapping)
            self._index.record_mapping(mapping, overwrite=True)

            self._logger.info("Matched entry manually", catalog_id=catalog_id)
            return entry.resolved(catalog_id, 1.0)

    async def unmatch(
        self,
        entry: LibraryEntry,
        *,
        caller: CallerClass = CallerClass.INTERACTIVE,
    ) -> LibraryEntry:
        """
        Undo a wrong match.

        The resolved or manual mapping for the entry's key is removed from
        the store and the index, and the entry comes back Failed. Bulk passes
        leave unmatched entries alone until the user matches them manually.
        A crawled mapping for the key stays in the index.

        Raises:
            StorageError: If the mapping store failed
        """
        with resolution_context(entry.storefront_id, entry.store_game_id, caller_class=caller.value):
            deleted = await self._store.delete_mapping(entry.storefront_id, entry.store_game_id)
            dropped = self._index.drop_mapping(entry.storefront_id, entry.store_game_id)

            self._logger.info(
                "Unmatched entry",
                previous_catalog_id=entry.resolved_id,
                mapping_removed=deleted or dropped is not None,
            )
            return entry.failed("unmatched", kind=FailureKind.UNMATCHED)

    # Attempt

    async def _attempt(
        self,
        entry: LibraryEntry,
        caller: CallerClass,
        reconcile: bool,
    ) -> ResolutionOutcome:
        try:
            return await self._run(entry, caller, reconcile)
        except ParseError as e:
            self._logger.warning("Resolution failed on malformed data", error=str(e))
            return ResolutionOutcome(
                status=ResolutionStatus.FAILED,
                error=str(e),
                failure=FailureKind.PERMANENT,
            )
        except UpstreamError as e:
            self._logger.warning(
                "Resolution failed on catalog error",
                error=str(e),
                status_code=e.status_code,
                transient=e.transient,
            )
            return ResolutionOutcome(
                status=ResolutionStatus.FAILED,
                error=str(e),
                failure=FailureKind.TRANSIENT if e.transient else FailureKind.PERMANENT,
            )

    async def _run(
        self,
        entry: LibraryEntry,
        caller: CallerClass,
        reconcile: bool,
    ) -> ResolutionOutcome:
        # 1. Mapping cache
        mapping = await self._cached_mapping(entry)
        if mapping is not None and not (reconcile and mapping.source == MappingSource.RESOLUTION):
            if await self._catalog_entry(mapping.catalog_id, caller) is not None:
                return ResolutionOutcome(
                    status=ResolutionStatus.RESOLVED,
                    catalog_id=mapping.catalog_id,
                    confidence=1.0,
                    via=f"cache:{mapping.source.value}",
                )
            self._logger.warning(
                "Mapped catalog id not found, falling back to search",
                catalog_id=mapping.catalog_id,
            )

        # 2. Candidates
        title = get_profile(entry.storefront_id).clean_title(entry.raw_title)
        normalized = normalize_title(title)
        if not normalized:
            raise ParseError(f"Title {entry.raw_title!r} is empty after normalization")

        candidates = self._index.search(normalized)
        if not candidates and self._live_search and self._client is not None:
            found = await self._client.search_by_title(title, caller=caller)
            if found:
                self._index.merge_family(EntityFamily.GAMES, found)
                candidates = self._index.search(normalized) or found

        if not candidates:
            return ResolutionOutcome(
                status=ResolutionStatus.FAILED,
                error="no catalog candidates",
                via="search",
            )

        # 3. Score and decide
        query = self._build_query(entry, normalized, candidates, self._index.current)
        ranked = self._matcher.rank(query, candidates)
        decision = self._matcher.decide(ranked)

        if decision.status != ResolutionStatus.RESOLVED:
            self._logger.debug(
                "Match not accepted",
                status=decision.status.value,
                reason=decision.reason,
                top=[(c.catalog_id, round(c.score, 3)) for c in ranked[:3]],
            )
            return ResolutionOutcome(
                status=decision.status,
                confidence=decision.confidence,
                candidates=decision.candidate_ids,
                error=decision.reason if decision.status == ResolutionStatus.FAILED else None,
            )

        # 4. Cache write
        best = ranked[0]
        kept = await self._write_mapping(
            ExternalGameMapping(
                storefront_id=entry.storefront_id,
                store_game_id=entry.store_game_id,
                catalog_id=best.catalog_id,
                confidence=best.score,
                source=MappingSource.RESOLUTION,
            ),
            reconcile=reconcile,
        )
        return ResolutionOutcome(
            status=ResolutionStatus.RESOLVED,
            catalog_id=kept.catalog_id,
            confidence=kept.confidence,
        )

    # Helpers

    async def _cached_mapping(self, entry: LibraryEntry) -> ExternalGameMapping | None:
        mapping = self._index.mapping(entry.storefront_id, entry.store_game_id)
        if mapping is not None:
            return mapping

        mapping = await self._store.get_mapping(entry.storefront_id, entry.store_game_id)
        if mapping is not None:
            self._index.warm_mapping(mapping)
        return mapping

    async def _catalog_entry(self, catalog_id: int, caller: CallerClass) -> CatalogEntry | None:
        """Catalog entry from the index, fetched from the catalog API if missing."""
        found = self._index.get(catalog_id)
        if found is not None or self._client is None:
            return found

        games = await self._client.get_games([catalog_id], caller=caller)
        if games:
            self._index.merge_family(EntityFamily.GAMES, games)
        return self._index.get(catalog_id)

    def _build_query(
        self,
        entry: LibraryEntry,
        normalized: str,
        candidates: list[CatalogEntry],
        generation: IndexGeneration,
    ) -> MatchQuery:
        # A candidate's collection counts when its name is part of the title
        title_words = set(title_tokens(normalized))
        collection_ids = set()
        for candidate in candidates:
            if candidate.collection_id is None or candidate.collection_id in collection_ids:
                continue
            collection = generation.collections.get(candidate.collection_id)
            if collection is None:
                continue
            collection_words = title_tokens(normalize_title(collection.name))
            if collection_words and set(collection_words) <= title_words:
                collection_ids.add(collection.id)

        return MatchQuery(
            title=entry.raw_title,
            normalized_title=normalized,
            release_year=entry.release_year,
            company_ids=generation.companies_by_name(entry.developers),
            collection_ids=frozenset(collection_ids),
        )

    async def _write_mapping(
        self,
        mapping: ExternalGameMapping,
        *,
        reconcile: bool,
    ) -> ExternalGameMapping:
        """
        Persist a resolved mapping unless an existing one takes precedence.

        Returns:
            The mapping now in effect for the key
        """
        existing = self._index.mapping(*mapping.key) or await self._store.get_mapping(*mapping.key)
        if existing is not None:
            replace = (
                reconcile
                and existing.source == MappingSource.RESOLUTION
                and mapping.confidence > existing.confidence
            )
            if not replace:
                return existing
            self._logger.info(
                "Reconciled mapping",
                previous_catalog_id=existing.catalog_id,
                previous_confidence=existing.confidence,
                catalog_id=mapping.catalog_id,
                confidence=mapping.confidence,
            )

        await self._store.put_mapping(mapping)
        self._index.record_mapping(mapping, overwrite=existing is not None)
        return mapping
