"""
Refresh coordinator that keeps the index and the library current.

Two entry points:
- Bulk refresh: re-crawl catalog families, rebuild the index per
  family, then re-resolve every pending library entry.
- Webhooks: storefront library notifications are upserted and queued
  for resolution workers; catalog change events are merged into the
  index.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, TypeVar
from uuid import UUID, uuid4

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from game_library.catalog.index import ReferenceIndex
from game_library.catalog.models import EntityFamily, ExternalGameMapping
from game_library.catalog.snapshots import SnapshotWriter
from game_library.catalog_api.client import CatalogClient
from game_library.catalog_api.contracts import parse_family_records
from game_library.catalog_api.rate_limiter import CallerClass
from game_library.config import RefreshConfig, RetryConfig, get_settings
from game_library.errors import ParseError, ResolutionError, StorageError
from game_library.library.models import LibraryEntry, ResolutionStatus
from game_library.logger import get_logger
from game_library.refresh.notifications import LibraryNotification, NotificationReceipt
from game_library.resolution.pipeline import ResolutionPipeline
from game_library.storage.base import LibraryStore
from game_library.storefronts import normalize_store_record, parse_storefront

T = TypeVar("T")

# Crawl order; games last so mappings and companies are in place first
DEFAULT_FAMILIES: tuple[EntityFamily, ...] = (
    EntityFamily.COMPANIES,
    EntityFamily.COLLECTIONS,
    EntityFamily.GENRES,
    EntityFamily.KEYWORDS,
    EntityFamily.EXTERNAL_GAMES,
    EntityFamily.GAMES,
)


class JobState(str, Enum):
    """Lifecycle of a bulk refresh job."""

    SCHEDULED = "scheduled"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    PARTIALLY_FAILED = "partially_failed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.PARTIALLY_FAILED, JobState.FAILED)


@dataclass
class RefreshJob:
    """Tracks a bulk refresh run."""

    job_id: UUID
    families: tuple[EntityFamily, ...]
    reconcile: bool = False
    state: JobState = JobState.SCHEDULED
    scheduled_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    started_at: datetime | None = None
    completed_at: datetime | None = None
    families_refreshed: list[str] = field(default_factory=list)
    families_failed: dict[str, str] = field(default_factory=dict)
    snapshots_written: list[str] = field(default_factory=list)
    entries_total: int = 0
    entries_resolved: int = 0
    entries_unresolved: int = 0
    entries_skipped: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    index_version: int | None = None

    @property
    def duration_seconds(self) -> float | None:
        """Get total duration in seconds."""
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": str(self.job_id),
            "state": self.state.value,
            "families": [f.value for f in self.families],
            "reconcile": self.reconcile,
            "scheduled_at": self.scheduled_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "families_refreshed": self.families_refreshed,
            "families_failed": self.families_failed,
            "snapshots_written": self.snapshots_written,
            "entries_total": self.entries_total,
            "entries_resolved": self.entries_resolved,
            "entries_unresolved": self.entries_unresolved,
            "entries_skipped": self.entries_skipped,
            "errors": self.errors,
            "index_version": self.index_version,
        }


class RefreshCoordinator:
    """
    Orchestrates bulk refreshes and webhook-driven resolution.

    Example:
        >>> coordinator = RefreshCoordinator(index, pipeline, client, store)
        >>> await coordinator.start()
        >>> job_id = coordinator.trigger_bulk_refresh()
        >>> job = await coordinator.wait_for_job(job_id)
    """

    def __init__(
        self,
        index: ReferenceIndex,
        pipeline: ResolutionPipeline,
        client: CatalogClient,
        store: LibraryStore,
        *,
        config: RefreshConfig | None = None,
        retry_config: RetryConfig | None = None,
        snapshot_writer: SnapshotWriter | None = None,
    ) -> None:
        if config is None or retry_config is None:
            settings = get_settings()
            config = config or settings.refresh
            retry_config = retry_config or settings.retry

        self._index = index
        self._pipeline = pipeline
        self._client = client
        self._store = store
        self._config = config
        self._retry_config = retry_config
        self._snapshots = snapshot_writer
        self._logger = get_logger(__name__, component="refresh_coordinator")

        self._jobs: dict[UUID, RefreshJob] = {}
        self._job_tasks: dict[UUID, asyncio.Task[RefreshJob]] = {}
        self._bulk_lock = asyncio.Lock()
        self._failed_families: set[EntityFamily] = set()

        self._queue: asyncio.Queue[LibraryEntry] = asyncio.Queue()
        self._workers: list[asyncio.Task[None]] = []
        self._notifications_in_flight: set[str] = set()

    # Lifecycle

    async def start(self) -> None:
        """Start webhook resolution workers."""
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(n), name=f"resolution-worker-{n}")
            for n in range(self._config.webhook_workers)
        ]
        self._logger.info("Started resolution workers", workers=len(self._workers))

    async def stop(self) -> None:
        """Stop workers. Queued entries stay unresolved until the next bulk pass."""
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._logger.info("Stopped resolution workers", pending=self._queue.qsize())

    async def drain(self) -> None:
        """Wait until every queued entry has been processed."""
        await self._queue.join()

    @property
    def queue_size(self) -> int:
        return self._queue.qsize()

    # Bulk refresh

    def trigger_bulk_refresh(
        self,
        *,
        families: Iterable[EntityFamily] | None = None,
        reconcile: bool = False,
    ) -> UUID:
        """
        Schedule a bulk refresh. Jobs run one at a time in scheduling order.

        Args:
            families: Families to crawl (all by default)
            reconcile: Re-resolve resolved entries too

        Returns:
            Job id for job_status()
        """
        requested = tuple(families) if families is not None else DEFAULT_FAMILIES
        job = RefreshJob(job_id=uuid4(), families=requested, reconcile=reconcile)
        self._jobs[job.job_id] = job
        self._job_tasks[job.job_id] = asyncio.create_task(
            self._run_job(job), name=f"bulk-refresh-{job.job_id}"
        )

        self._logger.info(
            "Scheduled bulk refresh",
            job_id=str(job.job_id),
            families=[f.value for f in requested],
            reconcile=reconcile,
        )
        return job.job_id

    def job_status(self, job_id: UUID) -> JobState:
        """
        Raises:
            KeyError: If the job is unknown
        """
        return self._jobs[job_id].state

    def get_job(self, job_id: UUID) -> RefreshJob:
        return self._jobs[job_id]

    def list_jobs(self) -> list[RefreshJob]:
        return sorted(self._jobs.values(), key=lambda j: j.scheduled_at)

    async def wait_for_job(self, job_id: UUID) -> RefreshJob:
        """Wait for a job to reach a terminal state."""
        return await self._job_tasks[job_id]

    async def run_schedule(self, stop_event: asyncio.Event) -> None:
        """Run a bulk refresh every `interval_hours` until `stop_event` is set."""
        interval = self._config.interval_hours * 3600
        while not stop_event.is_set():
            job_id = self.trigger_bulk_refresh()
            job = await self.wait_for_job(job_id)
            self._logger.info(
                "Scheduled refresh finished",
                job_id=str(job_id),
                state=job.state.value,
                next_run_seconds=interval,
            )
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

    async def _run_job(self, job: RefreshJob) -> RefreshJob:
        async with self._bulk_lock:
            job.state = JobState.RUNNING
            job.started_at = datetime.now(timezone.utc)
            self._logger.info("Starting bulk refresh", job_id=str(job.job_id))

            try:
                await self._refresh_families(job)
                await self._resolve_pending(job)
            except Exception as e:
                self._logger.exception("Bulk refresh aborted", job_id=str(job.job_id))
                job.errors.append({"stage": "job", "error": str(e)})
                job.state = JobState.FAILED
            else:
                job.state = self._final_state(job)

            job.index_version = self._index.version
            job.completed_at = datetime.now(timezone.utc)
            self._logger.info(
                "Bulk refresh complete",
                job_id=str(job.job_id),
                state=job.state.value,
                duration_seconds=job.duration_seconds,
                families_refreshed=len(job.families_refreshed),
                families_failed=len(job.families_failed),
                entries_total=job.entries_total,
                entries_resolved=job.entries_resolved,
                total_errors=len(job.errors),
            )
            return job

    def _final_state(self, job: RefreshJob) -> JobState:
        if job.families and len(job.families_failed) == len(job.families):
            return JobState.FAILED
        if job.families_failed or job.errors:
            return JobState.PARTIALLY_FAILED
        return JobState.SUCCEEDED

    def _family_order(self, families: Sequence[EntityFamily]) -> list[EntityFamily]:
        # Families that failed last time go first
        retry_first = [f for f in families if f in self._failed_families]
        return retry_first + [f for f in families if f not in self._failed_families]

    async def _refresh_families(self, job: RefreshJob) -> None:
        for family in self._family_order(job.families):
            try:
                records = await self._client.crawl(family, caller=CallerClass.BULK)
                generation = self._index.rebuild_family(family, records)
            except ResolutionError as e:
                self._failed_families.add(family)
                job.families_failed[family.value] = str(e)
                self._logger.error(
                    "Family refresh failed",
                    job_id=str(job.job_id),
                    family=family.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue

            self._failed_families.discard(family)
            job.families_refreshed.append(family.value)
            self._write_snapshot(job, family, records, generation.version)

    def _write_snapshot(
        self,
        job: RefreshJob,
        family: EntityFamily,
        records: Sequence[Any],
        index_version: int,
    ) -> None:
        if self._snapshots is None:
            return
        # Family stays refreshed; the index already serves it
        try:
            path = self._snapshots.write_family(family, records, index_version=index_version)
        except StorageError as e:
            job.errors.append({"stage": "snapshot", "family": family.value, "error": str(e)})
            self._logger.error(
                "Snapshot write failed",
                job_id=str(job.job_id),
                family=family.value,
                error=str(e),
            )
            return
        job.snapshots_written.append(str(path))

    async def _resolve_pending(self, job: RefreshJob) -> None:
        statuses = set(ResolutionStatus.pending())
        if job.reconcile:
            statuses.add(ResolutionStatus.RESOLVED)

        listed = await self._store_call(self._store.list_entries, statuses=statuses)
        entries = [e for e in listed if e.awaits_resolution or (job.reconcile and e.is_resolved)]
        job.entries_total = len(entries)
        job.entries_skipped = len(listed) - len(entries)
        if job.entries_skipped:
            self._logger.info(
                "Skipping entries that failed permanently",
                job_id=str(job.job_id),
                skipped=job.entries_skipped,
            )
        semaphore = asyncio.Semaphore(self._config.bulk_concurrency)

        async def _resolve_one(entry: LibraryEntry) -> None:
            async with semaphore:
                try:
                    updated = await self._resolve_and_persist(
                        entry, caller=CallerClass.BULK, reconcile=job.reconcile
                    )
                except ResolutionError as e:
                    job.errors.append(
                        {
                            "storefront_id": entry.storefront_id,
                            "store_game_id": entry.store_game_id,
                            "user_id": entry.user_id,
                            "error": str(e),
                            "error_type": type(e).__name__,
                        }
                    )
                    job.entries_unresolved += 1
                    self._logger.warning(
                        "Skipping entry",
                        job_id=str(job.job_id),
                        storefront_id=entry.storefront_id,
                        store_game_id=entry.store_game_id,
                        error=str(e),
                    )
                    return

                if updated.is_resolved:
                    job.entries_resolved += 1
                else:
                    job.entries_unresolved += 1

        await asyncio.gather(*(_resolve_one(entry) for entry in entries))

    # Webhooks

    async def handle_notification(self, notification: LibraryNotification) -> NotificationReceipt:
        """
        Accept a storefront library notification.

        The idempotency key is recorded only after every entry is upserted
        and queued, so a failed delivery can be retried safely.

        Raises:
            ParseError: If the storefront is unknown
            StorageError: If the store kept failing
        """
        key = notification.key
        log = self._logger.bind(idempotency_key=key, user_id=notification.user_id)

        if key in self._notifications_in_flight:
            log.info("Duplicate notification acknowledged", in_flight=True)
            return NotificationReceipt(idempotency_key=key, duplicate=True)

        # Claimed before the first await so a concurrent redelivery sees it
        self._notifications_in_flight.add(key)
        try:
            if await self._store_call(self._store.has_notification, key):
                log.info("Duplicate notification acknowledged")
                return NotificationReceipt(idempotency_key=key, duplicate=True)

            storefront = parse_storefront(notification.storefront_id)
            accepted: list[LibraryEntry] = []
            rejected: list[str] = []

            for raw in notification.entries:
                try:
                    record = normalize_store_record(storefront, raw)
                except ParseError as e:
                    rejected.append(str(e))
                    continue

                existing = await self._store_call(
                    self._store.get_entry,
                    notification.user_id,
                    storefront.value,
                    record.store_game_id,
                )
                entry = (
                    existing.retitled(record)
                    if existing is not None
                    else LibraryEntry.from_store_record(record, user_id=notification.user_id)
                )
                await self._store_call(self._store.put_entry, entry)
                accepted.append(entry)

            queued = [entry for entry in accepted if entry.awaits_resolution]
            for entry in queued:
                self._queue.put_nowait(entry)

            await self._store_call(self._store.record_notification, key)
        finally:
            self._notifications_in_flight.discard(key)

        log.info(
            "Accepted notification",
            storefront_id=storefront.value,
            accepted=len(accepted),
            enqueued=len(queued),
            rejected=len(rejected),
        )
        return NotificationReceipt(
            idempotency_key=key,
            accepted=len(accepted),
            enqueued=len(queued),
            rejected=rejected,
        )

    async def handle_catalog_event(
        self,
        family: EntityFamily,
        records: list[dict[str, Any]],
    ) -> int:
        """
        Merge a catalog create/update event into the index.

        Pending library entries that a new external game mapping covers
        are queued for resolution.

        Returns:
            Number of records merged

        Raises:
            ParseError: If the records do not match the family's contract
        """
        parsed = parse_family_records(family, records)
        generation = self._index.merge_family(family, parsed)
        self._logger.info(
            "Merged catalog event",
            family=family.value,
            records=len(parsed),
            index_version=generation.version,
        )

        if family == EntityFamily.EXTERNAL_GAMES and parsed:
            keys = {mapping.key for mapping in parsed if isinstance(mapping, ExternalGameMapping)}
            pending = await self._store_call(
                self._store.list_entries, statuses=ResolutionStatus.pending()
            )
            for entry in pending:
                if entry.key in keys:
                    self._queue.put_nowait(entry)

        return len(parsed)

    async def _worker(self, number: int) -> None:
        log = self._logger.bind(worker=number)
        while True:
            entry = await self._queue.get()
            try:
                await self._resolve_and_persist(entry, caller=CallerClass.WEBHOOK)
            except ResolutionError as e:
                # Left pending for the next bulk pass
                log.warning(
                    "Webhook resolution failed",
                    storefront_id=entry.storefront_id,
                    store_game_id=entry.store_game_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            except Exception:
                log.exception(
                    "Unexpected error in resolution worker",
                    storefront_id=entry.storefront_id,
                    store_game_id=entry.store_game_id,
                )
            finally:
                self._queue.task_done()

    # Shared

    async def _resolve_and_persist(
        self,
        entry: LibraryEntry,
        *,
        caller: CallerClass,
        reconcile: bool = False,
    ) -> LibraryEntry:
        updated = await self._pipeline.resolve(
            entry,
            caller=caller,
            reconcile=reconcile,
            timeout=self._config.resolve_timeout_seconds,
        )
        if updated != entry:
            await self._store_call(self._store.put_entry, updated)
        return updated

    def _create_retry_decorator(self) -> Any:
        """Retry decorator for store calls."""
        return retry(
            retry=retry_if_exception_type(StorageError),
            stop=stop_after_attempt(self._config.storage_retry_attempts),
            wait=wait_exponential(
                multiplier=self._retry_config.base_delay_seconds,
                max=self._retry_config.max_delay_seconds,
                exp_base=self._retry_config.exponential_base,
            ),
            before_sleep=self._log_retry_attempt,
            reraise=True,
        )

    def _log_retry_attempt(self, retry_state: Any) -> None:
        self._logger.warning(
            "Retrying store call",
            attempt=retry_state.attempt_number,
            wait_seconds=retry_state.next_action.sleep if retry_state.next_action else 0,
            exception=str(retry_state.outcome.exception()) if retry_state.outcome else None,
        )

    async def _store_call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        @self._create_retry_decorator()
        async def _call() -> T:
            return await fn(*args, **kwargs)

        return await _call()  # type: ignore[no-any-return]
