"""
Command-line interface for the game library resolver.

Provides commands to search the catalog, resolve single entries and
run a bulk refresh manually.
"""

import asyncio
import json
import sys
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel

from game_library.catalog.index import ReferenceIndex
from game_library.catalog.models import EntityFamily
from game_library.catalog.normalize import normalize_title
from game_library.catalog.snapshots import SnapshotWriter
from game_library.catalog_api.client import IgdbClient
from game_library.catalog_api.rate_limiter import AdmissionGate
from game_library.config import Settings, get_settings
from game_library.errors import IndexStaleError
from game_library.library.models import LibraryEntry
from game_library.logger import get_logger, setup_logging
from game_library.matching.matcher import Matcher, MatchQuery
from game_library.refresh.coordinator import JobState, RefreshCoordinator
from game_library.resolution.pipeline import ResolutionPipeline
from game_library.storage.json_store import JsonFileStore
from game_library.storefronts import StoreRecord, parse_storefront

logger = get_logger(__name__, component="cli")


class CLIOutput(BaseModel):
    """Structured output for CLI commands."""

    success: bool
    command: str
    timestamp: datetime = datetime.now(timezone.utc)
    data: dict[str, Any] | list[Any] | None = None
    error: str | None = None


def print_json(output: CLIOutput) -> None:
    """Print output as formatted JSON."""
    print(json.dumps(output.model_dump(), indent=2, default=str))


@dataclass
class Services:
    """Wired components for one CLI invocation."""

    settings: Settings
    index: ReferenceIndex
    matcher: Matcher
    client: IgdbClient
    store: JsonFileStore
    snapshots: SnapshotWriter
    pipeline: ResolutionPipeline
    coordinator: RefreshCoordinator


async def build_services(settings: Settings | None = None) -> Services:
    """Wire components and warm the index from the latest snapshots."""
    settings = settings or get_settings()

    index = ReferenceIndex(settings.index, max_candidates=settings.matching.max_candidates)
    snapshots = SnapshotWriter(output_dir=settings.storage.snapshot_dir)
    try:
        index.rebuild(snapshots.load_snapshot())
    except IndexStaleError as e:
        logger.warning("Starting with an empty index", reason=str(e))

    store = JsonFileStore(data_dir=settings.storage.data_dir)
    for mapping in await store.list_mappings():
        index.warm_mapping(mapping)

    matcher = Matcher(settings.matching)
    client = IgdbClient(
        config=settings.catalog,
        retry_config=settings.retry,
        gate=AdmissionGate(settings.rate_limit),
    )
    pipeline = ResolutionPipeline(
        index,
        matcher,
        client,
        store,
        live_search=settings.catalog.live_search,
        default_timeout=settings.refresh.resolve_timeout_seconds,
    )
    coordinator = RefreshCoordinator(
        index,
        pipeline,
        client,
        store,
        config=settings.refresh,
        retry_config=settings.retry,
        snapshot_writer=snapshots,
    )
    return Services(
        settings=settings,
        index=index,
        matcher=matcher,
        client=client,
        store=store,
        snapshots=snapshots,
        pipeline=pipeline,
        coordinator=coordinator,
    )


async def cmd_test_config() -> None:
    """Test configuration loading."""
    settings = get_settings()

    output = CLIOutput(
        success=True,
        command="test-config",
        data={
            "environment": settings.environment,
            "igdb_base_url": settings.catalog.base_url,
            "igdb_platforms": settings.catalog.platforms,
            "requests_per_second": settings.rate_limit.requests_per_second,
            "accept_threshold": settings.matching.accept_threshold,
            "min_catalog_entries": settings.index.min_catalog_entries,
            "data_dir": str(settings.storage.data_dir),
            "client_secret_configured": bool(settings.catalog.client_secret.get_secret_value()),
        },
    )
    print_json(output)


async def cmd_search(title: str) -> None:
    """Score local index candidates for a title."""
    services = await build_services()
    try:
        query = MatchQuery.from_title(title)
        candidates = services.index.search(query.normalized_title)
        ranked = services.matcher.rank(query, candidates)
        decision = services.matcher.decide(ranked)
    finally:
        await services.client.close()

    output = CLIOutput(
        success=True,
        command="search",
        data={
            "normalized_title": normalize_title(title),
            "decision": decision.status.value,
            "reason": decision.reason,
            "candidates": [
                {
                    "catalog_id": c.catalog_id,
                    "title": c.title,
                    "score": round(c.score, 4),
                    "title_similarity": round(c.signals.title_similarity, 4),
                }
                for c in ranked[:10]
            ],
        },
    )
    print_json(output)


async def cmd_resolve(storefront: str, store_game_id: str, title: str, user_id: str) -> None:
    """Resolve a single storefront entry and persist it."""
    services = await build_services()
    record = StoreRecord(
        storefront=parse_storefront(storefront),
        store_game_id=store_game_id,
        title=title,
    )
    existing = await services.store.get_entry(user_id, record.storefront.value, store_game_id)
    entry = existing or LibraryEntry.from_store_record(record, user_id=user_id)

    try:
        resolved = await services.pipeline.resolve(entry)
    finally:
        await services.client.close()
    await services.store.put_entry(resolved)

    output = CLIOutput(
        success=resolved.is_resolved,
        command="resolve",
        data=resolved.to_dict(),
        error=resolved.error,
    )
    print_json(output)


async def cmd_match(storefront: str, store_game_id: str, catalog_id: int, user_id: str) -> None:
    """Approve a catalog id for an entry."""
    services = await build_services()
    entry = await services.store.get_entry(
        user_id, parse_storefront(storefront).value, store_game_id
    )
    if entry is None:
        raise ValueError(f"No library entry {storefront}/{store_game_id} for user {user_id!r}")

    try:
        resolved = await services.pipeline.match_manually(entry, catalog_id)
    finally:
        await services.client.close()
    await services.store.put_entry(resolved)

    print_json(CLIOutput(success=True, command="match", data=resolved.to_dict()))


async def cmd_refresh(reconcile: bool, families: list[EntityFamily] | None) -> None:
    """Run a bulk refresh and wait for it."""
    services = await build_services()
    coordinator = services.coordinator

    print("Game Library Resolver - Bulk Refresh")
    print(f"{'='*50}")
    print(f"  Families: {[f.value for f in families] if families else 'all'}")
    print(f"  Reconcile: {reconcile}")
    print(f"{'='*50}\n")

    try:
        job_id = coordinator.trigger_bulk_refresh(families=families, reconcile=reconcile)
        job = await coordinator.wait_for_job(job_id)
    finally:
        await services.client.close()

    print_json(
        CLIOutput(
            success=job.state == JobState.SUCCEEDED,
            command="refresh",
            data=job.to_dict(),
        )
    )


async def cmd_status() -> None:
    """Show index and library statistics."""
    services = await build_services()
    await services.client.close()

    entries = await services.store.list_entries()
    by_status = Counter(entry.status.value for entry in entries)

    output = CLIOutput(
        success=True,
        command="status",
        data={
            "index": services.index.current.stats(),
            "library": {"total": len(entries), "by_status": dict(by_status)},
        },
    )
    print_json(output)


def print_usage() -> None:
    """Print CLI usage information."""
    usage = """
Game Library Resolver CLI
=========================

Usage: game-library <command> [arguments]

Commands:
  test-config                                  Test configuration loading
  search <title>                               Score index candidates for a title
  resolve <storefront> <store_game_id> <title> Resolve and store one entry
  match <storefront> <store_game_id> <catalog_id>
                                               Approve a catalog id for an entry
  refresh [--reconcile] [--families a,b]       Crawl the catalog and re-resolve
  status                                       Show index and library statistics

Options:
  --user <user_id>            Library owner for resolve/match (default: "local")

Examples:
  game-library resolve steam 220 "Half-Life 2"
  game-library refresh --families games,external_games
"""
    print(usage)


def _option(name: str, default: str | None = None) -> str | None:
    if name in sys.argv:
        idx = sys.argv.index(name)
        if idx + 1 < len(sys.argv):
            return sys.argv[idx + 1]
    return default


def main() -> None:
    """Main CLI entry point."""
    if len(sys.argv) < 2:
        print_usage()
        sys.exit(1)

    command = sys.argv[1]
    setup_logging()
    user_id = _option("--user", "local") or "local"

    try:
        if command == "test-config":
            asyncio.run(cmd_test_config())

        elif command == "search":
            if len(sys.argv) < 3:
                print("Error: title required")
                sys.exit(1)
            asyncio.run(cmd_search(sys.argv[2]))

        elif command == "resolve":
            if len(sys.argv) < 5:
                print("Error: storefront, store_game_id and title required")
                sys.exit(1)
            asyncio.run(cmd_resolve(sys.argv[2], sys.argv[3], sys.argv[4], user_id))

        elif command == "match":
            if len(sys.argv) < 5:
                print("Error: storefront, store_game_id and catalog_id required")
                sys.exit(1)
            asyncio.run(cmd_match(sys.argv[2], sys.argv[3], int(sys.argv[4]), user_id))

        elif command == "refresh":
            families_arg = _option("--families")
            families = (
                [EntityFamily(f.strip()) for f in families_arg.split(",")]
                if families_arg
                else None
            )
            asyncio.run(cmd_refresh("--reconcile" in sys.argv, families))

        elif command == "status":
            asyncio.run(cmd_status())

        elif command in ("help", "--help", "-h"):
            print_usage()

        else:
            print(f"Unknown command: {command}")
            print_usage()
            sys.exit(1)

    except KeyboardInterrupt:
        print("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        logger.exception("CLI error", error=str(e))
        output = CLIOutput(
            success=False,
            command=command,
            error=str(e),
        )
        print_json(output)
        sys.exit(1)


if __name__ == "__main__":
    main()
