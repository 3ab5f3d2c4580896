"""
Catalog snapshot persistence.

Each crawled entity family is written as one JSON batch file,
partitioned by crawl date, so a restart can rebuild the reference
index without re-crawling the catalog.
"""

import json
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from game_library.catalog.index import IndexSnapshot
from game_library.catalog.models import FAMILY_RECORD_TYPES, EntityFamily
from game_library.config import get_settings
from game_library.errors import StorageError
from game_library.logger import get_logger


class SnapshotMetadata(BaseModel):
    """
    Metadata attached to every snapshot batch.

    Records which crawl produced the batch and which index generation
    it was published as.
    """

    batch_id: UUID = Field(default_factory=uuid4)
    family: EntityFamily
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: datetime | None = None
    record_count: int = 0
    index_version: int | None = Field(
        default=None, description="Index generation the records were published in"
    )
    environment: str = Field(default="development")


class SnapshotBatch(BaseModel):
    """One family's crawled records."""

    metadata: SnapshotMetadata
    records: list[dict[str, Any]] = Field(default_factory=list)

    def complete(self) -> None:
        """Mark batch as complete."""
        self.metadata.completed_at = datetime.now(timezone.utc)
        self.metadata.record_count = len(self.records)


class SnapshotWriter:
    """
    Writes and reloads crawled catalog families.

    Example:
        >>> writer = SnapshotWriter(output_dir=Path("data/snapshots"))
        >>> writer.write_family(EntityFamily.GAMES, entries, index_version=3)
        >>> snapshot = writer.load_snapshot()
    """

    def __init__(self, *, output_dir: Path | None = None) -> None:
        """
        Initialize snapshot writer.

        Args:
            output_dir: Directory for snapshot files (defaults to storage settings)
        """
        settings = get_settings()
        self._environment = settings.environment
        self._output_dir = output_dir or settings.storage.snapshot_dir
        self._logger = get_logger(__name__, component="snapshot_writer")

    def write_family(
        self,
        family: EntityFamily,
        records: Sequence[Any],
        *,
        index_version: int | None = None,
    ) -> Path:
        """
        Write one family's records to a new batch file.

        Args:
            family: Entity family the records belong to
            records: Catalog records with a to_dict() method
            index_version: Generation the records were published in

        Returns:
            Path: Path where the batch was written

        Raises:
            StorageError: If the file cannot be written
        """
        batch = SnapshotBatch(
            metadata=SnapshotMetadata(
                family=family,
                index_version=index_version,
                environment=self._environment,
            ),
            records=[record.to_dict() for record in records],
        )
        batch.complete()

        crawl_date = batch.metadata.started_at.strftime("%Y-%m-%d")
        partition_path = self._output_dir / family.value / f"date={crawl_date}"
        filename = (
            f"batch_{batch.metadata.batch_id}_{batch.metadata.started_at.strftime('%H%M%S')}.json"
        )
        output_path = partition_path / filename

        try:
            partition_path.mkdir(parents=True, exist_ok=True)
            with output_path.open("w", encoding="utf-8") as f:
                json.dump(batch.model_dump(mode="json"), f, default=str)
        except OSError as e:
            raise StorageError(
                f"Failed to write {family.value} snapshot",
                source="snapshot_writer",
                original_error=e,
            ) from e

        self._logger.info(
            "Wrote family snapshot",
            family=family.value,
            batch_id=str(batch.metadata.batch_id),
            output_path=str(output_path),
            records=batch.metadata.record_count,
            index_version=index_version,
        )
        return output_path

    def latest_path(self, family: EntityFamily) -> Path | None:
        """Most recent batch file for a family, if any."""
        family_dir = self._output_dir / family.value
        if not family_dir.exists():
            return None

        batches = sorted(
            family_dir.glob("date=*/batch_*.json"),
            key=lambda p: (p.parent.name, p.stat().st_mtime),
        )
        return batches[-1] if batches else None

    def load_latest(self, family: EntityFamily) -> list[Any]:
        """
        Load the most recent snapshot of a family.

        Returns:
            Catalog records, empty if the family was never written

        Raises:
            StorageError: If the batch file is unreadable
        """
        path = self.latest_path(family)
        if path is None:
            return []

        try:
            with path.open(encoding="utf-8") as f:
                batch = SnapshotBatch.model_validate(json.load(f))
        except (OSError, ValueError) as e:
            raise StorageError(
                f"Failed to read {family.value} snapshot {path}",
                source="snapshot_writer",
                original_error=e,
            ) from e

        record_type = FAMILY_RECORD_TYPES[family]
        return [record_type.from_dict(doc) for doc in batch.records]  # type: ignore[attr-defined]

    def load_snapshot(self) -> IndexSnapshot:
        """Load the latest batch of every family into an index snapshot."""
        families = {family.value: self.load_latest(family) for family in EntityFamily}
        self._logger.info(
            "Loaded catalog snapshot",
            **{name: len(records) for name, records in families.items()},
        )
        return IndexSnapshot(**families)
