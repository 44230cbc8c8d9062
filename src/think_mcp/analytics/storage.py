"""Date-partitioned analytics event storage.

Storage format (one file per calendar day, named from each event's own
timestamp, never from the wall clock at write time):

    ~/.think-mcp/analytics/
    ├── analytics-2026-01-14.json
    └── analytics-2026-01-15.json

    {
      "schemaVersion": "1.0.0",
      "date": "2026-01-15",
      "events": [{"toolName": "trace", ...}, ...],
      "lastModified": "2026-01-15T10:30:00.000Z"
    }

Every partition write goes to a temporary file that is then renamed over the
target, so a partition is either fully updated or untouched. Appends to the
same partition within the process are serialized by a per-date lock.

Nothing here raises past the adapter boundary: I/O failures come back as
results with ``success=False``.
"""

from __future__ import annotations

import asyncio
import json
import re
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

import aiofiles
import aiofiles.os
from loguru import logger

from think_mcp.analytics.types import (
    ANALYTICS_SCHEMA_VERSION,
    AnalyticsEvent,
    is_valid_date,
    utc_now_iso,
)
from think_mcp.paths import expand_path

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable

FILE_PREFIX = "analytics-"
FILE_SUFFIX = ".json"
FILE_NAME_PATTERN = re.compile(r"^analytics-(\d{4}-\d{2}-\d{2})\.json$")

# Window read when no start date is given
DEFAULT_READ_WINDOW_DAYS = 30


def parse_partition_date(file_name: str) -> str | None:
    """Extract the date from a partition file name.

    Returns:
        YYYY-MM-DD, or None if the name is not a partition or the date is
        not a real calendar date
    """
    match = FILE_NAME_PATTERN.match(file_name)
    if not match:
        return None
    return match.group(1) if is_valid_date(match.group(1)) else None


def partition_file_name(date_str: str) -> str:
    return f"{FILE_PREFIX}{date_str}{FILE_SUFFIX}"


# =============================================================================
# Results
# =============================================================================


@dataclass
class WriteResult:
    """Result of appending events.

    ``unwritten`` holds the events whose partition could not be committed;
    those are the only ones a caller should retry.
    """

    success: bool
    events_written: int
    error: str | None = None
    unwritten: list[AnalyticsEvent] = field(default_factory=list)


@dataclass
class DateRange:
    start: str
    end: str

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start, "end": self.end}


@dataclass
class ReadResult:
    """Result of reading events over an inclusive date range."""

    success: bool
    events: list[AnalyticsEvent]
    date_range: DateRange
    error: str | None = None


@dataclass
class CleanupResult:
    """Result of a cleanup or full deletion."""

    success: bool
    files_deleted: int
    events_deleted: int
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "filesDeleted": self.files_deleted,
            "eventsDeleted": self.events_deleted,
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class StorageInfo:
    """Summary of what is on disk."""

    total_files: int = 0
    total_events: int = 0
    total_bytes: int = 0
    oldest_date: str | None = None
    newest_date: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalFiles": self.total_files,
            "totalEvents": self.total_events,
            "totalBytes": self.total_bytes,
            "oldestDate": self.oldest_date,
            "newestDate": self.newest_date,
        }


@dataclass
class DailyPartition:
    """In-memory form of one partition file."""

    date: str
    events: list[AnalyticsEvent] = field(default_factory=list)
    schema_version: str = ANALYTICS_SCHEMA_VERSION
    last_modified: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "schemaVersion": self.schema_version,
            "date": self.date,
            "events": [event.to_dict() for event in self.events],
            "lastModified": self.last_modified,
        }

    @classmethod
    def from_dict(cls, data: Any) -> DailyPartition | None:
        """Create from parsed JSON, or None if the body is not a partition.

        Individual malformed events are skipped.
        """
        if not isinstance(data, dict):
            return None
        schema_version = data.get("schemaVersion")
        date_str = data.get("date")
        raw_events = data.get("events")
        if not isinstance(schema_version, str) or not isinstance(date_str, str):
            return None
        if not isinstance(raw_events, list):
            return None

        events: list[AnalyticsEvent] = []
        for raw in raw_events:
            try:
                event = AnalyticsEvent.from_dict(raw)
            except (KeyError, TypeError, ValueError):
                logger.debug(f"Skipping malformed analytics event in {date_str}")
                continue
            # A partition only holds events from its own day
            if event.date != date_str:
                logger.debug(f"Skipping analytics event dated {event.date} in {date_str}")
                continue
            events.append(event)
        last_modified = data.get("lastModified")
        return cls(
            date=date_str,
            events=events,
            schema_version=schema_version,
            last_modified=last_modified if isinstance(last_modified, str) else utc_now_iso(),
        )


# =============================================================================
# Adapter
# =============================================================================


class StorageAdapter:
    """Append-only, date-partitioned event log on the local filesystem."""

    def __init__(self, storage_path: Path | str, retention_days: int = 90) -> None:
        self.storage_path = expand_path(storage_path)
        self.retention_days = retention_days
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    # ----- helpers -----------------------------------------------------------

    @staticmethod
    def today() -> date:
        return datetime.now(UTC).date()

    def cutoff_date(self) -> str:
        """Partitions dated on or before this date are outside retention."""
        return (self.today() - timedelta(days=self.retention_days)).isoformat()

    def partition_path(self, date_str: str) -> Path:
        return self.storage_path / partition_file_name(date_str)

    @asynccontextmanager
    async def _date_lock(self, date_str: str) -> AsyncIterator[None]:
        """Hold the append lock for one date. Unused locks are dropped."""
        lock = self._locks.setdefault(date_str, asyncio.Lock())
        self._lock_users[date_str] = self._lock_users.get(date_str, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[date_str] -= 1
            if not self._lock_users[date_str]:
                del self._lock_users[date_str]
                del self._locks[date_str]

    async def _list_partitions(self) -> list[tuple[str, Path]]:
        """List (date, path) for every valid partition file, oldest first.

        Raises:
            OSError: If the directory exists but cannot be listed
        """
        if not await aiofiles.os.path.isdir(self.storage_path):
            return []
        partitions = []
        for name in await aiofiles.os.listdir(self.storage_path):
            date_str = parse_partition_date(name)
            if date_str is not None:
                partitions.append((date_str, self.storage_path / name))
        partitions.sort()
        return partitions

    async def _read_partition(self, path: Path) -> DailyPartition | None:
        """Read one partition, or None if it is missing, unreadable or invalid."""
        try:
            async with aiofiles.open(path, encoding="utf-8") as f:
                content = await f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.debug(f"Cannot read analytics partition {path.name}: {e}")
            return None
        try:
            data = json.loads(content)
        except json.JSONDecodeError:
            logger.debug(f"Ignoring non-JSON analytics partition {path.name}")
            return None
        return DailyPartition.from_dict(data)

    async def _write_partition(self, path: Path, partition: DailyPartition) -> None:
        """Atomically replace a partition file.

        Raises:
            OSError: If the temporary file cannot be written or renamed
        """
        tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")
        content = json.dumps(partition.to_dict(), indent=2)
        try:
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(content)
            await aiofiles.os.replace(tmp_path, path)
        finally:
            if await aiofiles.os.path.exists(tmp_path):
                await aiofiles.os.remove(tmp_path)

    async def _append_to_partition(self, date_str: str, events: list[AnalyticsEvent]) -> None:
        async with self._date_lock(date_str):
            path = self.partition_path(date_str)
            partition = await self._read_partition(path) or DailyPartition(date=date_str)
            partition.events.extend(events)
            partition.last_modified = utc_now_iso()
            await self._write_partition(path, partition)

    # ----- public API --------------------------------------------------------

    async def initialize(self) -> None:
        """Ensure the storage directory exists. Idempotent.

        Raises:
            OSError: If the directory cannot be created
        """
        await aiofiles.os.makedirs(self.storage_path, exist_ok=True)

    async def append_events(self, events: Iterable[AnalyticsEvent]) -> WriteResult:
        """Append events to their daily partitions.

        Events are grouped by the date of their own timestamp. Each partition
        commits independently; the result lists the events of any partition
        that failed. Events whose timestamp has no valid date are dropped
        with a warning since no partition can hold them.
        """
        events = list(events)
        if not events:
            return WriteResult(success=True, events_written=0)

        by_date: dict[str, list[AnalyticsEvent]] = {}
        for event in events:
            if not is_valid_date(event.date):
                logger.warning(f"Dropping analytics event with invalid timestamp: {event.timestamp!r}")
                continue
            by_date.setdefault(event.date, []).append(event)

        try:
            await self.initialize()
        except OSError as e:
            return WriteResult(
                success=False,
                events_written=0,
                error=f"Cannot create storage directory: {e}",
                unwritten=[e_ for batch in by_date.values() for e_ in batch],
            )

        written = 0
        unwritten: list[AnalyticsEvent] = []
        errors: list[str] = []
        for date_str, date_events in by_date.items():
            try:
                await self._append_to_partition(date_str, date_events)
                written += len(date_events)
            except OSError as e:
                errors.append(f"{date_str}: {e}")
                unwritten.extend(date_events)

        if errors:
            logger.debug(f"Analytics append failed for {len(errors)} partition(s)")
            return WriteResult(
                success=False,
                events_written=written,
                error="; ".join(errors),
                unwritten=unwritten,
            )
        return WriteResult(success=True, events_written=written)

    async def read_events(
        self,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> ReadResult:
        """Read events from partitions dated within [start_date, end_date].

        Args:
            start_date: Inclusive start (default: 30 days before end)
            end_date: Inclusive end (default: today, UTC)

        Returns:
            Events sorted by timestamp ascending; ties keep file order
        """
        today = self.today()
        end = end_date or today.isoformat()
        start = start_date or (today - timedelta(days=DEFAULT_READ_WINDOW_DAYS)).isoformat()
        date_range = DateRange(start=start, end=end)

        if not is_valid_date(start) or not is_valid_date(end):
            return ReadResult(
                success=False,
                events=[],
                date_range=date_range,
                error=f"Invalid date range: {start} to {end}",
            )

        try:
            partitions = await self._list_partitions()
        except OSError as e:
            return ReadResult(success=False, events=[], date_range=date_range, error=str(e))

        events: list[AnalyticsEvent] = []
        for date_str, path in partitions:
            if start <= date_str <= end:
                partition = await self._read_partition(path)
                if partition is not None:
                    events.extend(partition.events)

        events.sort(key=lambda event: event.timestamp)
        return ReadResult(success=True, events=events, date_range=date_range)

    async def read_events_for_date(self, date_str: str) -> ReadResult:
        """Read the events of a single day."""
        return await self.read_events(date_str, date_str)

    async def run_cleanup(self, dry_run: bool = False) -> CleanupResult:
        """Delete partitions dated on or before today - retention_days.

        Safe to run concurrently: a file removed by a sibling call between
        listing and deletion is skipped, not counted and not an error.

        Args:
            dry_run: Report what would be deleted without deleting
        """
        cutoff = self.cutoff_date()
        files_deleted = 0
        events_deleted = 0
        try:
            for date_str, path in await self._list_partitions():
                if date_str > cutoff:
                    continue
                partition = await self._read_partition(path)
                if partition is None and not await aiofiles.os.path.exists(path):
                    continue
                if not dry_run:
                    try:
                        await aiofiles.os.remove(path)
                    except FileNotFoundError:
                        continue
                files_deleted += 1
                events_deleted += len(partition.events) if partition else 0
        except OSError as e:
            return CleanupResult(
                success=False,
                files_deleted=files_deleted,
                events_deleted=events_deleted,
                error=f"Cleanup failed: {e}",
            )
        return CleanupResult(success=True, files_deleted=files_deleted, events_deleted=events_deleted)

    async def delete_all_data(self) -> CleanupResult:
        """Delete every partition in the storage directory."""
        files_deleted = 0
        events_deleted = 0
        try:
            for _date_str, path in await self._list_partitions():
                partition = await self._read_partition(path)
                try:
                    await aiofiles.os.remove(path)
                except FileNotFoundError:
                    continue
                files_deleted += 1
                events_deleted += len(partition.events) if partition else 0
        except OSError as e:
            return CleanupResult(
                success=False,
                files_deleted=files_deleted,
                events_deleted=events_deleted,
                error=f"Deletion failed: {e}",
            )
        return CleanupResult(success=True, files_deleted=files_deleted, events_deleted=events_deleted)

    async def get_storage_info(self) -> StorageInfo:
        """Count partitions, events and bytes currently on disk."""
        info = StorageInfo()
        try:
            partitions = await self._list_partitions()
        except OSError as e:
            logger.debug(f"Cannot list analytics storage: {e}")
            return info

        for date_str, path in partitions:
            try:
                stat = await aiofiles.os.stat(path)
            except FileNotFoundError:
                continue
            info.total_files += 1
            info.total_bytes += stat.st_size
            partition = await self._read_partition(path)
            if partition is not None:
                info.total_events += len(partition.events)
            if info.oldest_date is None or date_str < info.oldest_date:
                info.oldest_date = date_str
            if info.newest_date is None or date_str > info.newest_date:
                info.newest_date = date_str
        return info
