"""Export history: filtering, sorting, paging and download accounting."""

import asyncio
import logging
import math
from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime

from data_portability.backends.base import ExportBackend
from data_portability.config import get_settings
from data_portability.config.settings import Settings
from data_portability.exceptions import (
    ExportFailedError,
    NotDownloadableError,
    NotFoundError,
)
from data_portability.models.export import ExportRequest, ExportStatus
from data_portability.models.history import HistoryPage, HistorySummary
from data_portability.utils.clock import Clock, SystemClock
from data_portability.utils.validators import (
    ALL_STATUSES,
    validate_page_size,
    validate_sort_key,
    validate_status_filter,
)

logger = logging.getLogger(__name__)


def is_downloadable(entry: ExportRequest, now: datetime) -> bool:
    """True iff the export completed and its retention window has not passed."""
    return entry.status == ExportStatus.COMPLETED and not entry.is_past_expiry(now)


def filter_entries(
    entries: Iterable[ExportRequest],
    status: ExportStatus | str,
    now: datetime,
) -> list[ExportRequest]:
    """Keep entries whose status as seen at ``now`` matches the filter."""
    wanted = validate_status_filter(status)
    if wanted is None:
        return list(entries)
    return [entry for entry in entries if entry.effective_status(now) == wanted]


def sort_entries(
    entries: Iterable[ExportRequest],
    sort_by: str,
    now: datetime,
) -> list[ExportRequest]:
    """Sort entries; ties keep their original relative order.

    - date: newest request first
    - size: largest artifact first, absent sizes count as zero
    - status: alphabetical by the status as seen at ``now``
    """
    validate_sort_key(sort_by)
    if sort_by == "date":
        return sorted(entries, key=lambda e: e.requested_at, reverse=True)
    if sort_by == "size":
        return sorted(entries, key=lambda e: e.file_size or 0, reverse=True)
    return sorted(entries, key=lambda e: e.effective_status(now).value)


def paginate(
    entries: list[ExportRequest], page: int, page_size: int
) -> list[ExportRequest]:
    """Return one 1-based page; pages outside the range are empty."""
    validate_page_size(page_size)
    if page < 1:
        return []
    start = (page - 1) * page_size
    return entries[start : start + page_size]


class ExportHistoryManager:
    """Collection of a user's exports with derived availability.

    Views (list, page, summary) never change the collection. Downloads are
    serialized per export so concurrent attempts cannot lose a count.
    """

    def __init__(
        self,
        export_service: ExportBackend | None = None,
        entries: Iterable[ExportRequest] | None = None,
        clock: Clock | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize export history manager.

        Args:
            export_service: Backend the history is loaded from and downloads
                are recorded with (optional)
            entries: Initial entries
            clock: Time source for expiry checks
            settings: Settings for the default page size
        """
        self.export_service = export_service
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()
        self._entries: dict[str, ExportRequest] = {}
        self._download_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        for entry in entries or []:
            self.upsert(entry)

    @property
    def entries(self) -> list[ExportRequest]:
        return list(self._entries.values())

    async def refresh(self) -> list[ExportRequest]:
        """Reload the history from the export backend.

        Raises:
            ExportFailedError: If no backend is configured or it fails
        """
        if self.export_service is None:
            raise ExportFailedError("No export service configured for history")
        try:
            entries = await self.export_service.list_exports()
        except Exception as e:
            logger.error("Loading export history failed: %s", e)
            raise ExportFailedError(f"Could not load export history: {e}") from e

        self._entries = {entry.export_id: entry for entry in entries}
        for export_id, lock in list(self._download_locks.items()):
            if export_id not in self._entries and not lock.locked():
                del self._download_locks[export_id]
        return self.entries

    def upsert(self, entry: ExportRequest) -> None:
        self._entries[entry.export_id] = entry

    def get(self, export_id: str) -> ExportRequest:
        """Raises NotFoundError for unknown ids."""
        if export_id not in self._entries:
            raise NotFoundError(f"Export not found: {export_id}")
        return self._entries[export_id]

    def list_entries(
        self, status: ExportStatus | str = ALL_STATUSES, sort_by: str = "date"
    ) -> list[ExportRequest]:
        now = self.clock.now()
        return sort_entries(filter_entries(self.entries, status, now), sort_by, now)

    def page(
        self,
        page: int = 1,
        page_size: int | None = None,
        status: ExportStatus | str = ALL_STATUSES,
        sort_by: str = "date",
    ) -> HistoryPage:
        page_size = validate_page_size(
            self.settings.history_page_size if page_size is None else page_size
        )
        ordered = self.list_entries(status=status, sort_by=sort_by)
        return HistoryPage(
            entries=paginate(ordered, page, page_size),
            page=page,
            page_size=page_size,
            total=len(ordered),
            total_pages=math.ceil(len(ordered) / page_size),
        )

    def is_downloadable(self, entry: ExportRequest) -> bool:
        """Evaluated against the clock on every call."""
        return is_downloadable(entry, self.clock.now())

    async def record_download(self, entry: ExportRequest | str) -> ExportRequest:
        """Count one download of an available artifact.

        Args:
            entry: The export or its id

        Returns:
            The updated export

        Raises:
            NotFoundError: If the export is not in the history
            NotDownloadableError: If it is expired or not completed
        """
        export_id = entry if isinstance(entry, str) else entry.export_id
        self.get(export_id)

        async with self._download_locks[export_id]:
            current = self.get(export_id)
            now = self.clock.now()
            if not is_downloadable(current, now):
                reason = (
                    "retention window has passed"
                    if current.is_past_expiry(now)
                    else f"status is {current.status.value}"
                )
                logger.warning("Refused download of %s: %s", export_id, reason)
                raise NotDownloadableError(export_id, reason)

            if self.export_service is not None:
                updated = await self.export_service.record_download(export_id, now)
            else:
                updated = current.model_copy(
                    update={
                        "download_count": current.download_count + 1,
                        "last_download_at": now,
                    }
                )
            self._entries[export_id] = updated

        logger.info("Export %s downloaded (%d total)", export_id, updated.download_count)
        return updated

    def cleanup_expired(self) -> int:
        """Store 'expired' on every entry past its window.

        Returns:
            Number of entries that changed
        """
        now = self.clock.now()
        changed = 0
        for export_id, entry in list(self._entries.items()):
            if entry.status in (ExportStatus.EXPIRED, ExportStatus.FAILED):
                continue
            if entry.is_past_expiry(now):
                self._entries[export_id] = entry.model_copy(
                    update={"status": ExportStatus.EXPIRED}
                )
                changed += 1
        if changed:
            logger.info("Marked %d exports as expired", changed)
        return changed

    def summary(self) -> HistorySummary:
        now = self.clock.now()
        by_status: dict[str, int] = {}
        downloadable_bytes = 0
        total_downloads = 0
        for entry in self._entries.values():
            status = entry.effective_status(now).value
            by_status[status] = by_status.get(status, 0) + 1
            if is_downloadable(entry, now):
                downloadable_bytes += entry.file_size or 0
            total_downloads += entry.download_count
        return HistorySummary(
            total=len(self._entries),
            by_status=by_status,
            downloadable_bytes=downloadable_bytes,
            total_downloads=total_downloads,
        )
