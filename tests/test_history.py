"""Tests for the export history manager."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from data_portability.backends.memory import InMemoryPortabilityBackend
from data_portability.config.settings import Settings
from data_portability.exceptions import (
    ExportFailedError,
    NotDownloadableError,
    NotFoundError,
    ValidationError,
)
from data_portability.models.export import ExportRequest, ExportStatus
from data_portability.services.history_service import (
    ExportHistoryManager,
    filter_entries,
    paginate,
    sort_entries,
)
from data_portability.utils.clock import FixedClock

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_export(
    export_id: str,
    requested_at: datetime,
    status: ExportStatus = ExportStatus.COMPLETED,
    file_size: int | None = None,
) -> ExportRequest:
    if status in (ExportStatus.COMPLETED, ExportStatus.EXPIRED) and file_size is None:
        file_size = 1024
    return ExportRequest(
        export_id=export_id,
        requested_at=requested_at,
        sections=["profile"],
        status=status,
        file_size=file_size,
        error="boom" if status == ExportStatus.FAILED else None,
    )


@pytest.fixture
def entries() -> list[ExportRequest]:
    """History with one entry of each kind."""
    return [
        make_export("export_recent", NOW - timedelta(hours=1), file_size=4096),
        make_export("export_old", NOW - timedelta(days=8), file_size=8192),
        make_export("export_running", NOW - timedelta(minutes=5), ExportStatus.PROCESSING),
        make_export("export_failed", NOW - timedelta(days=2), ExportStatus.FAILED),
    ]


@pytest.fixture
def manager(
    entries: list[ExportRequest], clock: FixedClock, test_settings: Settings
) -> ExportHistoryManager:
    """History manager without a backend."""
    return ExportHistoryManager(entries=entries, clock=clock, settings=test_settings)


class TestDownloadability:
    """Test availability of artifacts."""

    def test_completed_within_window(self, manager: ExportHistoryManager):
        assert manager.is_downloadable(manager.get("export_recent"))

    def test_completed_but_past_window(self, manager: ExportHistoryManager):
        """Test that stored 'completed' does not override expiry."""
        entry = manager.get("export_old")

        assert entry.status == ExportStatus.COMPLETED
        assert not manager.is_downloadable(entry)

    def test_not_completed(self, manager: ExportHistoryManager):
        assert not manager.is_downloadable(manager.get("export_running"))
        assert not manager.is_downloadable(manager.get("export_failed"))

    def test_recomputed_on_every_call(
        self, manager: ExportHistoryManager, clock: FixedClock
    ):
        entry = manager.get("export_recent")
        assert manager.is_downloadable(entry)

        clock.advance(timedelta(days=7))

        assert not manager.is_downloadable(entry)

    def test_boundary_is_inclusive(self, clock: FixedClock):
        entry = make_export("export_edge", NOW - timedelta(days=7))
        manager = ExportHistoryManager(entries=[entry], clock=clock)

        assert manager.is_downloadable(entry)


class TestRecordDownload:
    """Test download accounting."""

    @pytest.mark.asyncio
    async def test_record_download(
        self, manager: ExportHistoryManager, clock: FixedClock
    ):
        updated = await manager.record_download("export_recent")

        assert updated.download_count == 1
        assert updated.last_download_at == clock.now()
        assert manager.get("export_recent").download_count == 1

    @pytest.mark.asyncio
    async def test_expired_download_refused(self, manager: ExportHistoryManager):
        """Test that an export completed 8 days ago cannot be downloaded."""
        # Given: a completed export requested 8 days ago
        entry = manager.get("export_old")

        # When / Then: recording a download fails
        with pytest.raises(NotDownloadableError) as exc_info:
            await manager.record_download(entry)

        assert exc_info.value.reason == "retention window has passed"
        assert manager.get("export_old").download_count == 0

    @pytest.mark.asyncio
    async def test_unfinished_download_refused(self, manager: ExportHistoryManager):
        with pytest.raises(NotDownloadableError, match="status is processing"):
            await manager.record_download("export_running")

    @pytest.mark.asyncio
    async def test_unknown_export(self, manager: ExportHistoryManager):
        with pytest.raises(NotFoundError):
            await manager.record_download("export_missing")

        assert "export_missing" not in manager._download_locks

    @pytest.mark.asyncio
    async def test_concurrent_downloads_all_counted(
        self, manager: ExportHistoryManager
    ):
        """Test that racing downloads do not lose updates."""
        await asyncio.gather(
            *(manager.record_download("export_recent") for _ in range(10))
        )

        assert manager.get("export_recent").download_count == 10

    @pytest.mark.asyncio
    async def test_stale_entry_uses_current_count(
        self, manager: ExportHistoryManager
    ):
        stale = manager.get("export_recent")
        await manager.record_download(stale)

        updated = await manager.record_download(stale)

        assert updated.download_count == 2

    @pytest.mark.asyncio
    async def test_download_recorded_with_backend(
        self,
        backend: InMemoryPortabilityBackend,
        history_manager: ExportHistoryManager,
    ):
        """Test that the backend is told about the download."""
        request = await backend.create_export(["profile"], "json")
        backend.advance(request.export_id)
        backend.advance(request.export_id)
        await history_manager.refresh()

        await history_manager.record_download(request.export_id)

        stored = await backend.get_export_status(request.export_id)
        assert stored.download_count == 1
        assert stored.last_download_at is not None


class TestListing:
    """Test filtering, sorting and paging."""

    def test_default_sort_newest_first(self, manager: ExportHistoryManager):
        ids = [entry.export_id for entry in manager.list_entries()]

        assert ids == ["export_running", "export_recent", "export_failed", "export_old"]

    def test_sort_by_size(self, manager: ExportHistoryManager):
        ids = [entry.export_id for entry in manager.list_entries(sort_by="size")]

        assert ids[:2] == ["export_old", "export_recent"]

    def test_sort_by_status_uses_effective_status(self, manager: ExportHistoryManager):
        statuses = [
            entry.effective_status(NOW) for entry in manager.list_entries(sort_by="status")
        ]

        assert statuses == [
            ExportStatus.COMPLETED,
            ExportStatus.EXPIRED,
            ExportStatus.FAILED,
            ExportStatus.PROCESSING,
        ]

    def test_date_sort_is_stable(self):
        """Test that entries with the same timestamp keep their order."""
        same = [make_export(f"export_{i}", NOW) for i in range(5)]

        ordered = sort_entries(same, "date", NOW)

        assert [entry.export_id for entry in ordered] == [
            f"export_{i}" for i in range(5)
        ]

    def test_missing_size_sorts_as_zero(self):
        small = make_export("export_small", NOW, file_size=1)
        pending = make_export("export_pending", NOW, ExportStatus.PENDING)

        ordered = sort_entries([pending, small], "size", NOW)

        assert [entry.export_id for entry in ordered] == ["export_small", "export_pending"]

    def test_filter_expired(self, manager: ExportHistoryManager):
        expired = manager.list_entries(status="expired")

        assert [entry.export_id for entry in expired] == ["export_old"]

    def test_filter_completed_excludes_expired(self, manager: ExportHistoryManager):
        completed = manager.list_entries(status=ExportStatus.COMPLETED)

        assert [entry.export_id for entry in completed] == ["export_recent"]

    def test_views_do_not_mutate(
        self, manager: ExportHistoryManager, entries: list[ExportRequest]
    ):
        before = [entry.model_copy() for entry in manager.entries]

        manager.list_entries(status="expired", sort_by="size")
        filter_entries(entries, "failed", NOW)

        assert manager.entries == before
        assert manager.get("export_old").status == ExportStatus.COMPLETED

    def test_invalid_arguments(self, manager: ExportHistoryManager):
        with pytest.raises(ValidationError):
            manager.list_entries(status="archived")

        with pytest.raises(ValidationError):
            manager.list_entries(sort_by="name")

    def test_pagination(self, manager: ExportHistoryManager):
        first = manager.page(page=1, page_size=3)
        second = manager.page(page=2, page_size=3)

        assert len(first.entries) == 3
        assert len(second.entries) == 1
        assert first.total == 4
        assert first.total_pages == 2

    def test_out_of_range_page_is_empty(self, manager: ExportHistoryManager):
        assert manager.page(page=5, page_size=3).entries == []
        assert manager.page(page=0, page_size=3).entries == []

    def test_default_page_size(self, manager: ExportHistoryManager):
        page = manager.page()

        assert page.page_size == 10
        assert len(page.entries) == 4

    def test_paginate_rejects_bad_size(self, entries: list[ExportRequest]):
        with pytest.raises(ValidationError):
            paginate(entries, 1, 0)


class TestMaintenance:
    """Test refresh, cleanup and summary."""

    @pytest.mark.asyncio
    async def test_refresh_from_backend(
        self,
        backend: InMemoryPortabilityBackend,
        history_manager: ExportHistoryManager,
    ):
        request = await backend.create_export(["profile"], "json")

        entries = await history_manager.refresh()

        assert [entry.export_id for entry in entries] == [request.export_id]

    @pytest.mark.asyncio
    async def test_refreshed_entry_past_window(
        self,
        backend: InMemoryPortabilityBackend,
        history_manager: ExportHistoryManager,
    ):
        """Test expiry of an export loaded from the backend."""
        backend.add_export(
            make_export("export_legacy", NOW - timedelta(days=8)), artifact="{}"
        )
        await history_manager.refresh()

        with pytest.raises(NotDownloadableError):
            await history_manager.record_download("export_legacy")

        assert backend.get_artifact("export_legacy") == "{}"
        assert history_manager.summary().by_status == {"expired": 1}

    @pytest.mark.asyncio
    async def test_refresh_drops_locks_of_removed_exports(
        self, manager: ExportHistoryManager
    ):
        await manager.record_download("export_recent")
        assert "export_recent" in manager._download_locks
        manager.export_service = AsyncMock()
        manager.export_service.list_exports.return_value = []

        await manager.refresh()

        assert manager.entries == []
        assert "export_recent" not in manager._download_locks

    @pytest.mark.asyncio
    async def test_refresh_without_backend(self, manager: ExportHistoryManager):
        with pytest.raises(ExportFailedError):
            await manager.refresh()

    @pytest.mark.asyncio
    async def test_refresh_backend_failure(self, clock: FixedClock):
        service = AsyncMock()
        service.list_exports.side_effect = ConnectionError("unreachable")
        manager = ExportHistoryManager(export_service=service, clock=clock)

        with pytest.raises(ExportFailedError, match="unreachable"):
            await manager.refresh()

    def test_cleanup_expired(self, manager: ExportHistoryManager):
        changed = manager.cleanup_expired()

        assert changed == 1
        assert manager.get("export_old").status == ExportStatus.EXPIRED
        assert manager.get("export_failed").status == ExportStatus.FAILED
        assert manager.cleanup_expired() == 0

    @pytest.mark.asyncio
    async def test_summary(self, manager: ExportHistoryManager):
        await manager.record_download("export_recent")

        summary = manager.summary()

        assert summary.total == 4
        assert summary.by_status == {
            "completed": 1,
            "expired": 1,
            "processing": 1,
            "failed": 1,
        }
        assert summary.downloadable_bytes == 4096
        assert summary.total_downloads == 1
