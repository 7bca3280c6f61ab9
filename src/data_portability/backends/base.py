"""Interfaces of the services that store user data and produce bundles."""

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol

from data_portability.models.export import (
    EncryptionOptions,
    ExportFormat,
    ExportRequest,
    ExportSection,
)
from data_portability.models.import_session import ImportOptions, ImportResult


class ExportBackend(Protocol):
    """Creates export artifacts and reports on their lifecycle."""

    async def create_export(
        self,
        sections: Sequence[ExportSection],
        format: ExportFormat,
        encryption: EncryptionOptions | None = None,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> ExportRequest:
        """Register an export and return it in pending state."""
        ...

    async def get_export_status(self, export_id: str) -> ExportRequest:
        """Return the current state of an export.

        Raises:
            NotFoundError: If the export does not exist
        """
        ...

    async def list_exports(self) -> list[ExportRequest]:
        """Return every export of the current user."""
        ...

    async def record_download(self, export_id: str, downloaded_at: datetime) -> ExportRequest:
        """Persist one download of an artifact and return the updated export."""
        ...


class ImportBackend(Protocol):
    """Applies an import bundle to the user's stored data."""

    async def execute_import(self, file_content: str, options: ImportOptions) -> ImportResult:
        """Apply a bundle, resolving conflicts with ``options.conflict_strategy``.

        Failures are reported either as ``ImportResult(success=False)`` or by
        raising ImportExecutionFailedError; both messages reach the user
        verbatim.
        """
        ...
