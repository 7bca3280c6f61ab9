"""In-memory backend holding one user's data and export artifacts."""

import copy
import logging
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any

from data_portability.config import get_settings
from data_portability.config.settings import Settings
from data_portability.exceptions import ContentInvalidError, NotFoundError
from data_portability.models.export import (
    EncryptionOptions,
    ExportFormat,
    ExportRequest,
    ExportSection,
    ExportStatus,
    UserRole,
    available_sections,
)
from data_portability.models.import_session import ImportOptions, ImportResult
from data_portability.services import bundle_service
from data_portability.services.conflict_resolution import (
    ResolutionAction,
    resolve_with_action,
)
from data_portability.services.validation_service import ValidationService
from data_portability.utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


class InMemoryPortabilityBackend:
    """Export and import backend for a single user, kept in process memory.

    Exports advance one lifecycle step per status query
    (pending -> processing -> completed) when ``auto_advance`` is on, which
    mimics an out-of-band worker. The exported data is captured when the
    export is requested. Imports apply the conflict policy once per section.
    """

    def __init__(
        self,
        user_id: str,
        user_role: UserRole | str,
        data: Mapping[str, Any] | None = None,
        clock: Clock | None = None,
        settings: Settings | None = None,
        auto_advance: bool = True,
    ) -> None:
        """Initialize in-memory backend.

        Args:
            user_id: Owner of the data
            user_role: Owner's role, limits exportable sections
            data: Initial section data
            clock: Time source
            settings: Settings used for import validation
            auto_advance: Advance exports on every status query
        """
        self.user_id = user_id
        self.user_role = UserRole(user_role)
        self.data: dict[str, Any] = dict(data or {})
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()
        self.auto_advance = auto_advance
        self.validation_service = ValidationService(self.settings)
        self._exports: dict[str, ExportRequest] = {}
        self._artifacts: dict[str, str] = {}
        self._snapshots: dict[str, dict[str, Any]] = {}

    async def create_export(
        self,
        sections: Sequence[ExportSection],
        format: ExportFormat,
        encryption: EncryptionOptions | None = None,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> ExportRequest:
        request = ExportRequest(
            user_id=self.user_id,
            requested_at=self.clock.now(),
            sections=list(sections),
            format=format,
            ip_address=ip_address,
            user_agent=user_agent,
            encrypted=bool(encryption and encryption.enabled),
        )
        self._exports[request.export_id] = request
        # Content is fixed at request time, not when the worker renders it.
        self._snapshots[request.export_id] = copy.deepcopy(
            {section.value: self.data.get(section.value) for section in request.sections}
        )
        logger.info("Export %s registered for user %s", request.export_id, self.user_id)
        return request.model_copy()

    async def get_export_status(self, export_id: str) -> ExportRequest:
        request = self._get(export_id)
        if self.auto_advance:
            request = self.advance(export_id)
        return request.model_copy()

    async def list_exports(self) -> list[ExportRequest]:
        return [request.model_copy() for request in self._exports.values()]

    async def record_download(self, export_id: str, downloaded_at: datetime) -> ExportRequest:
        request = self._get(export_id)
        updated = request.model_copy(
            update={
                "download_count": request.download_count + 1,
                "last_download_at": downloaded_at,
            }
        )
        self._exports[export_id] = updated
        return updated.model_copy()

    def advance(self, export_id: str) -> ExportRequest:
        """Move an export one step through its lifecycle."""
        request = self._get(export_id)
        if request.status == ExportStatus.PENDING:
            request = request.model_copy(update={"status": ExportStatus.PROCESSING})
        elif request.status == ExportStatus.PROCESSING:
            request = self._generate(request)
        self._exports[export_id] = request
        return request

    def get_artifact(self, export_id: str) -> str:
        """Return the rendered content of a completed export.

        Raises:
            NotFoundError: If no artifact exists for the export
        """
        if export_id not in self._artifacts:
            raise NotFoundError(f"No artifact for export: {export_id}")
        return self._artifacts[export_id]

    def add_export(self, request: ExportRequest, artifact: str | None = None) -> None:
        """Store a pre-built export (history fixtures, migrations)."""
        self._exports[request.export_id] = request
        if artifact is not None:
            self._artifacts[request.export_id] = artifact

    def _get(self, export_id: str) -> ExportRequest:
        if export_id not in self._exports:
            raise NotFoundError(f"Export not found: {export_id}")
        return self._exports[export_id]

    def _generate(self, request: ExportRequest) -> ExportRequest:
        snapshot = self._snapshots.pop(request.export_id, self.data)
        if request.encrypted:
            logger.warning("Export %s failed: encryption unsupported", request.export_id)
            return request.model_copy(
                update={
                    "status": ExportStatus.FAILED,
                    "error": "Encryption is not supported by the in-memory backend",
                }
            )

        allowed = set(available_sections(self.user_role))
        selected = {
            section.value: snapshot.get(section.value)
            for section in request.sections
            if section in allowed
        }
        bundle = bundle_service.build_bundle(
            selected, self.user_role, user_id=self.user_id, clock=self.clock
        )
        content = bundle_service.render_bundle(bundle, request.format)
        self._artifacts[request.export_id] = content

        logger.info("Export %s completed", request.export_id)
        return request.model_copy(
            update={
                "status": ExportStatus.COMPLETED,
                "completed_at": self.clock.now(),
                "file_size": len(content.encode("utf-8")),
                "checksum": bundle_service.checksum(content),
                "download_url": f"memory://exports/{request.export_id}",
            }
        )

    async def execute_import(self, file_content: str, options: ImportOptions) -> ImportResult:
        if options.validate_content:
            validation = self.validation_service.validate_content(
                file_content, options.format
            )
            if not validation.is_valid:
                return ImportResult(
                    success=False,
                    error="; ".join(validation.errors),
                    imported_at=self.clock.now(),
                )

        try:
            bundle = bundle_service.parse_bundle(file_content, options.format)
        except ContentInvalidError as e:
            return ImportResult(success=False, error=str(e), imported_at=self.clock.now())

        counts: dict[str, int] = {}
        skipped_count = 0
        for section, incoming in bundle_service.iter_sections(bundle):
            resolved, action = resolve_with_action(
                self.data.get(section), incoming, options.conflict_strategy
            )
            if action == ResolutionAction.KEEP:
                skipped_count += 1
                continue
            self.data[section] = resolved
            counts[section] = counts.get(section, 0) + 1

        logger.info(
            "Imported %d sections for user %s (%d skipped)",
            len(counts),
            self.user_id,
            skipped_count,
        )
        return ImportResult(
            success=True,
            imported_at=self.clock.now(),
            counts=counts,
            skipped_count=skipped_count,
        )
