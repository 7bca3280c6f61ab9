"""Export workflow: section/format selection, submission and status polling."""

import asyncio
import logging
from collections.abc import Iterable

from pydantic import BaseModel

from data_portability.backends.base import ExportBackend
from data_portability.config import get_settings
from data_portability.config.settings import Settings
from data_portability.exceptions import ExportFailedError, NotFoundError, ValidationError
from data_portability.models.export import (
    EncryptionOptions,
    ExportFormat,
    ExportRequest,
    ExportSection,
    ExportStatus,
    UserRole,
)
from data_portability.utils.clock import Clock, SystemClock
from data_portability.utils.validators import validate_export_options, validate_sections

logger = logging.getLogger(__name__)

SETTLED_STATUSES = frozenset(
    {ExportStatus.COMPLETED, ExportStatus.FAILED, ExportStatus.EXPIRED}
)

_PROGRESS_BY_STATUS = {
    ExportStatus.PENDING: 0,
    ExportStatus.PROCESSING: 50,
    ExportStatus.COMPLETED: 100,
}


class ExportOperationState(BaseModel):
    """Transient view of the most recent export attempt."""

    is_exporting: bool = False
    progress: int = 0
    error: str | None = None
    result: ExportRequest | None = None

    @property
    def is_success(self) -> bool:
        return (
            self.result is not None
            and self.error is None
            and self.result.status == ExportStatus.COMPLETED
        )


class ExportWorkflowController:
    """Drives one user's export requests against an export backend.

    The controller keeps no durable state; ``state`` only mirrors the
    latest submission so a caller can render it.
    """

    def __init__(
        self,
        export_service: ExportBackend,
        settings: Settings | None = None,
        clock: Clock | None = None,
        user_role: UserRole | str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        """Initialize export workflow controller.

        Args:
            export_service: Backend that creates the artifacts
            settings: Settings for polling cadence
            clock: Time source for expiry checks
            user_role: Requesting user's role, restricts selectable sections
            ip_address: Audit address recorded on every request
            user_agent: Audit user agent recorded on every request
        """
        self.export_service = export_service
        self.settings = settings or get_settings()
        self.clock = clock or SystemClock()
        self.user_role = user_role
        self.ip_address = ip_address
        self.user_agent = user_agent
        self._state = ExportOperationState()

    @property
    def state(self) -> ExportOperationState:
        return self._state

    def reset(self) -> None:
        self._state = ExportOperationState()

    async def submit_export(
        self,
        sections: Iterable[ExportSection | str],
        format: ExportFormat | str = ExportFormat.JSON,
        encryption: EncryptionOptions | None = None,
    ) -> ExportRequest:
        """Validate the selection and ask the backend for an export.

        Args:
            sections: Sections to export (must not be empty)
            format: Export format
            encryption: Optional encryption settings

        Returns:
            The registered export, in pending state

        Raises:
            ValidationError: If the options are invalid (every problem listed)
            ExportFailedError: If the backend fails
        """
        sections = list(sections)
        errors = validate_export_options(sections, format, encryption, self.user_role)
        if errors:
            self._state = ExportOperationState(error=", ".join(errors))
            raise ValidationError(errors)

        normalized = validate_sections(sections)
        self._state = ExportOperationState(is_exporting=True)

        try:
            request = await self.export_service.create_export(
                normalized,
                ExportFormat(format),
                encryption,
                ip_address=self.ip_address,
                user_agent=self.user_agent,
            )
        except Exception as e:
            logger.exception("Export request failed: %s", e)
            self._state = ExportOperationState(error=str(e))
            raise ExportFailedError(f"Export request failed: {e}") from e

        logger.info(
            "Export %s submitted (%s, sections=%s)",
            request.export_id,
            request.format.value,
            ",".join(s.value for s in request.sections),
        )
        self._track(request)
        return request

    async def poll_status(self, export_id: str) -> ExportRequest:
        """Fetch the current state of an export once.

        An export past its retention window is reported as expired whatever
        status the backend stored.

        Raises:
            NotFoundError: If the backend does not know the export
            ExportFailedError: If the backend fails
        """
        try:
            request = await self.export_service.get_export_status(export_id)
        except NotFoundError:
            raise
        except Exception as e:
            logger.error("Status query for export %s failed: %s", export_id, e)
            raise ExportFailedError(f"Status query failed: {e}") from e

        effective = request.effective_status(self.clock.now())
        if effective != request.status:
            request = request.model_copy(update={"status": effective})

        self._track(request)
        return request

    async def wait_for_completion(
        self,
        export_id: str,
        interval_seconds: float | None = None,
        max_attempts: int | None = None,
    ) -> ExportRequest:
        """Poll until the export settles or the attempt limit is reached.

        Returns:
            The last observed state (may still be pending/processing)
        """
        interval = (
            self.settings.poll_interval_seconds
            if interval_seconds is None
            else interval_seconds
        )
        attempts = max_attempts or self.settings.poll_max_attempts

        request = await self.poll_status(export_id)
        for _ in range(attempts - 1):
            if request.status in SETTLED_STATUSES:
                break
            await asyncio.sleep(interval)
            request = await self.poll_status(export_id)

        if request.status not in SETTLED_STATUSES:
            logger.warning(
                "Export %s still %s after %d polls",
                export_id,
                request.status.value,
                attempts,
            )
        return request

    def _track(self, request: ExportRequest) -> None:
        if self._state.result is not None and self._state.result.export_id != request.export_id:
            return
        error = request.error if request.status == ExportStatus.FAILED else None
        self._state = ExportOperationState(
            is_exporting=request.status not in SETTLED_STATUSES,
            progress=_PROGRESS_BY_STATUS.get(request.status, 0),
            error=error,
            result=request,
        )
