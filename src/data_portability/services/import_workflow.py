"""Import workflow state machine.

Steps run upload -> preview -> options -> confirmation -> progress -> result.
CSV files have no structured preview, so they go straight from upload to
options. The transition functions below are pure: they take a session and
return an updated copy. :class:`ImportWorkflowController` owns the current
session, performs the two asynchronous steps (reading the file and
executing the import) and refuses any transition while one is in flight.
"""

import asyncio
import json
import logging
from typing import Any

from data_portability.backends.base import ExportBackend, ImportBackend
from data_portability.config import get_settings
from data_portability.config.settings import Settings
from data_portability.exceptions import (
    ContentInvalidError,
    FileRejectedError,
    ImportExecutionFailedError,
    InvalidTransitionError,
    ReadFailureError,
    ValidationError,
    WorkflowBusyError,
)
from data_portability.models.export import ExportFormat, ExportSection, ExportStatus
from data_portability.models.import_session import (
    ConflictStrategy,
    ImportFile,
    ImportFormat,
    ImportOptions,
    ImportResult,
    ImportSession,
    ImportStep,
)
from data_portability.services.export_workflow import SETTLED_STATUSES
from data_portability.services.validation_service import ValidationService

logger = logging.getLogger(__name__)

_FORWARD_STEPS = frozenset(
    {ImportStep.UPLOAD, ImportStep.PREVIEW, ImportStep.OPTIONS, ImportStep.CONFIRMATION}
)
_BACKWARD_STEPS = frozenset(
    {ImportStep.PREVIEW, ImportStep.OPTIONS, ImportStep.CONFIRMATION, ImportStep.RESULT}
)


def new_session(settings: Settings | None = None) -> ImportSession:
    """Return an empty session positioned on the upload step."""
    settings = settings or get_settings()
    return ImportSession(options=ImportOptions.from_settings(settings))


def can_go_next(session: ImportSession) -> bool:
    """Forward navigation needs a selected file and no validation errors."""
    return (
        session.step in _FORWARD_STEPS
        and session.selected_file is not None
        and not session.validation_errors
    )


def can_go_back(session: ImportSession) -> bool:
    return session.step in _BACKWARD_STEPS


def _step_after_upload(session: ImportSession) -> ImportStep:
    if session.options.format == ImportFormat.CSV:
        return ImportStep.OPTIONS
    return ImportStep.PREVIEW


def reject_file(session: ImportSession, errors: list[str]) -> ImportSession:
    """Stay on upload with the given errors; any previous file is dropped."""
    return session.model_copy(
        update={
            "step": ImportStep.UPLOAD,
            "selected_file": None,
            "file_content": "",
            "parsed_data": None,
            "validation_errors": list(errors),
        }
    )


def accept_file(
    session: ImportSession,
    file: ImportFile,
    content: str,
    parsed_data: dict[str, Any] | None,
) -> ImportSession:
    """Record a validated file and move past upload."""
    options = session.options.model_copy(update={"format": file.detected_format})
    accepted = session.model_copy(
        update={
            "selected_file": file,
            "file_content": content,
            "parsed_data": parsed_data,
            "validation_errors": [],
            "options": options,
        }
    )
    return accepted.model_copy(update={"step": _step_after_upload(accepted)})


def go_next(session: ImportSession) -> ImportSession:
    """Apply forward navigation.

    Confirmation is left through :func:`begin_import`, not here.

    Raises:
        InvalidTransitionError: If the guard fails or the step has no
            navigational successor
    """
    if not can_go_next(session):
        raise InvalidTransitionError(
            f"Cannot advance from '{session.step.value}': "
            "a valid file must be selected first"
        )

    if session.step == ImportStep.UPLOAD:
        return session.model_copy(update={"step": _step_after_upload(session)})
    if session.step == ImportStep.PREVIEW:
        return session.model_copy(update={"step": ImportStep.OPTIONS})
    if session.step == ImportStep.OPTIONS:
        return session.model_copy(update={"step": ImportStep.CONFIRMATION})
    raise InvalidTransitionError(
        "Confirmation starts the import; it cannot be navigated past"
    )


def go_back(session: ImportSession, settings: Settings | None = None) -> ImportSession:
    """Apply backward navigation.

    From the result step the whole session is reset to upload.

    Raises:
        InvalidTransitionError: From upload or while the import is running
    """
    if session.step == ImportStep.PREVIEW:
        return session.model_copy(update={"step": ImportStep.UPLOAD})
    if session.step == ImportStep.OPTIONS:
        previous = (
            ImportStep.UPLOAD
            if session.options.format == ImportFormat.CSV
            else ImportStep.PREVIEW
        )
        return session.model_copy(update={"step": previous})
    if session.step == ImportStep.CONFIRMATION:
        return session.model_copy(update={"step": ImportStep.OPTIONS})
    if session.step == ImportStep.RESULT:
        return new_session(settings)
    raise InvalidTransitionError(f"Cannot go back from '{session.step.value}'")


def update_options(
    session: ImportSession,
    conflict_strategy: ConflictStrategy | str | None = None,
    validate: bool | None = None,
    create_backup: bool | None = None,
) -> ImportSession:
    """Change import options before the import starts.

    The format always follows the selected file and cannot be changed here.

    Raises:
        InvalidTransitionError: Once the import is running or finished
    """
    if session.step in (ImportStep.PROGRESS, ImportStep.RESULT):
        raise InvalidTransitionError(
            f"Options cannot change during '{session.step.value}'"
        )

    changes: dict[str, Any] = {}
    if conflict_strategy is not None:
        changes["conflict_strategy"] = ConflictStrategy(conflict_strategy)
    if validate is not None:
        changes["validate_content"] = validate
    if create_backup is not None:
        changes["create_backup"] = create_backup
    return session.model_copy(update={"options": session.options.model_copy(update=changes)})


def begin_import(session: ImportSession) -> ImportSession:
    """Move from confirmation to progress.

    Raises:
        InvalidTransitionError: If not on confirmation or the guard fails
    """
    if session.step != ImportStep.CONFIRMATION:
        raise InvalidTransitionError(
            f"Import can only start from confirmation, not '{session.step.value}'"
        )
    if not can_go_next(session):
        raise InvalidTransitionError("Import cannot start without a valid file")
    return session.model_copy(update={"step": ImportStep.PROGRESS})


def finish_import(session: ImportSession, result: ImportResult) -> ImportSession:
    """Record the execution outcome and move to result.

    Raises:
        InvalidTransitionError: If no import is in progress
    """
    if session.step != ImportStep.PROGRESS:
        raise InvalidTransitionError(
            f"No import in progress (step is '{session.step.value}')"
        )
    return session.model_copy(update={"step": ImportStep.RESULT, "result": result})


async def select_file(
    session: ImportSession,
    file: ImportFile,
    validation_service: ValidationService,
) -> ImportSession:
    """Validate, read and (for JSON) parse a file chosen on the upload step.

    Any failure leaves the session on upload with the problems listed in
    ``validation_errors``; nothing is raised.

    Raises:
        InvalidTransitionError: If the session is not on the upload step
    """
    if session.step != ImportStep.UPLOAD:
        raise InvalidTransitionError(
            f"Files can only be selected on upload, not '{session.step.value}'"
        )

    try:
        content, parsed_data = await load_file(file, validation_service)
    except ValidationError as e:
        return reject_file(session, e.errors)
    return accept_file(session, file, content, parsed_data)


async def load_file(
    file: ImportFile, validation_service: ValidationService
) -> tuple[str, dict[str, Any] | None]:
    """Run both validation layers and read the file.

    Args:
        file: File chosen by the user
        validation_service: Validation engine

    Returns:
        Tuple of (raw text, parsed bundle). The bundle is None for CSV.

    Raises:
        FileRejectedError: If the extension, type or size is not accepted
        ReadFailureError: If the file cannot be read as UTF-8 text
        ContentInvalidError: If the text is not a valid export bundle
    """
    file_validation = validation_service.validate_file(file)
    if not file_validation.is_valid:
        raise FileRejectedError(list(file_validation.errors))

    try:
        content = await file.read_text()
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Could not read import file %s: %s", file.name, e)
        raise ReadFailureError(f"Failed to read file: {e}") from e

    format = file.detected_format
    content_validation = validation_service.validate_content(content, format)
    if not content_validation.is_valid:
        raise ContentInvalidError(list(content_validation.errors))

    if format == ImportFormat.CSV:
        return content, None
    try:
        return content, json.loads(content)
    except ValueError as e:
        raise ReadFailureError(f"Failed to read file: {e}") from e


class ImportWorkflowController:
    """Owns one import session and drives it through its steps.

    Meant for a single event-driven caller. While a file is being read or
    an import is executing every other transition raises
    :class:`WorkflowBusyError`.
    """

    def __init__(
        self,
        import_service: ImportBackend,
        export_service: ExportBackend | None = None,
        settings: Settings | None = None,
        validation_service: ValidationService | None = None,
    ) -> None:
        """Initialize import workflow controller.

        Args:
            import_service: Backend that applies the bundle
            export_service: Backend used for the optional pre-import backup
            settings: Application settings
            validation_service: Validation engine (built from settings if omitted)
        """
        self.import_service = import_service
        self.export_service = export_service
        self.settings = settings or get_settings()
        self.validation_service = validation_service or ValidationService(self.settings)
        self._session = new_session(self.settings)
        self._busy = False

    @property
    def session(self) -> ImportSession:
        return self._session

    @property
    def is_busy(self) -> bool:
        return self._busy

    @property
    def can_go_next(self) -> bool:
        return not self._busy and can_go_next(self._session)

    @property
    def can_go_back(self) -> bool:
        return not self._busy and can_go_back(self._session)

    def _ensure_idle(self) -> None:
        if self._busy:
            raise WorkflowBusyError(
                f"Another operation is in progress (step '{self._session.step.value}')"
            )

    async def select_file(self, file: ImportFile) -> ImportSession:
        """Take a file on the upload step. See :func:`select_file`."""
        self._ensure_idle()
        self._busy = True
        try:
            self._session = await select_file(self._session, file, self.validation_service)
        finally:
            self._busy = False
        return self._session

    async def next(self) -> ImportSession:
        """Forward action; on confirmation it starts the import."""
        self._ensure_idle()
        if self._session.step == ImportStep.CONFIRMATION:
            return await self.confirm()
        self._session = go_next(self._session)
        return self._session

    def back(self) -> ImportSession:
        self._ensure_idle()
        self._session = go_back(self._session, self.settings)
        return self._session

    def update_options(
        self,
        conflict_strategy: ConflictStrategy | str | None = None,
        validate: bool | None = None,
        create_backup: bool | None = None,
    ) -> ImportSession:
        self._ensure_idle()
        self._session = update_options(
            self._session,
            conflict_strategy=conflict_strategy,
            validate=validate,
            create_backup=create_backup,
        )
        return self._session

    def reset(self) -> ImportSession:
        self._ensure_idle()
        self._session = new_session(self.settings)
        return self._session

    async def confirm(self) -> ImportSession:
        """Run the import. Always ends on the result step."""
        self._ensure_idle()
        self._session = begin_import(self._session)
        self._busy = True
        try:
            result = await self._execute(self._session)
        finally:
            self._busy = False
        self._session = finish_import(self._session, result)
        return self._session

    async def _execute(self, session: ImportSession) -> ImportResult:
        options = session.options

        if options.create_backup:
            backup_error = await self._create_backup()
            if backup_error is not None:
                return ImportResult(success=False, error=backup_error)

        try:
            result = await self.import_service.execute_import(session.file_content, options)
        except ImportExecutionFailedError as e:
            logger.warning("Import failed: %s", e)
            return ImportResult(success=False, error=str(e))
        except Exception as e:
            logger.exception("Import execution raised: %s", e)
            return ImportResult(success=False, error=str(e))

        if not result.success:
            if result.error is None:
                result = result.model_copy(update={"error": "Import failed"})
            logger.warning("Import failed: %s", result.error)
        else:
            logger.info(
                "Import completed with strategy %s (%d skipped)",
                options.conflict_strategy.value,
                result.skipped_count,
            )
        return result

    async def _create_backup(self) -> str | None:
        """Export the backup sections and wait for the artifact.

        Returns:
            An error message, or None once the backup has completed
        """
        if self.export_service is None:
            return "Backup requested but no export service is configured"

        known = {section.value for section in ExportSection}
        sections = [ExportSection(s) for s in self.settings.backup_sections if s in known]
        attempts = self.settings.poll_max_attempts
        try:
            backup = await self.export_service.create_export(sections, ExportFormat.JSON)
            for _ in range(attempts):
                backup = await self.export_service.get_export_status(backup.export_id)
                if backup.status in SETTLED_STATUSES:
                    break
                await asyncio.sleep(self.settings.poll_interval_seconds)
        except Exception as e:
            logger.exception("Pre-import backup failed: %s", e)
            return f"Backup failed: {e}"

        if backup.status == ExportStatus.COMPLETED:
            logger.info("Pre-import backup stored as export %s", backup.export_id)
            return None
        if backup.status not in SETTLED_STATUSES:
            logger.warning(
                "Backup %s still %s after %d polls",
                backup.export_id,
                backup.status.value,
                attempts,
            )
            return f"Backup did not complete after {attempts} status checks"
        logger.warning("Backup %s ended as %s", backup.export_id, backup.status.value)
        reason = f": {backup.error}" if backup.error else ""
        return f"Backup {backup.status.value}{reason}"
