"""Custom exceptions for data portability."""


class DataPortabilityError(Exception):
    """Base class for all data portability errors."""

    pass


class ValidationError(DataPortabilityError, ValueError):
    """Raised when validation fails.

    Carries every problem found, not only the first one.
    """

    def __init__(self, errors: list[str] | str) -> None:
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class FileRejectedError(ValidationError):
    """Raised when a file has an unsupported extension or is too large."""

    pass


class ContentInvalidError(ValidationError):
    """Raised when file content is malformed or lacks required metadata."""

    pass


class ReadFailureError(ContentInvalidError):
    """Raised when a file cannot be read as UTF-8 text."""

    pass


class NotFoundError(DataPortabilityError):
    """Raised when a requested export is not found."""

    pass


class NotDownloadableError(DataPortabilityError):
    """Raised when an export is expired or not completed."""

    def __init__(self, export_id: str, reason: str) -> None:
        self.export_id = export_id
        self.reason = reason
        super().__init__(f"Export {export_id} is not downloadable: {reason}")


class ExportFailedError(DataPortabilityError):
    """Raised when the export service fails to create or report an export."""

    pass


class ImportExecutionFailedError(DataPortabilityError):
    """Raised by import backends when applying a bundle fails."""

    pass


class InvalidTransitionError(DataPortabilityError):
    """Raised when a workflow transition is not allowed from the current step."""

    pass


class WorkflowBusyError(InvalidTransitionError):
    """Raised when a transition is attempted while an operation is in flight."""

    pass
