"""Data models for data portability."""

from data_portability.models.export import (
    EXPORT_VERSION,
    RETENTION_PERIOD,
    EncryptionOptions,
    ExportFormat,
    ExportMetadata,
    ExportRequest,
    ExportSection,
    ExportStatus,
    UserRole,
    available_sections,
)
from data_portability.models.history import HistoryPage, HistorySummary
from data_portability.models.import_session import (
    ConflictStrategy,
    ImportFile,
    ImportFormat,
    ImportOptions,
    ImportResult,
    ImportSession,
    ImportStep,
)
from data_portability.models.validation import ValidationResult

__all__ = [
    # Export models
    "EXPORT_VERSION",
    "RETENTION_PERIOD",
    "EncryptionOptions",
    "ExportFormat",
    "ExportMetadata",
    "ExportRequest",
    "ExportSection",
    "ExportStatus",
    "UserRole",
    "available_sections",
    # History models
    "HistoryPage",
    "HistorySummary",
    # Import models
    "ConflictStrategy",
    "ImportFile",
    "ImportFormat",
    "ImportOptions",
    "ImportResult",
    "ImportSession",
    "ImportStep",
    # Validation
    "ValidationResult",
]
