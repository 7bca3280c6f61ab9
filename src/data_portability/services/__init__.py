"""Service layer for the import/export workflows."""

from data_portability.services.conflict_resolution import ResolutionAction, resolve
from data_portability.services.export_workflow import (
    ExportOperationState,
    ExportWorkflowController,
)
from data_portability.services.history_service import ExportHistoryManager
from data_portability.services.import_workflow import ImportWorkflowController
from data_portability.services.validation_service import ValidationService

__all__ = [
    "ExportHistoryManager",
    "ExportOperationState",
    "ExportWorkflowController",
    "ImportWorkflowController",
    "ResolutionAction",
    "ValidationService",
    "resolve",
]
