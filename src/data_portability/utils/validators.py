"""Validation utilities for export and history arguments.

This module provides reusable validators so the export controller and
the history manager report argument problems the same way.
"""

from collections.abc import Iterable
from typing import TYPE_CHECKING

from data_portability.exceptions import ValidationError
from data_portability.models.export import (
    ExportFormat,
    ExportSection,
    ExportStatus,
    UserRole,
    available_sections,
)

if TYPE_CHECKING:
    from data_portability.models.export import EncryptionOptions

SORT_KEYS = ("date", "status", "size")
ALL_STATUSES = "all"


def validate_export_options(
    sections: Iterable[ExportSection | str] | None,
    format: ExportFormat | str | None,
    encryption: "EncryptionOptions | None" = None,
    user_role: UserRole | str | None = None,
) -> list[str]:
    """Collect every problem with a set of export options.

    Args:
        sections: Requested sections
        format: Requested export format
        encryption: Optional encryption settings
        user_role: Role of the requesting user; restricts the allowed sections

    Returns:
        List of error messages (empty when the options are valid)
    """
    errors: list[str] = []

    try:
        ExportFormat(format)
    except ValueError:
        valid_formats = [f.value for f in ExportFormat]
        errors.append(
            f"Invalid export format: '{format}'. "
            f"Valid formats are: {', '.join(valid_formats)}"
        )

    section_list = list(sections or [])
    if not section_list:
        errors.append("At least one section must be selected")

    allowed = set(available_sections(user_role)) if user_role is not None else None
    role_label = getattr(user_role, "value", user_role)
    for section in section_list:
        try:
            parsed = ExportSection(section)
        except ValueError:
            errors.append(f"Unknown export section: '{section}'")
            continue
        if allowed is not None and parsed not in allowed:
            errors.append(
                f"Section '{parsed.value}' is not available for role '{role_label}'"
            )

    if encryption is not None and encryption.enabled and not encryption.password:
        errors.append("A password is required for encryption")

    return errors


def validate_sections(
    sections: Iterable[ExportSection | str] | None,
) -> list[ExportSection]:
    """Validate and normalize a section selection.

    Args:
        sections: Requested sections

    Returns:
        Ordered, de-duplicated list of sections

    Raises:
        ValidationError: If the selection is empty or contains unknown sections
    """
    section_list = list(sections or [])
    if not section_list:
        raise ValidationError("At least one section must be selected")

    normalized: list[ExportSection] = []
    errors: list[str] = []
    for section in section_list:
        try:
            parsed = ExportSection(section)
        except ValueError:
            errors.append(f"Unknown export section: '{section}'")
            continue
        if parsed not in normalized:
            normalized.append(parsed)

    if errors:
        raise ValidationError(errors)
    return normalized


def validate_status_filter(status: ExportStatus | str) -> ExportStatus | None:
    """Validate a history status filter.

    Returns:
        The status to filter on, or None for 'all'

    Raises:
        ValidationError: If the filter is not 'all' or a known status
    """
    if status == ALL_STATUSES:
        return None
    try:
        return ExportStatus(status)
    except ValueError as e:
        valid = [ALL_STATUSES] + [s.value for s in ExportStatus]
        raise ValidationError(
            f"Invalid status filter: '{status}'. Valid filters are: {', '.join(valid)}"
        ) from e


def validate_sort_key(sort_by: str) -> str:
    """Validate a history sort key."""
    if sort_by not in SORT_KEYS:
        raise ValidationError(
            f"Invalid sort key: '{sort_by}'. Valid keys are: {', '.join(SORT_KEYS)}"
        )
    return sort_by


def validate_page_size(page_size: int) -> int:
    """Validate a page size.

    Raises:
        ValidationError: If page_size is not a positive integer
    """
    if not isinstance(page_size, int) or isinstance(page_size, bool):
        raise ValidationError("page_size must be an integer")
    if page_size < 1:
        raise ValidationError("page_size must be at least 1")
    return page_size
