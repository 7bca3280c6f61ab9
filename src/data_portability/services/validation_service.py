"""Validation of import files and export bundle content."""

import json
import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from data_portability.config import get_settings
from data_portability.config.settings import Settings
from data_portability.models.export import EXPORT_VERSION
from data_portability.models.import_session import ImportFile, ImportFormat
from data_portability.models.validation import ValidationResult
from data_portability.services.bundle_service import (
    METADATA_KEY,
    assemble_csv_bundle,
    iter_sections,
    parse_csv_rows,
)
from data_portability.utils.formatting import format_file_size

logger = logging.getLogger(__name__)

REQUIRED_METADATA_FIELDS = ("export_version", "exported_at", "user_role", "gdpr_compliant")


class ValidationService:
    """File-level and content-level checks shared by the import workflow
    and the import backends.

    Every check is pure: inputs are never modified and identical inputs
    always produce identical results. All problems are reported together.
    """

    SUPPORTED_MAJOR_VERSION = int(EXPORT_VERSION.split(".")[0])

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize validation service.

        Args:
            settings: Settings providing size and extension limits
        """
        self.settings = settings or get_settings()

    def validate_file(self, file: ImportFile) -> ValidationResult:
        """Check extension, reported content type and size without reading the file.

        Args:
            file: File handed to the import workflow

        Returns:
            ValidationResult listing every rejected property
        """
        errors: list[str] = []

        allowed_extensions = self.settings.allowed_extensions
        if file.extension not in allowed_extensions:
            errors.append(
                f"Unsupported file extension '{file.extension or file.name}'. "
                f"Use {', '.join(allowed_extensions)}"
            )

        if file.content_type and file.content_type not in self.settings.allowed_content_types:
            errors.append(
                f"Unsupported file type '{file.content_type}'. Use JSON or CSV."
            )

        max_size = self.settings.max_file_size_bytes
        if file.size > max_size:
            errors.append(
                f"File is too large ({format_file_size(file.size)}). "
                f"Maximum size is {format_file_size(max_size)}"
            )

        if errors:
            logger.warning("Rejected import file %s: %s", file.name, "; ".join(errors))
        return ValidationResult.from_errors(errors)

    def validate_content(
        self, content: str, format: ImportFormat | str
    ) -> ValidationResult:
        """Check that raw text is a well-formed export bundle.

        Args:
            content: Raw file text
            format: Declared format of the text

        Returns:
            ValidationResult listing every problem found
        """
        if not content.strip():
            return ValidationResult.from_errors(["File is empty"])

        if ImportFormat(format) == ImportFormat.CSV:
            errors = self._csv_errors(content)
        else:
            errors = self._json_errors(content)
        return ValidationResult.from_errors(errors)

    def validate_bundle(self, data: Any) -> ValidationResult:
        """Check an already-parsed bundle (sections plus metadata)."""
        return ValidationResult.from_errors(self._bundle_errors(data))

    def _json_errors(self, content: str) -> list[str]:
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            return [f"Invalid JSON: {e.msg} (line {e.lineno}, column {e.colno})"]
        except (ValueError, RecursionError) as e:
            return [f"Invalid JSON: {e}"]
        return self._bundle_errors(data)

    def _csv_errors(self, content: str) -> list[str]:
        rows, errors = parse_csv_rows(content)
        if not rows and errors:
            return errors
        bundle, assembly_errors = assemble_csv_bundle(rows)
        errors.extend(assembly_errors)
        errors.extend(self._bundle_errors(bundle))
        return errors

    def _bundle_errors(self, data: Any) -> list[str]:
        if not isinstance(data, Mapping):
            return ["Invalid JSON structure: expected an object at the top level"]

        errors: list[str] = []
        if not iter_sections(data):
            errors.append("Export contains no data sections")

        if METADATA_KEY not in data:
            if self.settings.require_metadata:
                errors.append("Missing export metadata (_metadata)")
            return errors

        metadata = data[METADATA_KEY]
        if not isinstance(metadata, Mapping):
            errors.append("Export metadata (_metadata) must be an object")
            return errors

        for field in REQUIRED_METADATA_FIELDS:
            if field not in metadata:
                errors.append(f"Missing required metadata field: {field}")

        errors.extend(self._metadata_value_errors(metadata))
        return errors

    def _metadata_value_errors(self, metadata: Mapping[str, Any]) -> list[str]:
        errors: list[str] = []

        if "export_version" in metadata:
            version = metadata["export_version"]
            if not isinstance(version, str) or not version.strip():
                errors.append("Metadata field export_version must be a non-empty string")
            else:
                try:
                    major = int(version.split(".")[0])
                except ValueError:
                    errors.append(f"Invalid export version: {version}")
                else:
                    if major > self.SUPPORTED_MAJOR_VERSION:
                        errors.append(
                            f"Unsupported export version: {version}. "
                            f"Maximum supported: {self.SUPPORTED_MAJOR_VERSION}.x"
                        )

        if "exported_at" in metadata:
            exported_at = metadata["exported_at"]
            if not isinstance(exported_at, str) or not _is_iso_timestamp(exported_at):
                errors.append("Metadata field exported_at must be an ISO-8601 timestamp")

        if "user_role" in metadata:
            user_role = metadata["user_role"]
            if not isinstance(user_role, str) or not user_role.strip():
                errors.append("Metadata field user_role must be a non-empty string")

        if "gdpr_compliant" in metadata and not isinstance(metadata["gdpr_compliant"], bool):
            errors.append("Metadata field gdpr_compliant must be a boolean")

        return errors


def _is_iso_timestamp(value: str) -> bool:
    try:
        datetime.fromisoformat(value)
    except ValueError:
        return False
    return True
