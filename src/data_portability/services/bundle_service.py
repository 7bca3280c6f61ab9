"""Export bundle construction, rendering and CSV parsing.

A bundle is a mapping of section name to section data plus an optional
``_metadata`` block. JSON bundles are the mapping itself; CSV bundles
flatten every leaf value into a ``Section,Field,Value,Type`` row, where
``Section`` is the dotted path of the enclosing object (``root`` for
top-level scalars, see :func:`csv_section_name` for escaping).
"""

import csv
import hashlib
import io
import json
import re
from collections.abc import Mapping
from datetime import date, datetime
from typing import Any, NamedTuple

from data_portability.exceptions import ContentInvalidError
from data_portability.models.export import ExportFormat, ExportMetadata, UserRole
from data_portability.utils.clock import Clock, SystemClock

METADATA_KEY = "_metadata"

SENSITIVE_FIELDS = frozenset(
    {"password", "password_hash", "salt", "session_token", "reset_token"}
)

CSV_HEADER = ["Section", "Field", "Value", "Type"]
CSV_ROOT_SECTION = "root"
CSV_VALUE_TYPES = ("string", "number", "boolean", "null", "array", "object")

DATA_RETENTION_POLICY = "https://nutrisensia.com/privacy"
CONTACT_INFO = "privacy@nutrisensia.com"

_INT_PATTERN = re.compile(r"^-?\d+$")


class CsvRow(NamedTuple):
    """One data row of a CSV bundle."""

    line: int
    section: str
    field: str
    value: str
    type: str


def sanitize_record(record: Any) -> Any:
    """Drop credential fields from a record (and from records inside lists)."""
    if isinstance(record, Mapping):
        return {k: v for k, v in record.items() if k not in SENSITIVE_FIELDS}
    if isinstance(record, list):
        return [sanitize_record(item) for item in record]
    return record


def build_bundle(
    data: Mapping[str, Any],
    user_role: UserRole | str,
    user_id: str | None = None,
    clock: Clock | None = None,
    include_metadata: bool = True,
) -> dict[str, Any]:
    """Assemble an export bundle from per-section data.

    Args:
        data: Section name to section data
        user_role: Role of the exporting user
        user_id: Exporting user's id
        clock: Time source for exported_at
        include_metadata: Add the _metadata block

    Returns:
        Bundle ready for :func:`render_bundle`
    """
    bundle: dict[str, Any] = {
        str(section): sanitize_record(value)
        for section, value in data.items()
        if section != METADATA_KEY
    }
    if include_metadata:
        clock = clock or SystemClock()
        metadata = ExportMetadata(
            exported_at=clock.now(),
            user_id=user_id,
            user_role=getattr(user_role, "value", user_role),
            data_retention_policy=DATA_RETENTION_POLICY,
            contact_info=CONTACT_INFO,
        )
        bundle[METADATA_KEY] = metadata.model_dump(mode="json")
    return bundle


def iter_sections(bundle: Mapping[str, Any]) -> list[tuple[str, Any]]:
    """Return the (section, data) pairs of a bundle, without metadata."""
    return [(key, value) for key, value in bundle.items() if not key.startswith("_")]


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def render_json(bundle: Mapping[str, Any]) -> str:
    return json.dumps(bundle, indent=2, ensure_ascii=False, default=_json_default)


def _csv_cell(value: Any) -> tuple[str, str]:
    if value is None:
        return "", "null"
    if isinstance(value, bool):
        return ("true" if value else "false"), "boolean"
    if isinstance(value, (int, float)):
        return repr(value), "number"
    if isinstance(value, list):
        return json.dumps(value, ensure_ascii=False, default=_json_default), "array"
    if isinstance(value, Mapping):
        return json.dumps(value, ensure_ascii=False, default=_json_default), "object"
    if isinstance(value, (datetime, date)):
        return value.isoformat(), "string"
    return str(value), "string"


def _escape_segment(key: str) -> str:
    return key.replace("\\", "\\\\").replace(".", "\\.")


def csv_section_name(path: list[str]) -> str:
    """Encode a key path as the Section column.

    Segments are joined with dots; a literal dot or backslash inside a key
    is escaped with a backslash. The empty path is ``root``, so a top-level
    key named ``root`` is written as ``\\root``.
    """
    if not path:
        return CSV_ROOT_SECTION
    name = ".".join(_escape_segment(part) for part in path)
    if name == CSV_ROOT_SECTION:
        return "\\" + name
    return name


def split_csv_section(section: str) -> list[str]:
    """Decode the Section column back into a key path."""
    if section == CSV_ROOT_SECTION:
        return []
    parts: list[str] = []
    current: list[str] = []
    chars = iter(section)
    for char in chars:
        if char == "\\":
            current.append(next(chars, ""))
        elif char == ".":
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    parts.append("".join(current))
    return parts


def _flatten(obj: Mapping[str, Any], path: list[str], rows: list[list[str]]) -> None:
    for key, value in obj.items():
        if isinstance(value, Mapping) and value:
            _flatten(value, [*path, str(key)], rows)
        else:
            cell, value_type = _csv_cell(value)
            rows.append([csv_section_name(path), str(key), cell, value_type])


def render_csv(bundle: Mapping[str, Any]) -> str:
    rows: list[list[str]] = []
    _flatten(bundle, [], rows)

    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    writer.writerows(rows)
    return buffer.getvalue()


def render_bundle(bundle: Mapping[str, Any], format: ExportFormat | str) -> str:
    """Render a bundle in the requested format.

    Raises:
        ValueError: If the format is not supported
    """
    format = ExportFormat(format)
    if format == ExportFormat.JSON:
        return render_json(bundle)
    return render_csv(bundle)


def checksum(content: str) -> str:
    """SHA-256 hex digest of the UTF-8 encoded content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def parse_csv_rows(content: str) -> tuple[list[CsvRow], list[str]]:
    """Split CSV bundle text into rows, collecting structural problems.

    Returns:
        Tuple of (rows, errors). When the header is missing or wrong only
        that single error is reported.
    """
    reader = csv.reader(io.StringIO(content.lstrip("\ufeff")))
    rows: list[CsvRow] = []
    errors: list[str] = []
    header_seen = False

    try:
        for record in reader:
            if not record or all(not cell.strip() for cell in record):
                continue
            if not header_seen:
                if [cell.strip() for cell in record] != CSV_HEADER:
                    return [], [
                        f"Missing or incorrect CSV header (expected {','.join(CSV_HEADER)})"
                    ]
                header_seen = True
                continue
            if len(record) != len(CSV_HEADER):
                errors.append(
                    f"Line {reader.line_num}: expected {len(CSV_HEADER)} columns, "
                    f"got {len(record)}"
                )
                continue
            section, field, value, value_type = record
            if value_type not in CSV_VALUE_TYPES:
                errors.append(
                    f"Line {reader.line_num}: unknown value type '{value_type}'"
                )
                continue
            if not field:
                errors.append(f"Line {reader.line_num}: field name is empty")
                continue
            rows.append(CsvRow(reader.line_num, section, field, value, value_type))
    except csv.Error as e:
        errors.append(f"Line {reader.line_num}: malformed CSV ({e})")

    if not header_seen and not errors:
        return [], [f"Missing or incorrect CSV header (expected {','.join(CSV_HEADER)})"]
    return rows, errors


def decode_csv_value(row: CsvRow) -> Any:
    """Convert a CSV cell back to its typed value.

    Raises:
        ValueError: If the cell does not match its declared type
    """
    if row.type == "string":
        return row.value
    if row.type == "null":
        if row.value:
            raise ValueError(f"null value must be empty, got '{row.value}'")
        return None
    if row.type == "boolean":
        if row.value not in ("true", "false"):
            raise ValueError(f"invalid boolean '{row.value}'")
        return row.value == "true"
    if row.type == "number":
        if _INT_PATTERN.match(row.value):
            return int(row.value)
        return float(row.value)
    decoded = json.loads(row.value)
    expected = list if row.type == "array" else dict
    if not isinstance(decoded, expected):
        raise ValueError(f"expected {row.type}, got {type(decoded).__name__}")
    return decoded


def assemble_csv_bundle(rows: list[CsvRow]) -> tuple[dict[str, Any], list[str]]:
    """Rebuild the nested bundle from CSV rows.

    Returns:
        Tuple of (bundle, errors)
    """
    bundle: dict[str, Any] = {}
    errors: list[str] = []

    for row in rows:
        try:
            value = decode_csv_value(row)
        except ValueError as e:
            errors.append(f"Line {row.line}: {e}")
            continue
        except RecursionError:
            errors.append(f"Line {row.line}: {row.type} value is nested too deeply")
            continue

        path = split_csv_section(row.section)
        target: Any = bundle
        for part in path:
            target = target.setdefault(part, {})
            if not isinstance(target, dict):
                break
        if not isinstance(target, dict):
            errors.append(
                f"Line {row.line}: section path '{row.section}' conflicts with a value"
            )
            continue
        target[row.field] = value

    return bundle, errors


def parse_csv_bundle(content: str) -> dict[str, Any]:
    """Parse CSV bundle text into a nested bundle.

    Raises:
        ContentInvalidError: With every problem found
    """
    rows, errors = parse_csv_rows(content)
    bundle, assembly_errors = assemble_csv_bundle(rows)
    errors.extend(assembly_errors)
    if errors:
        raise ContentInvalidError(errors)
    return bundle


def parse_bundle(content: str, format: ExportFormat | str) -> dict[str, Any]:
    """Parse bundle text in either format.

    Raises:
        ContentInvalidError: If the content cannot be parsed into an object
    """
    if ExportFormat(format) == ExportFormat.CSV:
        return parse_csv_bundle(content)
    try:
        data = json.loads(content)
    except (ValueError, RecursionError) as e:
        raise ContentInvalidError(f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ContentInvalidError(
            "Invalid JSON structure: expected an object at the top level"
        )
    return data
