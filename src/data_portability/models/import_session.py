"""Import session models."""

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

import aiofiles
from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from data_portability.config.settings import Settings


class ImportFormat(str, Enum):
    """Import file format."""

    JSON = "json"
    CSV = "csv"


class ConflictStrategy(str, Enum):
    """How an incoming record is reconciled with an existing one."""

    OVERWRITE = "overwrite"
    MERGE = "merge"
    SKIP = "skip"


class ImportStep(str, Enum):
    """Steps of the import workflow, in forward order."""

    UPLOAD = "upload"
    PREVIEW = "preview"
    OPTIONS = "options"
    CONFIRMATION = "confirmation"
    PROGRESS = "progress"
    RESULT = "result"


class ImportOptions(BaseModel):
    """User-selected import options."""

    model_config = ConfigDict(populate_by_name=True)

    format: ImportFormat = ImportFormat.JSON
    conflict_strategy: ConflictStrategy = ConflictStrategy.MERGE
    validate_content: bool = Field(default=True, alias="validate")
    create_backup: bool = True

    @classmethod
    def from_settings(cls, settings: "Settings") -> "ImportOptions":
        """Build the options a new session starts with."""
        return cls(
            conflict_strategy=ConflictStrategy(settings.default_conflict_strategy),
            validate_content=settings.default_validate,
            create_backup=settings.default_create_backup,
        )


class ImportFile(BaseModel):
    """A file handed to the import workflow.

    Either ``path`` or ``data`` provides the bytes. ``size`` is what the
    caller (or the filesystem) reports and is checked before anything is read.
    """

    name: str
    size: int = Field(ge=0)
    content_type: str | None = None
    path: Path | None = None
    data: bytes | None = Field(default=None, repr=False)

    @classmethod
    def from_path(cls, path: Path | str, content_type: str | None = None) -> "ImportFile":
        """Describe a file on disk without reading it."""
        path = Path(path)
        return cls(
            name=path.name,
            size=path.stat().st_size,
            content_type=content_type,
            path=path,
        )

    @classmethod
    def from_bytes(
        cls, name: str, data: bytes, content_type: str | None = None
    ) -> "ImportFile":
        """Wrap an in-memory upload."""
        return cls(name=name, size=len(data), content_type=content_type, data=data)

    @property
    def extension(self) -> str:
        """Lower-cased extension including the leading dot ('' if none)."""
        return Path(self.name).suffix.lower()

    @property
    def detected_format(self) -> ImportFormat:
        """Format inferred from the extension: .csv is CSV, anything else JSON."""
        if self.extension == ".csv":
            return ImportFormat.CSV
        return ImportFormat.JSON

    async def read_text(self) -> str:
        """Read the whole file as UTF-8 text, dropping a leading byte order mark.

        Raises:
            OSError: If the file cannot be read
            UnicodeDecodeError: If the content is not valid UTF-8
        """
        if self.data is not None:
            return self.data.decode("utf-8-sig")
        if self.path is None:
            raise OSError(f"No content source for file: {self.name}")
        async with aiofiles.open(self.path, encoding="utf-8-sig") as f:
            return await f.read()


class ImportResult(BaseModel):
    """Result of an import execution."""

    success: bool
    error: str | None = None
    imported_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    counts: dict[str, int] = Field(default_factory=dict)
    skipped_count: int = 0

    @property
    def is_success(self) -> bool:
        return self.success


class ImportSession(BaseModel):
    """Serializable snapshot of one import workflow.

    Transitions never mutate a session; they return an updated copy.
    """

    step: ImportStep = ImportStep.UPLOAD
    selected_file: ImportFile | None = None
    file_content: str = Field(default="", repr=False)
    parsed_data: dict[str, Any] | None = Field(default=None, repr=False)
    validation_errors: list[str] = Field(default_factory=list)
    options: ImportOptions = Field(default_factory=ImportOptions)
    result: ImportResult | None = None

    @property
    def format(self) -> ImportFormat:
        return self.options.format
