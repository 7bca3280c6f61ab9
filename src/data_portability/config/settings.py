"""Application settings management using Pydantic Settings."""

from typing import Literal, Self

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Data portability configuration settings.

    All settings can be configured via environment variables with the
    prefix `DATA_PORTABILITY_`. For example, `DATA_PORTABILITY_MAX_FILE_SIZE_BYTES`.
    """

    # Import file intake
    max_file_size_bytes: int = Field(
        default=10 * 1024 * 1024,  # 10MB
        ge=1,
        description="Maximum accepted import file size in bytes",
    )
    allowed_extensions: list[str] = Field(
        default_factory=lambda: [".json", ".csv", ".txt"],
        description="File extensions accepted for import",
    )
    allowed_content_types: list[str] = Field(
        default_factory=lambda: ["application/json", "text/csv", "text/plain"],
        description="Content types accepted for import (checked when reported)",
    )

    # Content validation
    require_metadata: bool = Field(
        default=True,
        description="Reject bundles without an _metadata block",
    )

    # Import defaults
    default_conflict_strategy: Literal["overwrite", "merge", "skip"] = Field(
        default="merge", description="Conflict strategy preselected for new sessions"
    )
    default_validate: bool = Field(
        default=True, description="Re-validate content before applying an import"
    )
    default_create_backup: bool = Field(
        default=True, description="Export a backup before applying an import"
    )
    backup_sections: list[str] = Field(
        default_factory=lambda: ["profile", "professional", "medical", "preferences"],
        description="Sections included in the pre-import backup",
    )

    # History
    history_page_size: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Default number of history entries per page",
    )

    # Polling
    poll_interval_seconds: float = Field(
        default=2.0,
        ge=0.0,
        description="Delay between export status polls",
    )
    poll_max_attempts: int = Field(
        default=30,
        ge=1,
        description="Maximum number of status polls before giving up",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    model_config = SettingsConfigDict(
        env_prefix="DATA_PORTABILITY_", env_file=".env", env_file_encoding="utf-8"
    )

    @model_validator(mode="after")
    def validate_extensions(self) -> Self:
        """Validate the accepted extension list."""
        if not self.allowed_extensions:
            raise ValueError("allowed_extensions must not be empty")
        for extension in self.allowed_extensions:
            if not extension.startswith("."):
                raise ValueError(
                    f"Extension '{extension}' must start with a dot (e.g. '.json')"
                )
        self.allowed_extensions = [ext.lower() for ext in self.allowed_extensions]
        return self
