"""Export models."""

import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Self

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

# Fixed retention window for generated export artifacts.
RETENTION_PERIOD = timedelta(days=7)

EXPORT_VERSION = "1.0"


class ExportFormat(str, Enum):
    """Export file format."""

    JSON = "json"
    CSV = "csv"


class ExportStatus(str, Enum):
    """Export lifecycle status."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"


class ExportSection(str, Enum):
    """Category of personal data that can be exported independently."""

    PROFILE = "profile"
    PROFESSIONAL = "professional"
    MEDICAL = "medical"
    PREFERENCES = "preferences"
    ACTIVITY = "activity"
    FILES = "files"
    PRIVACY = "privacy"
    SUBSCRIPTION = "subscription"
    AUDIT = "audit"


class UserRole(str, Enum):
    """Role of the account requesting an export."""

    NUTRITIONIST = "nutritionist"
    PATIENT = "patient"
    ADMIN = "admin"


_COMMON_SECTIONS = [
    ExportSection.PROFILE,
    ExportSection.PREFERENCES,
    ExportSection.ACTIVITY,
    ExportSection.FILES,
    ExportSection.PRIVACY,
]

_ROLE_SECTIONS: dict[UserRole, list[ExportSection]] = {
    UserRole.NUTRITIONIST: [ExportSection.PROFESSIONAL, ExportSection.AUDIT],
    UserRole.PATIENT: [ExportSection.MEDICAL, ExportSection.SUBSCRIPTION],
}


def available_sections(role: UserRole | str | None) -> list[ExportSection]:
    """Return the sections a user with the given role may export."""
    if role is None:
        return list(_COMMON_SECTIONS)
    try:
        role = UserRole(role)
    except ValueError:
        return list(_COMMON_SECTIONS)
    return _COMMON_SECTIONS + _ROLE_SECTIONS.get(role, [])


def _ensure_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class EncryptionOptions(BaseModel):
    """Optional encryption of the generated artifact."""

    enabled: bool = False
    password: SecretStr | None = None


class ExportMetadata(BaseModel):
    """The _metadata block written into every export bundle."""

    export_version: str = EXPORT_VERSION
    exported_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    user_id: str | None = None
    user_role: str
    gdpr_compliant: bool = True
    data_retention_policy: str | None = None
    contact_info: str | None = None


class ExportRequest(BaseModel):
    """A requested export and its artifact lifecycle.

    ``expires_at`` is always ``requested_at`` plus the retention window.
    Whether the artifact can still be downloaded depends on the current time
    as well as the stored status, see :meth:`effective_status`.
    """

    export_id: str = Field(default_factory=lambda: f"export_{uuid.uuid4().hex}")
    user_id: str | None = None
    requested_at: datetime
    expires_at: datetime | None = None
    completed_at: datetime | None = None
    sections: list[ExportSection] = Field(min_length=1)
    format: ExportFormat = ExportFormat.JSON
    status: ExportStatus = ExportStatus.PENDING
    file_size: int | None = Field(default=None, ge=0)
    checksum: str | None = None
    download_count: int = Field(default=0, ge=0)
    last_download_at: datetime | None = None
    error: str | None = None
    ip_address: str | None = Field(default=None, frozen=True)
    user_agent: str | None = None
    encrypted: bool = False
    download_url: str | None = None

    @field_validator(
        "requested_at", "expires_at", "completed_at", "last_download_at", mode="after"
    )
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        return _ensure_utc(value)

    @field_validator("sections", mode="after")
    @classmethod
    def _dedupe_sections(cls, value: list[ExportSection]) -> list[ExportSection]:
        return list(dict.fromkeys(value))

    @model_validator(mode="after")
    def _check_lifecycle(self) -> Self:
        expected_expiry = self.requested_at + RETENTION_PERIOD
        if self.expires_at is None:
            self.expires_at = expected_expiry
        elif self.expires_at != expected_expiry:
            raise ValueError(
                "expires_at must equal requested_at plus the 7 day retention window"
            )
        if self.error is not None and self.status != ExportStatus.FAILED:
            raise ValueError("error may only be set on failed exports")
        if self.file_size is not None and self.status not in (
            ExportStatus.COMPLETED,
            ExportStatus.EXPIRED,
        ):
            raise ValueError("file_size may only be set once the export completed")
        return self

    def is_past_expiry(self, now: datetime) -> bool:
        """Return True once the retention window has elapsed."""
        return _ensure_utc(now) > self.expires_at

    def effective_status(self, now: datetime) -> ExportStatus:
        """Status as seen at ``now``: anything not failed becomes expired past its window."""
        if self.status == ExportStatus.FAILED:
            return ExportStatus.FAILED
        if self.is_past_expiry(now):
            return ExportStatus.EXPIRED
        return self.status
