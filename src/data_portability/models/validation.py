"""Validation result model."""

from pydantic import BaseModel, ConfigDict


class ValidationResult(BaseModel):
    """Outcome of a validation pass."""

    model_config = ConfigDict(frozen=True)

    is_valid: bool
    errors: tuple[str, ...] = ()

    @classmethod
    def from_errors(cls, errors: list[str]) -> "ValidationResult":
        return cls(is_valid=not errors, errors=tuple(errors))
