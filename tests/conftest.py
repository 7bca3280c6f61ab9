"""Pytest configuration and fixtures for data-portability tests."""

import json
from datetime import datetime, timezone
from typing import Any

import pytest
import pytest_asyncio

from data_portability.backends.memory import InMemoryPortabilityBackend
from data_portability.config import reset_settings
from data_portability.config.settings import Settings
from data_portability.models.import_session import ImportFile
from data_portability.services.export_workflow import ExportWorkflowController
from data_portability.services.history_service import ExportHistoryManager
from data_portability.services.import_workflow import ImportWorkflowController
from data_portability.services.validation_service import ValidationService
from data_portability.utils.clock import FixedClock

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _isolated_settings():
    """Keep the settings singleton from leaking between tests."""
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def test_settings() -> Settings:
    """Test configuration settings."""
    return Settings(
        max_file_size_bytes=10 * 1024 * 1024,
        history_page_size=10,
        poll_interval_seconds=0.0,
        poll_max_attempts=5,
        log_level="DEBUG",
    )


@pytest.fixture
def clock() -> FixedClock:
    """Clock frozen at NOW."""
    return FixedClock(NOW)


@pytest.fixture
def validation_service(test_settings: Settings) -> ValidationService:
    """Validation service."""
    return ValidationService(settings=test_settings)


@pytest.fixture
def patient_data() -> dict[str, Any]:
    """Stored data of a patient account."""
    return {
        "profile": {
            "id": "user-1",
            "first_name": "Alice",
            "email": "alice@example.com",
            "password_hash": "secret",
        },
        "preferences": {"locale": "fr", "timezone": "Europe/Zurich"},
        "medical": {"allergies": ["peanuts"], "height_cm": 168},
    }


@pytest.fixture
def valid_bundle() -> dict[str, Any]:
    """A well-formed export bundle."""
    return {
        "profile": {"first_name": "Alice", "age": 30},
        "preferences": {"locale": "fr"},
        "_metadata": {
            "export_version": "1.0",
            "exported_at": "2024-05-30T10:00:00+00:00",
            "user_id": "user-1",
            "user_role": "patient",
            "gdpr_compliant": True,
        },
    }


@pytest.fixture
def valid_json_file(valid_bundle: dict[str, Any]) -> ImportFile:
    """Valid JSON upload."""
    return ImportFile.from_bytes(
        "export.json", json.dumps(valid_bundle).encode("utf-8"), "application/json"
    )


@pytest_asyncio.fixture
async def backend(
    clock: FixedClock, test_settings: Settings, patient_data: dict[str, Any]
) -> InMemoryPortabilityBackend:
    """In-memory backend for a patient."""
    return InMemoryPortabilityBackend(
        user_id="user-1",
        user_role="patient",
        data=patient_data,
        clock=clock,
        settings=test_settings,
    )


@pytest_asyncio.fixture
async def export_controller(
    backend: InMemoryPortabilityBackend, test_settings: Settings, clock: FixedClock
) -> ExportWorkflowController:
    """Export workflow controller."""
    return ExportWorkflowController(
        export_service=backend,
        settings=test_settings,
        clock=clock,
        user_role="patient",
        ip_address="192.0.2.10",
    )


@pytest_asyncio.fixture
async def import_controller(
    backend: InMemoryPortabilityBackend,
    test_settings: Settings,
    validation_service: ValidationService,
) -> ImportWorkflowController:
    """Import workflow controller."""
    return ImportWorkflowController(
        import_service=backend,
        export_service=backend,
        settings=test_settings,
        validation_service=validation_service,
    )


@pytest_asyncio.fixture
async def history_manager(
    backend: InMemoryPortabilityBackend, test_settings: Settings, clock: FixedClock
) -> ExportHistoryManager:
    """History manager backed by the in-memory backend."""
    return ExportHistoryManager(
        export_service=backend, clock=clock, settings=test_settings
    )
