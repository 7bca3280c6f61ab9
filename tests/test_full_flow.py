"""End-to-end tests: export an account, download the artifact, import it elsewhere."""

import json

import pytest

from data_portability.backends.memory import InMemoryPortabilityBackend
from data_portability.config.settings import Settings
from data_portability.models.export import ExportFormat, ExportStatus
from data_portability.models.import_session import ImportFile, ImportStep
from data_portability.services.export_workflow import ExportWorkflowController
from data_portability.services.history_service import ExportHistoryManager
from data_portability.services.import_workflow import ImportWorkflowController
from data_portability.utils.clock import FixedClock


class TestFullFlow:
    """Test the export and import workflows together."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "format, file_name", [(ExportFormat.JSON, "export.json"), (ExportFormat.CSV, "export.csv")]
    )
    async def test_export_then_import(
        self,
        export_controller: ExportWorkflowController,
        backend: InMemoryPortabilityBackend,
        history_manager: ExportHistoryManager,
        test_settings: Settings,
        clock: FixedClock,
        format: ExportFormat,
        file_name: str,
    ):
        """Test that an exported bundle imports cleanly into a new account."""
        # Given: a completed export of the patient's data
        request = await export_controller.submit_export(
            ["profile", "preferences", "medical"], format
        )
        completed = await export_controller.wait_for_completion(request.export_id)
        assert completed.status == ExportStatus.COMPLETED

        # When: the artifact is downloaded
        await history_manager.refresh()
        downloaded = await history_manager.record_download(request.export_id)
        artifact = backend.get_artifact(request.export_id)
        assert downloaded.download_count == 1
        assert downloaded.file_size == len(artifact.encode("utf-8"))

        # And: imported into an empty account
        target = InMemoryPortabilityBackend(
            "user-2", "patient", clock=clock, settings=test_settings
        )
        importer = ImportWorkflowController(
            target, export_service=target, settings=test_settings
        )
        file = ImportFile.from_bytes(file_name, artifact.encode("utf-8"))
        session = await importer.select_file(file)
        assert session.validation_errors == []
        while importer.session.step != ImportStep.RESULT:
            await importer.next()

        # Then: the target holds the same data, minus credentials
        result = importer.session.result
        assert result.is_success
        assert result.counts == {"profile": 1, "preferences": 1, "medical": 1}
        assert target.data["preferences"] == backend.data["preferences"]
        assert target.data["medical"] == backend.data["medical"]
        assert target.data["profile"]["first_name"] == "Alice"
        assert "password_hash" not in target.data["profile"]
        assert "_metadata" not in target.data

    @pytest.mark.asyncio
    async def test_sections_outside_role_not_exported(
        self, backend: InMemoryPortabilityBackend
    ):
        """Test that the backend only writes sections the role may export."""
        backend.data["professional"] = {"license": "123"}
        request = await backend.create_export(["profile", "professional"], "json")

        backend.advance(request.export_id)
        backend.advance(request.export_id)

        assert '"professional"' not in backend.get_artifact(request.export_id)

    @pytest.mark.asyncio
    async def test_artifact_holds_data_as_requested(
        self, backend: InMemoryPortabilityBackend
    ):
        """Test that changes made after the request stay out of the artifact."""
        request = await backend.create_export(["profile"], "json")
        backend.data["profile"]["first_name"] = "Alicia"

        backend.advance(request.export_id)
        backend.advance(request.export_id)

        artifact = json.loads(backend.get_artifact(request.export_id))
        assert artifact["profile"]["first_name"] == "Alice"
