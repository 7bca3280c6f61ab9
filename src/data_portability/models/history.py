"""Export history view models."""

from pydantic import BaseModel, Field

from data_portability.models.export import ExportRequest


class HistoryPage(BaseModel):
    """One page of the export history."""

    entries: list[ExportRequest] = Field(default_factory=list)
    page: int
    page_size: int
    total: int
    total_pages: int


class HistorySummary(BaseModel):
    """Aggregate figures over the export history."""

    total: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    downloadable_bytes: int = 0
    total_downloads: int = 0
