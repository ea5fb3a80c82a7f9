"""Per-document extraction results, normalized rows, and batch artifacts."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from waterfall.metrics.normalizer import CellValue
from waterfall.metrics.schema import MetricDefinition


class ExtractionResult(BaseModel):
    """Raw extraction outcome for one submitted document.

    - ``values`` holds what the backend reported, verbatim, keyed by metric name
    - a metric missing from ``values`` is an expected outcome, not an error
    - ``error`` set with empty ``values`` means the document failed as a whole
    """

    document_label: str
    values: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @classmethod
    def failure(cls, document_label: str, error: str) -> "ExtractionResult":
        return cls(document_label=document_label, values={}, error=error)


@dataclass(frozen=True)
class NormalizedRow:
    """One workbook row: the document label plus cells aligned to the schema."""

    document_label: str
    cells: tuple[CellValue, ...]

    def as_list(self) -> list[Any]:
        return [self.document_label, *self.cells]


class BatchSummary(BaseModel):
    """Counts and schema echoed into the workbook's summary sheet."""

    total_documents: int
    successful: int
    failed: int
    metrics: list[MetricDefinition]
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class Artifact:
    """A written workbook plus the rows and summary it was built from."""

    run_id: str
    path: Path
    header: list[str]
    rows: list[NormalizedRow]
    summary: BatchSummary
    column_widths: list[int] = field(default_factory=list)


class ArtifactRegistration(BaseModel):
    """Store entry for a generated workbook awaiting download or eviction."""

    run_id: str
    path: Path
    created_at: float
    document_count: int
    ledger_path: Path | None = None

    model_config = {"frozen": True}


class UploadedDocument(BaseModel):
    """A transient uploaded file awaiting extraction. Deleted once read."""

    label: str
    path: Path
    mime_type: str = "application/pdf"


class BatchResponse(BaseModel):
    """Result handed back to callers of a batch run."""

    run_id: str
    documents_processed: int
    download_reference: str
