"""Tabular artifact builder — normalized rows into a formatted two-sheet workbook.

Sheet 1 holds one row per document, columns in schema order behind a leading
document-label column. Sheet 2 summarizes the batch and echoes the schema.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from openpyxl import Workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

from waterfall.metrics.normalizer import CellMarker, CellValue, normalize
from waterfall.metrics.schema import MetricDefinition, MetricSchema, MetricType
from waterfall.pipeline.models import Artifact, BatchSummary, ExtractionResult, NormalizedRow
from waterfall.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

DOCUMENT_COLUMN = "Document"
RESULTS_SHEET = "Metric Waterfall"
SUMMARY_SHEET = "Summary"

NUMBER_FORMAT = "#,##0"
PERCENTAGE_FORMAT = "0.00%"

MIN_COLUMN_WIDTH = 10
MAX_COLUMN_WIDTH = 50
COLUMN_PADDING = 2

MAX_CELL_CHARS = 32767

HEADER_FONT = Font(bold=True)
ERROR_FONT = Font(color="C00000", italic=True)

_MISSING = object()


class ArtifactError(Exception):
    """Raised when the workbook cannot be written. No partial artifact is usable."""


def artifact_filename(run_id: str) -> str:
    return f"metric_waterfall_{run_id}.xlsx"


def lookup_value(values: dict[str, Any], name: str) -> Any:
    """Find a metric's raw value by exact name, then case-insensitively."""
    if name in values:
        return values[name]
    folded = name.lower()
    for key, value in values.items():
        if isinstance(key, str) and key.lower() == folded:
            return value
    return _MISSING


def normalize_result(result: ExtractionResult, schema: MetricSchema) -> NormalizedRow:
    """Derive the schema-aligned row for one extraction result."""
    cells: list[CellValue] = []
    for metric in schema:
        raw = lookup_value(result.values, metric.name)
        if raw is _MISSING:
            cells.append(CellMarker.ERROR if result.failed else CellMarker.EMPTY)
        else:
            cells.append(normalize(raw, metric.type))
    return NormalizedRow(document_label=result.document_label, cells=tuple(cells))


def summarize(results: list[ExtractionResult], schema: MetricSchema) -> BatchSummary:
    failed = sum(1 for result in results if result.failed)
    return BatchSummary(
        total_documents=len(results),
        successful=len(results) - failed,
        failed=failed,
        metrics=list(schema),
    )


def _is_numeric(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def render_cell(value: Any, metric_type: MetricType | None = None) -> str:
    """Display text for a cell, as used for column sizing."""
    if isinstance(value, CellMarker):
        return value.value
    if value is None:
        return ""
    if _is_numeric(value):
        if metric_type == MetricType.NUMBER:
            return f"{value:,.0f}"
        if metric_type == MetricType.PERCENTAGE:
            return f"{value:.2%}"
    return str(value)


def column_widths(header: list[str], rows: list[NormalizedRow], schema: MetricSchema) -> list[int]:
    """Width per column from its longest rendered value, clamped."""
    types: list[MetricType | None] = [None, *(m.type for m in schema)]
    widths = []
    for index, title in enumerate(header):
        rendered = [title, *(render_cell(row.as_list()[index], types[index]) for row in rows)]
        longest = max((len(text) for text in rendered), default=0)
        widths.append(min(max(longest + COLUMN_PADDING, MIN_COLUMN_WIDTH), MAX_COLUMN_WIDTH))
    return widths


def _excel_value(value: Any) -> Any:
    if isinstance(value, CellMarker):
        return value.value or None
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if not isinstance(value, str):
        value = json.dumps(value, ensure_ascii=False, default=str)
    return ILLEGAL_CHARACTERS_RE.sub("", value)[:MAX_CELL_CHARS]


def _write_results_sheet(
    sheet: Any,
    header: list[str],
    rows: list[NormalizedRow],
    schema: MetricSchema,
    widths: list[int],
) -> None:
    sheet.title = RESULTS_SHEET
    sheet.append([_excel_value(title) for title in header])
    for cell in sheet[1]:
        cell.font = HEADER_FONT
    sheet.freeze_panes = "A2"

    for row_index, row in enumerate(rows, start=2):
        sheet.cell(row=row_index, column=1, value=_excel_value(row.document_label))
        for metric_index, (metric, value) in enumerate(zip(schema, row.cells), start=2):
            cell = sheet.cell(row=row_index, column=metric_index, value=_excel_value(value))
            if value is CellMarker.ERROR:
                cell.font = ERROR_FONT
            elif _is_numeric(value):
                if metric.type == MetricType.NUMBER:
                    cell.number_format = NUMBER_FORMAT
                elif metric.type == MetricType.PERCENTAGE:
                    cell.number_format = PERCENTAGE_FORMAT

    for index, width in enumerate(widths, start=1):
        sheet.column_dimensions[get_column_letter(index)].width = width


def _write_summary_sheet(sheet: Any, summary: BatchSummary) -> None:
    sheet.append(["Metric Waterfall Analysis Summary"])
    sheet["A1"].font = HEADER_FONT
    sheet.append([])
    sheet.append(["Generated:", summary.generated_at.strftime("%Y-%m-%d %H:%M:%S UTC")])
    sheet.append(["Total Documents:", summary.total_documents])
    sheet.append(["Successful Extractions:", summary.successful])
    sheet.append(["Failed Extractions:", summary.failed])
    sheet.append([])
    sheet.append(["Metric", "Type"])
    for cell in sheet[sheet.max_row]:
        cell.font = HEADER_FONT
    for metric in summary.metrics:
        sheet.append([_excel_value(metric.name), metric.type.value])
    sheet.column_dimensions["A"].width = 30
    sheet.column_dimensions["B"].width = 20


def _store_strings_as_text(sheet: Any) -> None:
    """Keep every string literal, including ones that look like formulas.

    openpyxl turns any string starting with "=" into a formula. Labels and
    values come from uploaded filenames and document content, so none of them
    may be evaluated by the spreadsheet.
    """
    for row in sheet.iter_rows():
        for cell in row:
            if cell.data_type == "f":
                cell.data_type = "s"


def _header(schema: list[MetricDefinition]) -> list[str]:
    return [DOCUMENT_COLUMN, *(metric.name for metric in schema)]


def build_artifact(
    results: list[ExtractionResult],
    schema: MetricSchema,
    run_id: str,
    output_dir: Path,
) -> Artifact:
    """Build and write the workbook for a batch.

    Raises ArtifactError when the file cannot be written.
    """
    header = _header(schema)
    rows = [normalize_result(result, schema) for result in results]
    summary = summarize(results, schema)
    widths = column_widths(header, rows, schema)

    workbook = Workbook()
    _write_results_sheet(workbook.active, header, rows, schema, widths)
    _write_summary_sheet(workbook.create_sheet(SUMMARY_SHEET), summary)
    for sheet in workbook.worksheets:
        _store_strings_as_text(sheet)

    output_path = output_dir / artifact_filename(run_id)
    temp_path = output_path.with_suffix(".tmp")
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
        workbook.save(temp_path)
        temp_path.replace(output_path)
    except OSError as exc:
        if temp_path.exists():
            temp_path.unlink()
        emit_structured_error(
            logger,
            code=ErrorCode.ARTIFACT_WRITE_FAILED,
            message=str(exc),
            suppressed=False,
            run_id=run_id,
            details={"path": str(output_path)},
        )
        raise ArtifactError(f"Failed to write artifact for run {run_id}: {exc}") from exc

    logger.info("Wrote %d rows for run %s to %s", len(rows), run_id, output_path)
    return Artifact(
        run_id=run_id,
        path=output_path,
        header=header,
        rows=rows,
        summary=summary,
        column_widths=widths,
    )
