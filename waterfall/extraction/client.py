"""Extraction client adapter — one document, one backend call, one raw result.

The adapter builds the instruction for a metric schema, submits it with the
document, and pulls the first JSON object out of the reply. It performs no type
coercion: values come back exactly as the backend reported them.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from waterfall.extraction.backend import DocumentAnalysisBackend, DocumentExtractionError
from waterfall.metrics.normalizer import NOT_FOUND_SENTINELS
from waterfall.metrics.schema import MetricSchema, MetricType, clean_spec_lines
from waterfall.pipeline.models import ExtractionResult
from waterfall.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

DATE_FORMAT_HINT = "MM/DD/YYYY"

_TYPE_HINTS = {
    MetricType.NUMBER: "number, digits only, no currency symbols or thousands separators",
    MetricType.DATE: f"date in {DATE_FORMAT_HINT} format",
    MetricType.PERCENTAGE: "percentage as a decimal fraction (0.15 for 15%)",
    MetricType.TEXT: "text",
}


def build_instruction(schema: MetricSchema, spec_text: str) -> str:
    """Render the natural-language extraction instruction for a schema."""
    requested = "\n".join(clean_spec_lines(spec_text)) or "\n".join(m.name for m in schema)
    expected = "\n".join(f'  - "{m.name}": {_TYPE_HINTS[m.type]}' for m in schema)
    sentinels = " or ".join(f'"{s}"' for s in sorted(NOT_FOUND_SENTINELS, reverse=True))
    example = json.dumps({m.name: "..." for m in schema}, ensure_ascii=False)

    return (
        "You are analyzing a business document to extract specific metrics.\n\n"
        "The user wants to extract the following metrics from the document:\n"
        f"{requested}\n\n"
        "Extraction rules:\n"
        "  1. If a metric is found, provide its exact value.\n"
        f"  2. If a metric is not found, return {sentinels}.\n"
        "  3. For numbers, extract numeric values only (no currency symbols or commas).\n"
        f"  4. For dates, use {DATE_FORMAT_HINT} format.\n"
        "  5. For percentages, return a decimal (e.g. 0.15 for 15%).\n\n"
        "Expected keys and formats:\n"
        f"{expected}\n\n"
        "Return a single JSON object whose keys match the metric names EXACTLY as "
        "listed above, without leading hyphens or bullets. Example shape:\n"
        f"{example}"
    )


def build_response_schema(schema: MetricSchema) -> dict[str, Any]:
    """Structured-output schema constraining the backend reply to one object."""
    return {
        "type": "object",
        "properties": {m.name: {"type": "string", "nullable": True} for m in schema},
    }


def find_json_object(text: str) -> dict[str, Any] | None:
    """Return the first balanced ``{...}`` block in ``text`` that parses as an object.

    Tolerates surrounding prose and code fences. A balanced block that fails to
    parse is skipped whole, so objects nested inside it are never returned.
    Returns None when nothing parses.
    """
    if not text:
        return None

    start = text.find("{")
    while start != -1:
        resume = start + 1
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    try:
                        # a block starting with "{" that parses is always an object
                        return json.loads(text[start : index + 1])
                    except json.JSONDecodeError:
                        resume = index + 1
                        break
        start = text.find("{", resume)
    return None


class MetricExtractor:
    """Adapter between the batch orchestrator and a document analysis backend."""

    def __init__(self, backend: DocumentAnalysisBackend) -> None:
        self._backend = backend

    async def extract(
        self,
        document: bytes,
        document_label: str,
        schema: MetricSchema,
        spec_text: str,
        mime_type: str = "application/pdf",
        run_id: str | None = None,
    ) -> ExtractionResult:
        """Extract raw metric values from one document.

        Backend failures and unparsable replies come back as a failed
        ExtractionResult, never as an exception.
        """
        instruction = build_instruction(schema, spec_text)

        try:
            reply = await self._backend.analyze(
                document,
                mime_type,
                instruction,
                response_schema=build_response_schema(schema),
            )
        except DocumentExtractionError as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.BACKEND_REQUEST_FAILED,
                message=str(exc),
                suppressed=True,
                run_id=run_id,
                document=document_label,
            )
            return ExtractionResult.failure(document_label, str(exc))

        logger.debug("Backend reply for %s: %s", document_label, reply[:200])

        values = find_json_object(reply)
        if values is None:
            emit_structured_error(
                logger,
                code=ErrorCode.EXTRACTION_REPLY_UNPARSABLE,
                message="No JSON object found in backend reply",
                suppressed=True,
                run_id=run_id,
                document=document_label,
                details={"reply_preview": reply[:200]},
            )
            return ExtractionResult.failure(document_label, "No valid data extracted")

        return ExtractionResult(document_label=document_label, values=values)
