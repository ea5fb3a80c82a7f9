"""Batch orchestrator — sequential, rate-limited extraction across a batch of documents.

Documents are processed strictly one after another with a fixed pause between
backend calls. A failure in one document is recorded on that document's result
and never reaches the rest of the batch.

Guarantees:
- one ExtractionResult per input document, in input order
- no exception raised while extracting a document escapes that document
- every uploaded file is deleted once read, whether or not extraction succeeds
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Awaitable, Callable

from waterfall.config.settings import ExtractionConfig
from waterfall.extraction.client import MetricExtractor
from waterfall.metrics.schema import MetricSchema
from waterfall.pipeline.models import ExtractionResult, UploadedDocument
from waterfall.signals.emitter import SignalEmitter
from waterfall.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


def discard_file(path: Path, run_id: str | None = None) -> None:
    """Delete a transient file (upload or discarded ledger). Failures are logged, never raised."""
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        emit_structured_error(
            logger,
            code=ErrorCode.FILE_CLEANUP_FAILED,
            message=str(exc),
            suppressed=True,
            run_id=run_id,
            details={"path": str(path)},
        )


class BatchOrchestrator:
    """Drives the extraction adapter across a batch, one document at a time."""

    def __init__(
        self,
        extractor: MetricExtractor,
        config: ExtractionConfig | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self._extractor = extractor
        self._config = config or ExtractionConfig()
        self._sleep = sleep

    async def run_batch(
        self,
        documents: list[UploadedDocument],
        schema: MetricSchema,
        spec_text: str,
        signals: SignalEmitter | None = None,
    ) -> list[ExtractionResult]:
        """Extract every document in order and return one result per document."""
        run_id = signals.run_id if signals else None
        results: list[ExtractionResult] = []
        total = len(documents)

        for index, document in enumerate(documents):
            logger.info("Processing document %d/%d: %s", index + 1, total, document.label)
            if signals:
                await signals.emit_document_started(index, document.label, total)

            result = await self._extract_isolated(document, schema, spec_text, run_id)
            results.append(result)

            if signals:
                if result.failed:
                    await signals.emit_document_failed(index, document.label, result.error or "")
                else:
                    await signals.emit_document_extracted(
                        index, document.label, len(result.values)
                    )

            if index < total - 1:
                await self._sleep(self._config.inter_call_delay_s)

        return results

    async def _extract_isolated(
        self,
        document: UploadedDocument,
        schema: MetricSchema,
        spec_text: str,
        run_id: str | None,
    ) -> ExtractionResult:
        started = time.monotonic()
        try:
            try:
                payload = document.path.read_bytes()
            finally:
                discard_file(document.path, run_id)

            logger.debug("Read %s, size: %d bytes", document.label, len(payload))
            result = await asyncio.wait_for(
                self._extractor.extract(
                    payload,
                    document.label,
                    schema,
                    spec_text,
                    mime_type=document.mime_type,
                    run_id=run_id,
                ),
                timeout=self._config.document_timeout_s,
            )
        except asyncio.TimeoutError:
            error = f"Extraction timed out after {self._config.document_timeout_s:g}s"
        except Exception as exc:
            error = str(exc) or type(exc).__name__
        else:
            return result

        emit_structured_error(
            logger,
            code=ErrorCode.DOCUMENT_EXTRACTION_FAILED,
            message=error,
            suppressed=True,
            run_id=run_id,
            document=document.label,
            details={"elapsed_s": round(time.monotonic() - started, 2)},
        )
        return ExtractionResult.failure(document.label, error)
