"""Batch service: validate input, run extraction, build and register the workbook."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from pathlib import Path

from waterfall.artifacts.builder import ArtifactError, build_artifact
from waterfall.artifacts.store import ArtifactStore
from waterfall.config.settings import WaterfallConfig
from waterfall.extraction.backend import DocumentAnalysisBackend
from waterfall.extraction.client import MetricExtractor
from waterfall.metrics.schema import parse_metric_spec
from waterfall.pipeline.models import BatchResponse, UploadedDocument
from waterfall.pipeline.orchestrator import BatchOrchestrator, SleepFunc, discard_file
from waterfall.signals.emitter import SignalEmitter
from waterfall.signals.types import Signal, SignalType

logger = logging.getLogger(__name__)

DOWNLOAD_ROUTE = "/api/v1/analyses/{run_id}/download"


class BatchInputError(ValueError):
    """Raised when a batch is rejected before any extraction begins."""


def new_run_id() -> str:
    return uuid.uuid4().hex


def ledger_filename(run_id: str) -> str:
    return f"metric_waterfall_{run_id}.signals.jsonl"


class AnalysisService:
    """Entry point for batch metric extraction and artifact retrieval."""

    def __init__(
        self,
        config: WaterfallConfig,
        backend: DocumentAnalysisBackend,
        store: ArtifactStore,
        sleep: SleepFunc | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._orchestrator = BatchOrchestrator(
            MetricExtractor(backend), config.extraction, sleep=sleep or asyncio.sleep
        )

    @property
    def store(self) -> ArtifactStore:
        return self._store

    async def run_batch_extraction(
        self,
        documents: list[UploadedDocument],
        metric_spec_text: str,
        run_id: str | None = None,
        signals: SignalEmitter | None = None,
    ) -> BatchResponse:
        """Run a whole batch and return where to download its workbook.

        Raises BatchInputError for an empty batch, an empty metric schema or a
        run id that is already registered, and ArtifactError when the workbook
        cannot be written. Per-document failures end up as flagged rows, never
        as an exception. The run's signal ledger is retained with the workbook,
        or deleted when the batch fails.
        """
        run_id = run_id or new_run_id()
        started = time.monotonic()

        try:
            if run_id in self._store:
                raise BatchInputError(f"Run {run_id} already exists")
            if signals is None:
                signals = SignalEmitter(run_id, ledger_path=self.ledger_path(run_id))
            if not documents:
                raise BatchInputError("No documents uploaded")
            schema = parse_metric_spec(metric_spec_text or "")
            if not schema:
                raise BatchInputError("No metrics defined")

            logger.info(
                "Run %s: processing %d documents against %d metrics",
                run_id,
                len(documents),
                len(schema),
            )
            await signals.emit(
                SignalType.BATCH_STARTED,
                {"documents": len(documents), "metrics": [m.name for m in schema]},
            )

            results = await self._orchestrator.run_batch(
                documents, schema, metric_spec_text, signals=signals
            )
            artifact = build_artifact(results, schema, run_id, self._config.storage.output_dir)
            await signals.emit(
                SignalType.ARTIFACT_BUILT,
                {"path": str(artifact.path), "rows": len(artifact.rows)},
            )
            try:
                self._store.register(
                    run_id, artifact.path, len(results), ledger_path=signals.ledger_path
                )
            except ValueError as exc:
                raise ArtifactError(f"Failed to register artifact: {exc}") from exc
            await signals.emit_batch_complete(
                total_documents=artifact.summary.total_documents,
                failed_documents=artifact.summary.failed,
                duration_s=round(time.monotonic() - started, 2),
            )
        except Exception as exc:
            # files named after a registered run belong to that run
            if signals is not None and run_id not in self._store:
                await signals.emit_batch_failed(str(exc))
                if signals.ledger_path is not None:
                    discard_file(signals.ledger_path, run_id)
            raise
        finally:
            for document in documents:
                discard_file(document.path, run_id)

        return BatchResponse(
            run_id=run_id,
            documents_processed=len(results),
            download_reference=DOWNLOAD_ROUTE.format(run_id=run_id),
        )

    def ledger_path(self, run_id: str) -> Path:
        return self._config.storage.output_dir / ledger_filename(run_id)

    def download_artifact(self, run_id: str) -> Path | None:
        """Return the workbook path for a run, or None when unknown or expired."""
        return self._store.resolve(run_id)

    def run_signals(self, run_id: str, after: int = 0) -> list[Signal] | None:
        """Progress signals recorded for a retained run, or None when unknown or expired."""
        registration = self._store.get(run_id)
        if registration is None:
            return None
        if registration.ledger_path is None:
            return []
        return [
            signal
            for signal in SignalEmitter.load_ledger(registration.ledger_path)
            if signal.sequence > after
        ]
