"""Progress events for a single batch run.

Signals are kept in memory for the lifetime of the run and, when a ledger path
is given, appended to a JSONL ledger that outlives the request. The ledger is
what the signals endpoint reads back.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from waterfall.signals.types import Signal, SignalType
from waterfall.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)


class SignalEmitter:
    """Sequenced progress events for one batch run.

    Sequence numbers start at 1 and never repeat within a run. A ledger that
    cannot be written is logged and skipped; it never interrupts the batch.
    """

    def __init__(self, run_id: str, ledger_path: Path | None = None) -> None:
        self._run_id = run_id
        self._ledger_path = ledger_path
        self._history: list[Signal] = []
        self._lock = asyncio.Lock()

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def ledger_path(self) -> Path | None:
        return self._ledger_path

    @property
    def signals(self) -> list[Signal]:
        return list(self._history)

    async def emit(self, signal_type: SignalType, payload: dict[str, Any] | None = None) -> Signal:
        async with self._lock:
            signal = Signal(
                sequence=len(self._history) + 1,
                signal_type=signal_type,
                timestamp=datetime.now(timezone.utc),
                run_id=self._run_id,
                payload=payload or {},
            )
            self._history.append(signal)
            if self._ledger_path is not None:
                self._persist(signal)
        return signal

    def _persist(self, signal: Signal) -> None:
        try:
            self._ledger_path.parent.mkdir(parents=True, exist_ok=True)
            with self._ledger_path.open("a", encoding="utf-8") as ledger:
                ledger.write(signal.model_dump_json() + "\n")
        except OSError as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.SIGNAL_LEDGER_WRITE_FAILED,
                message=str(exc),
                suppressed=True,
                run_id=self._run_id,
                details={"path": str(self._ledger_path), "sequence": signal.sequence},
            )

    async def emit_document_started(self, index: int, document: str, total: int) -> Signal:
        return await self.emit(
            SignalType.DOCUMENT_STARTED,
            {"index": index, "document": document, "total": total},
        )

    async def emit_document_extracted(self, index: int, document: str, values_count: int) -> Signal:
        return await self.emit(
            SignalType.DOCUMENT_EXTRACTED,
            {"index": index, "document": document, "values_count": values_count},
        )

    async def emit_document_failed(self, index: int, document: str, error: str) -> Signal:
        return await self.emit(
            SignalType.DOCUMENT_FAILED,
            {"index": index, "document": document, "error": error},
        )

    async def emit_batch_complete(
        self, total_documents: int, failed_documents: int, duration_s: float
    ) -> Signal:
        return await self.emit(
            SignalType.BATCH_COMPLETE,
            {
                "total_documents": total_documents,
                "failed_documents": failed_documents,
                "duration_s": duration_s,
            },
        )

    async def emit_batch_failed(self, reason: str) -> Signal:
        return await self.emit(SignalType.BATCH_FAILED, {"reason": reason})

    @staticmethod
    def load_ledger(ledger_path: Path) -> list[Signal]:
        """Read back every signal a run appended to its ledger."""
        if not ledger_path.exists():
            return []
        return [
            Signal.model_validate_json(line)
            for line in ledger_path.read_text(encoding="utf-8").splitlines()
            if line.strip()
        ]
