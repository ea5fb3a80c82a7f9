"""Ephemeral artifact store mapping run ids to generated workbooks, with timed eviction.

Entries live in memory for the lifetime of the process. Each registration is
evicted a fixed interval after it was created: the entry is dropped and the
workbook file deleted. Reads never extend an entry's lifetime.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from pathlib import Path
from typing import Callable, Protocol

from waterfall.pipeline.models import ArtifactRegistration
from waterfall.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_S = 60 * 60


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class RuntimeScheduler:
    """Schedules on the running event loop, or a daemon thread timer outside one."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            timer = threading.Timer(delay, callback)
            timer.daemon = True
            timer.start()
            return timer
        return loop.call_later(delay, callback)


class ArtifactStore:
    """In-memory registry of generated artifacts awaiting download.

    Safe to use from concurrent batch runs; every mutation happens under a lock.
    """

    def __init__(
        self,
        retention_s: float = DEFAULT_RETENTION_S,
        clock: Callable[[], float] = time.time,
        scheduler: Scheduler | None = None,
    ) -> None:
        self._retention_s = retention_s
        self._clock = clock
        self._scheduler = scheduler or RuntimeScheduler()
        self._entries: dict[str, ArtifactRegistration] = {}
        self._timers: dict[str, TimerHandle] = {}
        self._lock = threading.Lock()

    @property
    def retention_s(self) -> float:
        return self._retention_s

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, run_id: object) -> bool:
        with self._lock:
            return run_id in self._entries

    def register(
        self,
        run_id: str,
        path: Path,
        document_count: int,
        ledger_path: Path | None = None,
    ) -> ArtifactRegistration:
        """Register a workbook, and optionally its signal ledger, and schedule eviction."""
        registration = ArtifactRegistration(
            run_id=run_id,
            path=path,
            created_at=self._clock(),
            document_count=document_count,
            ledger_path=ledger_path,
        )
        with self._lock:
            if run_id in self._entries:
                raise ValueError(f"Run {run_id} is already registered")
            self._entries[run_id] = registration
            self._timers[run_id] = self._scheduler.call_later(
                self._retention_s, lambda: self.evict(run_id)
            )
        logger.info("Registered artifact for run %s (%d documents)", run_id, document_count)
        return registration

    def get(self, run_id: str) -> ArtifactRegistration | None:
        """Return the live registration for a run, if any."""
        with self._lock:
            registration = self._entries.get(run_id)
        if registration is None:
            return None
        if self._expired(registration):
            self.evict(run_id)
            return None
        return registration

    def resolve(self, run_id: str) -> Path | None:
        """Return the workbook path for a run, or None when unknown, expired or lost."""
        registration = self.get(run_id)
        if registration is None:
            return None
        if not registration.path.exists():
            logger.warning("Artifact file for run %s is missing; evicting", run_id)
            self.evict(run_id)
            return None
        return registration.path

    def evict(self, run_id: str) -> bool:
        """Drop a registration and delete its files. Returns False when nothing was registered."""
        with self._lock:
            registration = self._entries.pop(run_id, None)
            timer = self._timers.pop(run_id, None)
        if timer is not None:
            timer.cancel()
        if registration is None:
            return False

        self._delete(registration.path, run_id)
        if registration.ledger_path is not None:
            self._delete(registration.ledger_path, run_id)
        logger.info("Evicted artifact for run %s", run_id)
        return True

    def _delete(self, path: Path, run_id: str) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.ARTIFACT_EVICTION_FAILED,
                message=str(exc),
                suppressed=True,
                run_id=run_id,
                details={"path": str(path)},
            )

    def sweep(self) -> list[str]:
        """Evict every registration past its retention interval."""
        with self._lock:
            expired = [
                run_id for run_id, registration in self._entries.items()
                if self._expired(registration)
            ]
        for run_id in expired:
            self.evict(run_id)
        return expired

    def close(self) -> None:
        """Cancel pending timers and evict everything still registered."""
        with self._lock:
            run_ids = list(self._entries)
        for run_id in run_ids:
            self.evict(run_id)

    def _expired(self, registration: ArtifactRegistration) -> bool:
        return self._clock() - registration.created_at >= self._retention_s
