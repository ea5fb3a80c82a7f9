"""Signal type definitions for batch progress reporting."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class SignalType(str, Enum):
    """All signal types emitted during a batch run."""

    BATCH_STARTED = "BATCH_STARTED"
    DOCUMENT_STARTED = "DOCUMENT_STARTED"
    DOCUMENT_EXTRACTED = "DOCUMENT_EXTRACTED"
    DOCUMENT_FAILED = "DOCUMENT_FAILED"
    ARTIFACT_BUILT = "ARTIFACT_BUILT"
    BATCH_COMPLETE = "BATCH_COMPLETE"
    BATCH_FAILED = "BATCH_FAILED"


class Signal(BaseModel):
    """An immutable progress event emitted during a batch run."""

    sequence: int = Field(description="Monotonic sequence number within the run")
    signal_type: SignalType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    run_id: str
    payload: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}
