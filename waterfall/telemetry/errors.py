"""Structured error telemetry helpers."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Canonical error codes for operational telemetry."""

    BACKEND_INITIALIZATION_FAILED = "BACKEND_INITIALIZATION_FAILED"
    BACKEND_REQUEST_FAILED = "BACKEND_REQUEST_FAILED"
    EXTRACTION_REPLY_UNPARSABLE = "EXTRACTION_REPLY_UNPARSABLE"
    DOCUMENT_EXTRACTION_FAILED = "DOCUMENT_EXTRACTION_FAILED"
    FILE_CLEANUP_FAILED = "FILE_CLEANUP_FAILED"
    ARTIFACT_WRITE_FAILED = "ARTIFACT_WRITE_FAILED"
    ARTIFACT_EVICTION_FAILED = "ARTIFACT_EVICTION_FAILED"
    SIGNAL_LEDGER_WRITE_FAILED = "SIGNAL_LEDGER_WRITE_FAILED"


def emit_structured_error(
    logger: logging.Logger,
    *,
    code: ErrorCode,
    message: str,
    suppressed: bool,
    run_id: str | None = None,
    document: str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """Emit a structured telemetry event via logging."""
    logger.error(
        "waterfall_error",
        extra={
            "error_code": code,
            "error_message": message,
            "suppressed": suppressed,
            "run_id": run_id,
            "document": document,
            "details": details or {},
        },
    )
