"""Validate multipart documents and spool them to the upload directory."""

from __future__ import annotations

import uuid
from pathlib import Path

from fastapi import HTTPException, UploadFile

from waterfall.config.settings import UploadLimits
from waterfall.pipeline.models import UploadedDocument
from waterfall.pipeline.orchestrator import discard_file

_CHUNK_SIZE = 1024 * 1024


async def _spool(upload: UploadFile, destination: Path, max_bytes: int) -> None:
    written = 0
    with open(destination, "wb") as f:
        while True:
            chunk = await upload.read(_CHUNK_SIZE)
            if not chunk:
                break
            written += len(chunk)
            if written > max_bytes:
                raise HTTPException(
                    status_code=413,
                    detail=f"{upload.filename} exceeds the {max_bytes // (1024 * 1024)}MB limit.",
                )
            f.write(chunk)


async def save_uploads(
    uploads: list[UploadFile], limits: UploadLimits, upload_dir: Path
) -> list[UploadedDocument]:
    """Persist uploads to transient files, rejecting the batch on the first violation.

    Files already written for a rejected batch are removed before raising.
    """
    if len(uploads) > limits.max_files:
        raise HTTPException(
            status_code=400,
            detail=f"Too many files: {len(uploads)} (maximum {limits.max_files}).",
        )

    upload_dir.mkdir(parents=True, exist_ok=True)
    documents: list[UploadedDocument] = []
    try:
        for upload in uploads:
            mime_type = upload.content_type or ""
            if mime_type not in limits.allowed_mime_types:
                raise HTTPException(
                    status_code=400,
                    detail=f"Unsupported file type for {upload.filename}: {mime_type or 'unknown'}.",
                )
            destination = upload_dir / uuid.uuid4().hex
            documents.append(
                UploadedDocument(
                    label=upload.filename or destination.name,
                    path=destination,
                    mime_type=mime_type,
                )
            )
            await _spool(upload, destination, limits.max_file_bytes)
    except Exception:
        for document in documents:
            discard_file(document.path)
        raise
    return documents
