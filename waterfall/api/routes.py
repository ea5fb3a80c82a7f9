"""REST API routes for Metric Waterfall.

Provides endpoints for:
- Submitting a batch of documents with a metric specification
- Downloading the generated workbook while it is retained
- Reading back the progress signals of a retained run
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse
from pydantic import BaseModel

from waterfall.api.auth import require_api_auth
from waterfall.api.uploads import save_uploads
from waterfall.artifacts.builder import ArtifactError, artifact_filename
from waterfall.pipeline.service import AnalysisService, BatchInputError

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

router = APIRouter()


def get_analysis_service(request: Request) -> AnalysisService:
    return request.app.state.analysis_service


# --- Response Models ---


class AnalysisResponse(BaseModel):
    """Response after a batch has been processed."""

    success: bool = True
    run_id: str
    documents_processed: int
    download_url: str


# --- Endpoints ---


@router.post("/analyses", response_model=AnalysisResponse)
async def create_analysis(
    request: Request,
    documents: list[UploadFile] | None = File(default=None),
    metrics: str = Form(default=""),
    service: AnalysisService = Depends(get_analysis_service),
    _: str = Depends(require_api_auth),
) -> AnalysisResponse:
    """Extract the requested metrics from every uploaded document.

    Runs the whole batch before responding. Documents that fail extraction
    show up as flagged rows in the workbook rather than failing the request.
    """
    config = request.app.state.config
    if not documents:
        raise HTTPException(status_code=400, detail="No files uploaded")
    if not metrics.strip():
        raise HTTPException(status_code=400, detail="No metrics defined")

    saved = await save_uploads(documents, config.uploads, config.storage.upload_dir)

    try:
        result = await service.run_batch_extraction(saved, metrics)
    except BatchInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ArtifactError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    return AnalysisResponse(
        run_id=result.run_id,
        documents_processed=result.documents_processed,
        download_url=result.download_reference,
    )


@router.get("/analyses/{run_id}/download")
async def download_analysis(
    run_id: str,
    service: AnalysisService = Depends(get_analysis_service),
    _: str = Depends(require_api_auth),
) -> FileResponse:
    """Download the workbook for a run while it is still retained."""
    path = service.download_artifact(run_id)
    if path is None:
        raise HTTPException(status_code=404, detail="Analysis not found or expired")

    return FileResponse(path, media_type=XLSX_MEDIA_TYPE, filename=artifact_filename(run_id))


@router.get("/analyses/{run_id}/signals")
async def list_analysis_signals(
    run_id: str,
    after: int = 0,
    service: AnalysisService = Depends(get_analysis_service),
    _: str = Depends(require_api_auth),
) -> list[dict]:
    """Progress signals recorded for a retained run, optionally after a sequence number."""
    signals = service.run_signals(run_id, after=after)
    if signals is None:
        raise HTTPException(status_code=404, detail="Analysis not found or expired")

    return [signal.model_dump(mode="json") for signal in signals]
