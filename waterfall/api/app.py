"""FastAPI application entry point for Metric Waterfall."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from waterfall.api.routes import router
from waterfall.artifacts.store import ArtifactStore
from waterfall.config.settings import WaterfallConfig
from waterfall.extraction.backend import VertexDocumentBackend
from waterfall.pipeline.service import AnalysisService

VERSION = "1.0.0"


def create_app(config: WaterfallConfig | None = None) -> FastAPI:
    """Factory function for creating the FastAPI application."""
    config = config or WaterfallConfig()
    logging.basicConfig(level=config.log_level.upper())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        store = ArtifactStore(retention_s=config.storage.retention_s)
        app.state.analysis_service = AnalysisService(
            config, VertexDocumentBackend(config.vertex), store
        )
        try:
            yield
        finally:
            store.close()

    app = FastAPI(
        title="Metric Waterfall",
        description="Batch metric extraction from business documents into a workbook",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.allowed_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/api/v1")

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy", "service": "metric-waterfall", "version": VERSION}

    return app


app = create_app()
