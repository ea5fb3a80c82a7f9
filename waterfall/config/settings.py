"""Metric Waterfall configuration settings."""

from __future__ import annotations

import os
from pathlib import Path
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator


def _float_env(var_name: str, default: str) -> float:
    raw = os.getenv(var_name, "").strip()
    return float(raw or default)


class VertexConfig(BaseModel):
    """Vertex AI configuration."""

    project_id: str = Field(default_factory=lambda: os.getenv("VERTEX_PROJECT_ID", ""))
    location: str = Field(default_factory=lambda: os.getenv("VERTEX_LOCATION", "us-central1"))
    credentials_path: str = Field(
        default_factory=lambda: os.getenv("GOOGLE_APPLICATION_CREDENTIALS", "")
    )
    model: str = Field(default_factory=lambda: os.getenv("WATERFALL_MODEL", "gemini-2.5-pro"))
    max_output_tokens: int = 2000


class ExtractionConfig(BaseModel):
    """Pacing and timeout budgets for per-document extraction."""

    inter_call_delay_s: float = Field(
        default_factory=lambda: _float_env("WATERFALL_INTER_CALL_DELAY_S", "1.0")
    )
    document_timeout_s: float = Field(
        default_factory=lambda: _float_env("WATERFALL_DOCUMENT_TIMEOUT_S", "180")
    )

    @field_validator("inter_call_delay_s")
    @classmethod
    def _validate_delay(cls, value: float) -> float:
        if value < 0:
            raise ValueError("WATERFALL_INTER_CALL_DELAY_S must be >= 0")
        return value

    @field_validator("document_timeout_s")
    @classmethod
    def _validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("WATERFALL_DOCUMENT_TIMEOUT_S must be > 0")
        return value


class StorageConfig(BaseModel):
    """Where uploads land and how long generated workbooks live."""

    upload_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("WATERFALL_UPLOAD_DIR", "./uploads"))
    )
    output_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("WATERFALL_OUTPUT_DIR", "./outputs"))
    )
    retention_s: float = Field(
        default_factory=lambda: _float_env("WATERFALL_ARTIFACT_RETENTION_S", "3600")
    )

    @field_validator("retention_s")
    @classmethod
    def _validate_retention(cls, value: float) -> float:
        if value < 1:
            raise ValueError("WATERFALL_ARTIFACT_RETENTION_S must be >= 1")
        return value


class UploadLimits(BaseModel):
    """Limits applied to a single batch upload."""

    max_files: int = 20
    max_file_bytes: int = 32 * 1024 * 1024
    allowed_mime_types: list[str] = Field(default_factory=lambda: ["application/pdf"])


class APIConfig(BaseModel):
    """API/security controls from environment."""

    allowed_origins: list[str] = Field(
        default_factory=lambda: APIConfig.parse_allowed_origins(
            os.getenv("WATERFALL_ALLOWED_ORIGINS", "")
        )
    )

    @staticmethod
    def parse_allowed_origins(value: str) -> list[str]:
        if not value.strip():
            return ["http://localhost", "http://127.0.0.1"]
        origins = [origin.strip() for origin in value.split(",") if origin.strip()]
        if "*" in origins:
            raise ValueError("WATERFALL_ALLOWED_ORIGINS cannot include '*'")
        return origins

    @field_validator("allowed_origins")
    @classmethod
    def _validate_allowed_origins(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("allowed_origins cannot be empty")
        for origin in value:
            parsed = urlparse(origin)
            if parsed.scheme not in {"http", "https"} or not parsed.netloc:
                raise ValueError(f"Invalid CORS origin: {origin}")
        return value


class WaterfallConfig(BaseModel):
    """Root configuration for the service."""

    vertex: VertexConfig = Field(default_factory=VertexConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    uploads: UploadLimits = Field(default_factory=UploadLimits)
    api: APIConfig = Field(default_factory=APIConfig)
    log_level: str = Field(default_factory=lambda: os.getenv("WATERFALL_LOG_LEVEL", "INFO"))
