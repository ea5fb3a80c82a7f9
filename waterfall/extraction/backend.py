"""Document analysis backend — Vertex AI Gemini reading a document against an instruction.

The backend provides reading, not judgement. It receives raw document bytes and a
natural-language instruction and returns the model's text reply. It never coerces
values and never touches the batch state.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from waterfall.config.settings import VertexConfig
from waterfall.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"


class DocumentExtractionError(Exception):
    """Raised when the backend cannot produce a reply for a document."""


class DocumentAnalysisBackend(Protocol):
    async def analyze(
        self,
        document: bytes,
        mime_type: str,
        instruction: str,
        response_schema: dict[str, Any] | None = None,
    ) -> str: ...


class VertexDocumentBackend:
    """Backend client for Vertex AI Gemini.

    Stateless per call; initialization happens once and lazily.
    """

    def __init__(self, config: VertexConfig) -> None:
        self._config = config
        self._client: Any = None
        self._initialized = False

    async def initialize(self) -> bool:
        """Initialize the Vertex AI client.

        Returns True if initialization succeeds, False otherwise.
        """
        if self._initialized:
            return True
        if not self._config.project_id:
            return False

        try:
            import vertexai
            from vertexai.generative_models import GenerativeModel

            vertexai.init(
                project=self._config.project_id,
                location=self._config.location,
                credentials=self._load_credentials(),
            )
            self._client = GenerativeModel(self._config.model)
            self._initialized = True
            return True
        except Exception as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.BACKEND_INITIALIZATION_FAILED,
                message=str(exc),
                suppressed=True,
            )
            self._initialized = False
            return False

    def _load_credentials(self) -> Any:
        """Service-account credentials from ``credentials_path``.

        None lets Vertex fall back to application default credentials.
        """
        if not self._config.credentials_path:
            return None
        from google.oauth2 import service_account

        return service_account.Credentials.from_service_account_file(
            self._config.credentials_path, scopes=[CLOUD_PLATFORM_SCOPE]
        )

    @property
    def is_available(self) -> bool:
        return self._initialized and self._client is not None

    async def analyze(
        self,
        document: bytes,
        mime_type: str,
        instruction: str,
        response_schema: dict[str, Any] | None = None,
    ) -> str:
        """Send the document and instruction to Gemini, return the reply text."""
        if not self.is_available and not await self.initialize():
            raise DocumentExtractionError("Document analysis backend is not configured")

        from vertexai.generative_models import GenerationConfig, Part

        generation_config = GenerationConfig(
            max_output_tokens=self._config.max_output_tokens,
            response_mime_type="application/json",
            response_schema=response_schema,
        )

        try:
            response = await self._client.generate_content_async(
                [Part.from_data(data=document, mime_type=mime_type), instruction],
                generation_config=generation_config,
            )
            text = response.text
        except Exception as exc:
            raise DocumentExtractionError(f"Backend request failed: {exc}") from exc

        if not text:
            raise DocumentExtractionError("Backend returned an empty reply")
        return text
