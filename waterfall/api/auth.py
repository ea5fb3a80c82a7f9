"""Optional bearer-token guard for the analysis endpoints.

Set WATERFALL_API_TOKEN to require ``Authorization: Bearer <token>`` on every
/api/v1 request. Leave it unset to run without authentication (local use).
/health is never guarded.
"""

from __future__ import annotations

import os
import secrets

from fastapi import Header, HTTPException

API_TOKEN_ENV = "WATERFALL_API_TOKEN"


def configured_token() -> str:
    # Read per request so a token can be rotated or set in tests without a restart.
    return os.getenv(API_TOKEN_ENV, "").strip()


def bearer_credentials(authorization: str) -> str:
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return credentials.strip()


async def require_api_auth(authorization: str = Header(default="")) -> str:
    """Reject the request with 401 unless it carries the configured token."""
    expected = configured_token()
    if not expected:
        return ""
    presented = bearer_credentials(authorization)
    if not presented or not secrets.compare_digest(presented, expected):
        raise HTTPException(
            status_code=401,
            detail="Invalid or missing API token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return presented
