"""API key authentication dependency for FastAPI."""

from __future__ import annotations

import hmac

from fastapi import HTTPException, Request


async def require_api_key(request: Request) -> None:
    """Check the X-API-Key header on endpoints that act.

    Auth is disabled when no key is configured.
    """
    expected = request.app.state.config.api.api_key
    if not expected:
        return
    key = request.headers.get("X-API-Key", "")
    if not hmac.compare_digest(key, expected):
        raise HTTPException(status_code=401, detail="Invalid or missing API key")
