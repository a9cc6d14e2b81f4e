"""Health monitor state endpoint."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request

router = APIRouter(tags=["monitor"])


@router.get("/monitor")
async def monitor_state(request: Request) -> dict[str, Any]:
    ctx = request.app.state.docstack
    tracker = ctx.store.load()
    return {
        "consecutive_failures": tracker.consecutive_failures,
        "last_status": tracker.last_status.value,
        "failure_threshold": ctx.monitor.failure_threshold,
    }
