"""Alert audit log and test dispatch endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request

from docstack_ops.alerts.models import AlertEvent, AlertSeverity
from docstack_ops.api.auth import require_api_key

router = APIRouter(tags=["alerts"])


@router.get("/alerts")
async def recent_alerts(
    request: Request,
    limit: int = Query(20, ge=1, le=500),
    severity: AlertSeverity | None = None,
) -> list[dict[str, Any]]:
    ctx = request.app.state.docstack
    return ctx.audit_log.recent(limit=limit, severity=severity.value if severity else None)


@router.post("/alerts/test", dependencies=[Depends(require_api_key)])
async def send_test_alert(request: Request) -> dict[str, Any]:
    ctx = request.app.state.docstack
    event = AlertEvent(
        title=f"{ctx.config.stack.name}: test alert",
        body="Test notification sent from the status API.",
        severity=AlertSeverity.TEST,
        **({"host": ctx.config.alerting.host_name} if ctx.config.alerting.host_name else {}),
    )
    report = await ctx.dispatcher.dispatch(event)
    return {"event": event.to_dict(), "deliveries": report.deliveries}
