"""Service state endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request

router = APIRouter(tags=["services"])


@router.get("/services")
async def list_services(request: Request) -> list[dict[str, Any]]:
    ctx = request.app.state.docstack
    observations = await ctx.observer.observe_all(ctx.config.descriptors)
    return [obs.to_dict() for obs in observations]


@router.get("/services/{name}")
async def service_state(request: Request, name: str) -> dict[str, Any]:
    ctx = request.app.state.docstack
    descriptor = ctx.config.services.get(name)
    if descriptor is None:
        raise HTTPException(status_code=404, detail=f"Unknown service: {name}")
    observation = await ctx.observer.observe(descriptor)
    return observation.to_dict()
