"""Backup catalog endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request

router = APIRouter(tags=["backups"])


@router.get("/backups")
async def list_backups(request: Request, limit: int = Query(20, ge=1, le=500)) -> list[dict[str, Any]]:
    entries = await request.app.state.docstack.catalog.list_recent(limit=limit)
    return [entry.to_dict() for entry in entries]


@router.get("/backups/{backup_id}")
async def get_backup(request: Request, backup_id: str) -> dict[str, Any]:
    entry = await request.app.state.docstack.catalog.get(backup_id)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"Unknown backup: {backup_id}")
    return {**entry.to_dict(), "manifest": entry.manifest.model_dump(mode="json")}
