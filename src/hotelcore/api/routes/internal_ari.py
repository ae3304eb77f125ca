"""Operator routes for the ARI error dashboard."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from hotelcore.api.task_auth import require_task_auth
from hotelcore.channel import operator

router = APIRouter(prefix="/internal/ari", tags=["internal"], dependencies=[Depends(require_task_auth)])


class RedriveRequest(BaseModel):
    property_id: str = Field(min_length=1)
    event_ids: list[int] = Field(min_length=1, max_length=1000)


@router.get("/failed")
def failed_events(
    property_id: str = Query(..., min_length=1),
    limit: int = Query(100, ge=1, le=500),
) -> dict:
    events = operator.list_failed_events(property_id, limit=limit)
    return {"property_id": property_id, "events": jsonable_encoder(events)}


@router.post("/redrive")
def redrive(body: RedriveRequest) -> dict:
    moved = operator.redrive(body.property_id, body.event_ids)
    return {"ok": True, "requested": len(body.event_ids), "redriven": moved}


@router.get("/status")
def status(property_id: str = Query(..., min_length=1)) -> dict:
    return jsonable_encoder(operator.channel_status(property_id))
