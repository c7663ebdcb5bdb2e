"""Consumption ledger API: listing, monthly totals, archived cycles, restore.

GET  /api/readings               → active ledger, newest first
GET  /api/readings/summary       → Σ value per meter (from/to or month=YYYY-MM)
GET  /api/readings/history       → archived rows            (admin)
GET  /api/readings/cycles        → archived cycles per meter (admin)
POST /api/readings/restore       → history → active ledger   (admin)
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from core.security import require_admin
from models import ReadingKind, get_session
from services.reading_store import DateRange, ReadingStore
from services.reset_archiver import ResetArchiver

router = APIRouter(prefix="/api/readings", tags=["readings"])


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class ReadingOut(BaseModel):
    id: int
    meter_id: int
    meter_name: str
    kind: ReadingKind
    value: float
    volume_liters: float | None = None
    flow_lph: float | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class HistoryOut(ReadingOut):
    original_reading_id: int
    cycle_tag: str
    backup_at: datetime


class MeterTotalOut(BaseModel):
    meter_id: int
    meter_name: str
    kind: ReadingKind
    total: float
    readings: int

    model_config = {"from_attributes": True}


class SummaryOut(BaseModel):
    start: datetime | None
    end: datetime | None
    meters: list[MeterTotalOut]


class CycleOut(BaseModel):
    meter_id: int
    meter_name: str
    cycle_tag: str
    readings: int
    total: float
    backup_at: datetime

    model_config = {"from_attributes": True}


class RestoreIn(BaseModel):
    backup_ids: list[int] | None = None
    meter_id: int | None = None
    cycle_tag: str | None = None
    purge: bool = False


class RestoreOut(BaseModel):
    success: bool
    restored: int
    removed: int


# ---------------------------------------------------------------------------
# Active ledger
# ---------------------------------------------------------------------------

@router.get("", response_model=list[ReadingOut])
async def list_readings(
    kind: Optional[ReadingKind] = Query(None),
    meter_id: Optional[int] = Query(None),
    start: Optional[datetime] = Query(None, alias="from", description="Inclusive (ISO 8601)"),
    end: Optional[datetime] = Query(None, alias="to", description="Exclusive (ISO 8601)"),
    limit: Optional[int] = Query(None, description="Clamped to READINGS_LIMIT_MAX"),
    session: AsyncSession = Depends(get_session),
):
    return await ReadingStore(session).list_readings(
        kind=kind, meter_id=meter_id, date_range=DateRange(start, end), limit=limit,
    )


@router.get("/summary", response_model=SummaryOut)
async def readings_summary(
    start: Optional[datetime] = Query(None, alias="from"),
    end: Optional[datetime] = Query(None, alias="to"),
    month: Optional[str] = Query(None, description="YYYY-MM, overrides from/to"),
    session: AsyncSession = Depends(get_session),
):
    date_range = DateRange.for_month(month) if month else DateRange(start, end)
    totals = await ReadingStore(session).sum_by_meter(date_range)
    return SummaryOut(
        start=date_range.start,
        end=date_range.end,
        meters=[MeterTotalOut.model_validate(t) for t in totals],
    )


# ---------------------------------------------------------------------------
# Archive (admin)
# ---------------------------------------------------------------------------

@router.get("/history", response_model=list[HistoryOut], dependencies=[Depends(require_admin)])
async def list_history(
    meter_id: Optional[int] = Query(None),
    cycle_tag: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    session: AsyncSession = Depends(get_session),
):
    return await ResetArchiver(session).list_history(meter_id, cycle_tag, limit)


@router.get("/cycles", response_model=list[CycleOut], dependencies=[Depends(require_admin)])
async def list_cycles(
    meter_id: Optional[int] = Query(None),
    session: AsyncSession = Depends(get_session),
):
    return [CycleOut.model_validate(c) for c in await ResetArchiver(session).list_cycles(meter_id)]


@router.post("/restore", response_model=RestoreOut, dependencies=[Depends(require_admin)])
async def restore_readings(data: RestoreIn, session: AsyncSession = Depends(get_session)):
    counts = await ResetArchiver(session).restore(
        backup_ids=data.backup_ids,
        meter_id=data.meter_id,
        cycle_tag=data.cycle_tag,
        purge=data.purge,
    )
    return RestoreOut(success=True, **counts)
