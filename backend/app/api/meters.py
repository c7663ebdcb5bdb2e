"""Admin API: meters, phase mapping, billing-cycle reset."""
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from core.security import require_admin
from models import MeterKind, Phase, get_session
from services.meter_registry import MeterRegistry
from services.phase_map import PhaseMapRegistry
from services.reset_archiver import ResetArchiver

router = APIRouter(prefix="/api/meters", tags=["meters"], dependencies=[Depends(require_admin)])


# --- Schemas ---

class MeterCreate(BaseModel):
    name: str
    kind: MeterKind
    description: str | None = None


class MeterOut(BaseModel):
    id: int
    name: str
    kind: MeterKind
    token: str
    description: str | None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class PhaseMapEntryIn(BaseModel):
    phase: str
    child_meter_id: int
    label: str | None = None


class PhaseMapIn(BaseModel):
    map: list[PhaseMapEntryIn] = []


class PhaseMapEntryOut(BaseModel):
    phase: Phase
    child_meter_id: int
    child_name: str
    label: str | None

    model_config = {"from_attributes": True}


class PhaseMapOut(BaseModel):
    parent_id: int
    map: list[PhaseMapEntryOut]


class AutoProvisionOut(BaseModel):
    success: bool
    parent_id: int
    children: list[MeterOut]
    map: list[PhaseMapEntryOut]


class ResetIn(BaseModel):
    cycle_tag: str | None = None


class ResetOut(BaseModel):
    success: bool
    meter_id: int
    cycle_tag: str
    archived: int


# --- Meters ---

@router.get("", response_model=list[MeterOut])
async def list_meters(
    kind: MeterKind | None = Query(None),
    session: AsyncSession = Depends(get_session),
):
    return await MeterRegistry(session).list_meters(kind)


@router.get("/{meter_id}", response_model=MeterOut)
async def get_meter(meter_id: int, session: AsyncSession = Depends(get_session)):
    return await MeterRegistry(session).get(meter_id)


@router.post("", response_model=MeterOut, status_code=201)
async def create_meter(data: MeterCreate, session: AsyncSession = Depends(get_session)):
    meter = await MeterRegistry(session).create(data.name, data.kind, data.description)
    await session.commit()
    await session.refresh(meter)
    return meter


# --- Phase mapping ---

@router.post("/{meter_id}/phase-map/auto", response_model=AutoProvisionOut, status_code=201)
async def auto_provision_phases(meter_id: int, session: AsyncSession = Depends(get_session)):
    registry = PhaseMapRegistry(session)
    children = await registry.auto_provision(meter_id)
    await session.commit()
    for child in children:
        await session.refresh(child)
    return AutoProvisionOut(
        success=True,
        parent_id=meter_id,
        children=[MeterOut.model_validate(c) for c in children],
        map=[PhaseMapEntryOut.model_validate(e) for e in await registry.get_mapping(meter_id)],
    )


@router.get("/{meter_id}/phase-map", response_model=PhaseMapOut)
async def get_phase_map(meter_id: int, session: AsyncSession = Depends(get_session)):
    entries = await PhaseMapRegistry(session).get_mapping(meter_id)
    return PhaseMapOut(parent_id=meter_id, map=[PhaseMapEntryOut.model_validate(e) for e in entries])


@router.put("/{meter_id}/phase-map", response_model=PhaseMapOut)
async def set_phase_map(meter_id: int, data: PhaseMapIn, session: AsyncSession = Depends(get_session)):
    entries = await PhaseMapRegistry(session).set_mapping(
        meter_id, [e.model_dump() for e in data.map],
    )
    await session.commit()
    return PhaseMapOut(parent_id=meter_id, map=[PhaseMapEntryOut.model_validate(e) for e in entries])


# --- Billing cycle ---

@router.post("/{meter_id}/reset", response_model=ResetOut)
async def reset_meter(
    meter_id: int,
    data: ResetIn | None = None,
    session: AsyncSession = Depends(get_session),
):
    tag = ((data.cycle_tag if data else None) or "").strip() or settings.DEFAULT_CYCLE_TAG
    archived = await ResetArchiver(session).reset(meter_id, tag)
    return ResetOut(success=True, meter_id=meter_id, cycle_tag=tag, archived=archived)
