"""Device ingestion endpoints.

POST /api/ingest/energy3ph   — three-phase cumulative counters (pa.., epa_c.., epa_g..)
POST /api/ingest/reading     — water / single-phase energy {value | consumo}

Bodies may be JSON or form-encoded; field names are fixed by device firmware.
The token may come in the body, the X-Device-Token header or ?token=.
"""
from __future__ import annotations

import json

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import ValidationError
from models import get_session
from services.ingestion import IngestionService

router = APIRouter(prefix="/api/ingest", tags=["ingest"])


async def read_device_payload(request: Request) -> dict:
    content_type = request.headers.get("content-type", "")
    if "form" in content_type:
        form = await request.form()
        return {k: v for k, v in form.items() if isinstance(v, str)}

    body = await request.body()
    if not body.strip():
        return {}
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        if "json" in content_type:
            raise ValidationError("Malformed JSON body")
        return {}
    if not isinstance(data, dict):
        raise ValidationError("JSON body must be an object")
    return data


def device_token(request: Request, payload: dict) -> str | None:
    token = payload.get("token")
    if token is None:
        token = request.headers.get("x-device-token") or request.query_params.get("token")
    return None if token is None else str(token)


def _ingestion(request: Request, session: AsyncSession) -> IngestionService:
    return IngestionService(session, getattr(request.app.state, "redis", None))


@router.post("/energy3ph")
async def ingest_energy3ph(request: Request, session: AsyncSession = Depends(get_session)):
    payload = await read_device_payload(request)
    return await _ingestion(request, session).ingest_three_phase(device_token(request, payload), payload)


@router.post("/reading")
async def ingest_reading(request: Request, session: AsyncSession = Depends(get_session)):
    payload = await read_device_payload(request)
    return await _ingestion(request, session).ingest_single(device_token(request, payload), payload)
