"""Device submission pipeline.

Three-phase: authenticate → (per-parent lock) raw append → DeltaComputer →
commit → publish. Raw persistence and reading emission share one
transaction, so a sample is never logged without its readings.

Single-phase / water: authenticate → append the submitted value as-is → commit.
"""
from __future__ import annotations

import json
import logging

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from core.errors import InvalidState
from models import MeterKind, ReadingKind
from services.delta_computer import DeltaComputer, parse_number
from services.locks import ingest_locks
from services.raw_store import RawPayloadStore
from services.reading_store import ReadingStore
from services.token_auth import TokenAuthenticator

logger = logging.getLogger("meterledger.ingestion")

UPDATES_CHANNEL = "readings:updates"

# never archived with the raw payload
_CREDENTIAL_FIELDS = ("token",)


class IngestionService:

    def __init__(self, session: AsyncSession, redis: Redis | None = None):
        self.session = session
        self.redis = redis

    async def ingest_three_phase(self, token: str | None, payload: dict) -> dict:
        meter = await TokenAuthenticator(self.session).authenticate(token)
        if meter.kind is not MeterKind.ENERGY_3PH:
            raise InvalidState(f"Meter {meter.id} is not a three-phase meter")

        archived = {k: v for k, v in payload.items() if k not in _CREDENTIAL_FIELDS}
        async with ingest_locks.hold(f"ingest:{meter.id}"):
            try:
                sample = await RawPayloadStore(self.session).append(meter.id, archived)
                computer = DeltaComputer(self.session)
                deltas = await computer.process(meter, sample)
                await self.session.commit()
            except Exception:
                await self.session.rollback()
                raise

        logger.info(
            "Ingested sample %d for meter %d: A=%.3f B=%.3f C=%.3f",
            sample.id, meter.id, deltas["A"], deltas["B"], deltas["C"],
        )
        await self._publish({
            "type": "energy3ph",
            "parent_id": meter.id,
            "sample_id": sample.id,
            "deltas": deltas,
            "child_meter_ids": [r.meter_id for r in computer.emitted],
        })
        return {"success": True, "parent_id": meter.id, "deltas": deltas}

    async def ingest_single(self, token: str | None, payload: dict) -> dict:
        meter = await TokenAuthenticator(self.session).authenticate(token)
        if meter.kind.is_parent:
            raise InvalidState(
                f"Meter {meter.id} is three-phase; submit to /api/ingest/energy3ph"
            )

        value = _first_number(payload, "value", "consumo")
        if value < 0:
            logger.warning("Meter %d submitted negative consumption %s", meter.id, value)
        secondary = {}
        if meter.kind is MeterKind.WATER:
            kind = ReadingKind.WATER
            secondary = {
                "volume_liters": parse_number(payload.get("consumo_litros")),
                "flow_lph": parse_number(payload.get("vazao_lh")),
            }
        else:
            kind = ReadingKind.ENERGY

        try:
            reading = await ReadingStore(self.session).append(meter.id, kind, value, **secondary)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        await self._publish({
            "type": "reading",
            "meter_id": meter.id,
            "reading_id": reading.id,
            "kind": kind.value,
            "value": value,
        })
        return {"success": True, "meter_id": meter.id, "reading_id": reading.id, "value": value}

    async def _publish(self, message: dict) -> None:
        """Best effort: a Redis outage never fails a committed ingestion."""
        if self.redis is None or not settings.LIVE_UPDATES_ENABLED:
            return
        try:
            await self.redis.publish(UPDATES_CHANNEL, json.dumps(message))
        except Exception as exc:
            logger.warning("Live update publish failed: %s", exc)


def _first_number(payload: dict, *fields: str) -> float:
    """First parsable field wins; garbled or missing values count as 0."""
    for field in fields:
        val = parse_number(payload.get(field))
        if val is not None:
            return val
    return 0.0
