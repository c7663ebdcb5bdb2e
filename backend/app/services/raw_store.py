"""Append-only buffer of raw three-phase telemetry."""
from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import NotFound
from models import Meter, RawTelemetrySample

logger = logging.getLogger("meterledger.raw_store")


class RawPayloadStore:

    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(self, parent_meter_id: int, payload: dict) -> RawTelemetrySample:
        if await self.session.get(Meter, parent_meter_id) is None:
            raise NotFound(f"Meter {parent_meter_id} not found")
        sample = RawTelemetrySample(parent_meter_id=parent_meter_id, raw_payload=dict(payload))
        self.session.add(sample)
        await self.session.flush()
        return sample

    async def last_samples(self, parent_meter_id: int, n: int = 2) -> list[RawTelemetrySample]:
        """Return the n most recent samples, most recent first."""
        stmt = (
            select(RawTelemetrySample)
            .where(RawTelemetrySample.parent_meter_id == parent_meter_id)
            .order_by(RawTelemetrySample.received_at.desc(), RawTelemetrySample.id.desc())
            .limit(n)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def prune_batch(self, older_than: datetime, keep_per_meter: int, batch_size: int) -> int:
        """Delete up to batch_size samples received before older_than.

        The newest keep_per_meter samples of every parent survive regardless
        of age. Returns the number of rows deleted; caller commits.
        """
        ranked = select(
            RawTelemetrySample.id,
            RawTelemetrySample.received_at,
            func.row_number().over(
                partition_by=RawTelemetrySample.parent_meter_id,
                order_by=(RawTelemetrySample.received_at.desc(), RawTelemetrySample.id.desc()),
            ).label("rn"),
        ).subquery()
        candidates = (
            select(ranked.c.id)
            .where(ranked.c.rn > keep_per_meter, ranked.c.received_at < older_than)
            .limit(batch_size)
        )
        ids = list((await self.session.execute(candidates)).scalars().all())
        if not ids:
            return 0
        await self.session.execute(
            delete(RawTelemetrySample).where(RawTelemetrySample.id.in_(ids))
        )
        logger.debug("Pruned %d raw samples older than %s", len(ids), older_than)
        return len(ids)
