"""ResetArchiver: close a billing cycle and undo it.

reset   — move every active reading of a meter into readings_history under a
          cycle tag, in one transaction.
restore — copy archived rows back into the active ledger (original value and
          created_at), optionally purging them from history.

Both run under the per-meter ledger lock and commit or roll back as a unit.
Restore does not deduplicate: restoring the same cycle twice without purge
doubles the rows.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import and_, delete, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from core.errors import NotFound, ValidationError
from models import Meter, Reading, ReadingHistory
from services.locks import ledger_locks
from services.reading_store import clamp_limit

logger = logging.getLogger("meterledger.archiver")


@dataclass
class CycleSummary:
    meter_id: int
    meter_name: str
    cycle_tag: str
    readings: int
    total: float
    backup_at: datetime


def _utcnow() -> datetime:
    # columns are TIMESTAMP WITHOUT TIME ZONE
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _lock_key(meter_id: int) -> str:
    return f"ledger:{meter_id}"


class ResetArchiver:

    def __init__(self, session: AsyncSession):
        self.session = session

    async def reset(self, meter_id: int, cycle_tag: str | None = None) -> int:
        """Archive all active readings of meter_id. Returns the number moved."""
        tag = (cycle_tag or "").strip() or settings.DEFAULT_CYCLE_TAG

        async with ledger_locks.hold(_lock_key(meter_id)):
            try:
                if await self.session.get(Meter, meter_id) is None:
                    raise NotFound(f"Meter {meter_id} not found")

                stmt = (
                    select(Reading)
                    .where(Reading.meter_id == meter_id)
                    .order_by(Reading.id)
                    .with_for_update()
                )
                rows = list((await self.session.execute(stmt)).scalars().all())
                backup_at = _utcnow()
                self.session.add_all([
                    ReadingHistory(
                        original_reading_id=r.id,
                        meter_id=r.meter_id,
                        meter_name=r.meter_name,
                        kind=r.kind,
                        value=r.value,
                        volume_liters=r.volume_liters,
                        flow_lph=r.flow_lph,
                        created_at=r.created_at,
                        cycle_tag=tag,
                        backup_at=backup_at,
                    )
                    for r in rows
                ])
                if rows:
                    await self.session.execute(
                        delete(Reading).where(Reading.id.in_([r.id for r in rows]))
                    )
                await self.session.commit()
            except Exception:
                await self.session.rollback()
                raise

        logger.info("Reset meter %d: %d readings archived as %r", meter_id, len(rows), tag)
        return len(rows)

    async def restore(
        self,
        *,
        backup_ids: list[int] | None = None,
        meter_id: int | None = None,
        cycle_tag: str | None = None,
        purge: bool = False,
    ) -> dict[str, int]:
        """Put archived rows back into the active ledger.

        Selector: explicit history ids, or a whole (meter_id, cycle_tag) cycle.
        Returns {"restored": n, "removed": m}.
        """
        if backup_ids:
            selector = ReadingHistory.id.in_(backup_ids)
            found = await self.session.execute(
                select(ReadingHistory.meter_id).where(selector).distinct()
            )
            meter_ids = list(found.scalars().all())
        elif meter_id is not None and cycle_tag:
            selector = and_(ReadingHistory.meter_id == meter_id, ReadingHistory.cycle_tag == cycle_tag)
            meter_ids = [meter_id]
        else:
            raise ValidationError("Provide backup_ids, or meter_id and cycle_tag")

        if not meter_ids:
            await self.session.rollback()
            raise NotFound("No archived readings match the selection")

        async with ledger_locks.hold_many(_lock_key(m) for m in meter_ids):
            try:
                stmt = (
                    select(ReadingHistory)
                    .where(selector)
                    .order_by(ReadingHistory.created_at, ReadingHistory.id)
                    .with_for_update()
                )
                rows = list((await self.session.execute(stmt)).scalars().all())
                if not rows:
                    raise NotFound("No archived readings match the selection")

                self.session.add_all([
                    Reading(
                        meter_id=h.meter_id,
                        meter_name=h.meter_name,
                        kind=h.kind,
                        value=h.value,
                        volume_liters=h.volume_liters,
                        flow_lph=h.flow_lph,
                        created_at=h.created_at,
                    )
                    for h in rows
                ])
                removed = 0
                if purge:
                    result = await self.session.execute(
                        delete(ReadingHistory).where(ReadingHistory.id.in_([h.id for h in rows]))
                    )
                    removed = result.rowcount
                await self.session.commit()
            except Exception:
                await self.session.rollback()
                raise

        logger.info(
            "Restore: %d readings back in ledger, %d purged from history (meters %s)",
            len(rows), removed, meter_ids,
        )
        return {"restored": len(rows), "removed": removed}

    async def list_history(
        self,
        meter_id: int | None = None,
        cycle_tag: str | None = None,
        limit: int | None = None,
    ) -> list[ReadingHistory]:
        stmt = select(ReadingHistory)
        if meter_id is not None:
            stmt = stmt.where(ReadingHistory.meter_id == meter_id)
        if cycle_tag:
            stmt = stmt.where(ReadingHistory.cycle_tag == cycle_tag)
        stmt = stmt.order_by(desc(ReadingHistory.backup_at), desc(ReadingHistory.id)).limit(clamp_limit(limit))
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_cycles(self, meter_id: int | None = None) -> list[CycleSummary]:
        stmt = select(
            ReadingHistory.meter_id,
            func.max(ReadingHistory.meter_name),
            ReadingHistory.cycle_tag,
            func.count(ReadingHistory.id),
            func.coalesce(func.sum(ReadingHistory.value), 0.0),
            func.max(ReadingHistory.backup_at),
        )
        if meter_id is not None:
            stmt = stmt.where(ReadingHistory.meter_id == meter_id)
        stmt = stmt.group_by(ReadingHistory.meter_id, ReadingHistory.cycle_tag).order_by(
            desc(func.max(ReadingHistory.backup_at))
        )
        result = await self.session.execute(stmt)
        return [
            CycleSummary(
                meter_id=row[0], meter_name=row[1], cycle_tag=row[2],
                readings=row[3], total=float(row[4]), backup_at=row[5],
            )
            for row in result.all()
        ]
