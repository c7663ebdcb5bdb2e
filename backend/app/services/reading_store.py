"""Active consumption ledger: append, filtered listing, per-meter totals."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import and_, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from core.errors import NotFound, ValidationError
from models import Meter, MeterKind, Reading, ReadingKind

logger = logging.getLogger("meterledger.readings")

_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")


def _naive_utc(value: datetime | None) -> datetime | None:
    """Timestamp columns hold naive UTC; aware bounds are converted to match."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@dataclass
class DateRange:
    """Half-open interval [start, end); either bound may be open."""
    start: datetime | None = None
    end: datetime | None = None

    def __post_init__(self) -> None:
        self.start = _naive_utc(self.start)
        self.end = _naive_utc(self.end)

    @classmethod
    def for_month(cls, month: str) -> "DateRange":
        m = _MONTH_RE.match((month or "").strip())
        if not m or not 1 <= int(m.group(2)) <= 12:
            raise ValidationError(f"Invalid month {month!r}, expected YYYY-MM")
        year, mon = int(m.group(1)), int(m.group(2))
        start = datetime(year, mon, 1)
        end = datetime(year + 1, 1, 1) if mon == 12 else datetime(year, mon + 1, 1)
        return cls(start, end)

    def conditions(self, column) -> list:
        conds = []
        if self.start is not None:
            conds.append(column >= self.start)
        if self.end is not None:
            conds.append(column < self.end)
        return conds


@dataclass
class MeterTotal:
    meter_id: int
    meter_name: str
    kind: ReadingKind
    total: float
    readings: int


def clamp_limit(limit: int | None) -> int:
    if limit is None:
        return settings.READINGS_LIMIT_DEFAULT
    return max(1, min(int(limit), settings.READINGS_LIMIT_MAX))


class ReadingStore:

    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(
        self,
        meter_id: int,
        kind: ReadingKind,
        value: float,
        *,
        volume_liters: float | None = None,
        flow_lph: float | None = None,
    ) -> Reading:
        """Add one row to the active ledger. Caller commits."""
        meter = await self.session.get(Meter, meter_id)
        if meter is None:
            raise NotFound(f"Meter {meter_id} not found")
        reading = Reading(
            meter_id=meter.id,
            meter_name=meter.name,
            kind=kind,
            value=value,
            volume_liters=volume_liters,
            flow_lph=flow_lph,
        )
        self.session.add(reading)
        await self.session.flush()
        logger.debug("Reading %d: meter=%d kind=%s value=%s", reading.id, meter.id, kind.value, value)
        return reading

    async def list_readings(
        self,
        kind: ReadingKind | None = None,
        meter_id: int | None = None,
        date_range: DateRange | None = None,
        limit: int | None = None,
    ) -> list[Reading]:
        """Most recent first; limit clamped to READINGS_LIMIT_MAX."""
        conditions = []
        if kind is not None:
            conditions.append(Reading.kind == kind)
        if meter_id is not None:
            conditions.append(Reading.meter_id == meter_id)
        if date_range is not None:
            conditions.extend(date_range.conditions(Reading.created_at))

        stmt = select(Reading)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        stmt = stmt.order_by(desc(Reading.created_at), desc(Reading.id)).limit(clamp_limit(limit))
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def sum_by_meter(self, date_range: DateRange | None = None) -> list[MeterTotal]:
        """Σ value per meter; three-phase parents are left out."""
        total = func.coalesce(func.sum(Reading.value), 0.0)
        stmt = (
            select(Reading.meter_id, Meter.name, Reading.kind, total, func.count(Reading.id))
            .join(Meter, Meter.id == Reading.meter_id)
            .where(Meter.kind != MeterKind.ENERGY_3PH)
        )
        if date_range is not None:
            conds = date_range.conditions(Reading.created_at)
            if conds:
                stmt = stmt.where(and_(*conds))
        stmt = stmt.group_by(Reading.meter_id, Meter.name, Reading.kind).order_by(Reading.meter_id)
        result = await self.session.execute(stmt)
        return [
            MeterTotal(meter_id=row[0], meter_name=row[1], kind=row[2], total=float(row[3]), readings=row[4])
            for row in result.all()
        ]

    async def monthly_summary(self, month: str) -> list[MeterTotal]:
        return await self.sum_by_meter(DateRange.for_month(month))
