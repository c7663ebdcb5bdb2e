"""Meter registry: creation with token issuance, lookup, listing."""
import logging
import secrets

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import NotFound, ValidationError
from models import Meter, MeterKind

logger = logging.getLogger("meterledger.meters")


def issue_token() -> str:
    return secrets.token_hex(16)


class MeterRegistry:

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        name: str,
        kind: MeterKind,
        description: str | None = None,
    ) -> Meter:
        """Add a meter with a fresh device token. Caller commits."""
        name = (name or "").strip()
        if not name:
            raise ValidationError("Meter name is required")
        meter = Meter(name=name, kind=kind, token=issue_token(), description=description)
        self.session.add(meter)
        await self.session.flush()
        logger.info("Meter created: id=%d name=%r kind=%s", meter.id, meter.name, kind.value)
        return meter

    async def get(self, meter_id: int) -> Meter:
        meter = await self.session.get(Meter, meter_id)
        if meter is None:
            raise NotFound(f"Meter {meter_id} not found")
        return meter

    async def list_meters(self, kind: MeterKind | None = None) -> list[Meter]:
        stmt = select(Meter).order_by(Meter.id)
        if kind is not None:
            stmt = stmt.where(Meter.kind == kind)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
