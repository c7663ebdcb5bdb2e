"""RawRetentionManager: periodic pruning of the raw three-phase buffer.

Disabled unless RAW_RETENTION_DAYS > 0. Deltas come from phase_counter_state,
so old raw samples are only an audit trail; the newest few per parent are
kept anyway to allow re-seeding the counter cache.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.raw_store import RawPayloadStore

logger = logging.getLogger("meterledger.retention")


class RawRetentionManager:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        retention_days: int,
        keep_per_meter: int = 2,
        check_interval: int = 3600,
        batch_size: int = 5000,
    ):
        self.session_factory = session_factory
        self.retention_days = retention_days
        self.keep_per_meter = keep_per_meter
        self.check_interval = check_interval
        self.batch_size = batch_size
        self._running = False

    async def start(self) -> None:
        self._running = True
        logger.info(
            "RawRetentionManager started (keep %d days, min %d per meter, every %ds)",
            self.retention_days, self.keep_per_meter, self.check_interval,
        )
        while self._running:
            try:
                await self.prune()
            except Exception as exc:
                logger.error("RawRetentionManager error: %s", exc, exc_info=True)
            await asyncio.sleep(self.check_interval)

    async def stop(self) -> None:
        self._running = False
        logger.info("RawRetentionManager stopped")

    def cutoff(self) -> datetime:
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        return now - timedelta(days=self.retention_days)

    async def prune(self) -> int:
        """Delete expired samples batch by batch. Returns total deleted."""
        cutoff = self.cutoff()
        total = 0
        while True:
            async with self.session_factory() as session:
                deleted = await RawPayloadStore(session).prune_batch(
                    cutoff, self.keep_per_meter, self.batch_size,
                )
                await session.commit()
            total += deleted
            if deleted < self.batch_size:
                break
        if total:
            logger.info("Pruned %d raw samples received before %s", total, cutoff)
        return total
