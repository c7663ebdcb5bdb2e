"""DeltaComputer: cumulative phase counters → incremental energy readings.

Three-phase devices report cumulative registers. For every new sample:

1. pick one counter per phase with a fixed precedence
   ep{x}_g (generation total) → ep{x}_c (consumption count) → p{x}
   (instantaneous power; a unit mismatch kept only for old firmware),
2. diff against the last known counter for (parent, phase); a counter read
   from a different field than the baseline only rebases (delta 0),
3. clamp negative diffs (device reboot / register reset) to zero,
4. append one energy Reading to the mapped sub-meter for each positive delta.

The last known counter lives in phase_counter_state and is updated in the
caller's transaction. A missing cache row is seeded from the prior raw sample.
"""
from __future__ import annotations

import logging
import math
from typing import NamedTuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import Meter, Phase, PhaseCounterState, RawTelemetrySample, Reading, ReadingKind
from services.phase_map import PhaseMapRegistry
from services.raw_store import RawPayloadStore
from services.reading_store import ReadingStore

logger = logging.getLogger("meterledger.delta")


class Counter(NamedTuple):
    value: float
    field: str


def counter_fields(phase: Phase) -> tuple[str, str, str]:
    x = phase.value.lower()
    return f"ep{x}_g", f"ep{x}_c", f"p{x}"


def parse_number(raw) -> float | None:
    """Lenient float parse: None for missing, blank, garbled or non-finite values."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        val = float(raw)
    else:
        text = str(raw).strip().replace(",", ".")
        if not text:
            return None
        try:
            val = float(text)
        except ValueError:
            return None
    return val if math.isfinite(val) else None


def extract_counters(payload: dict, *, parent_id: int | None = None) -> dict[Phase, Counter | None]:
    """Apply the canonical field precedence to each phase of a raw payload."""
    counters: dict[Phase, Counter | None] = {}
    for phase in Phase:
        preferred, *fallbacks = counter_fields(phase)
        counter = None
        for field in (preferred, *fallbacks):
            val = parse_number(payload.get(field))
            if val is not None:
                counter = Counter(val, field)
                break
        if counter is None:
            logger.warning("Meter %s phase %s: no usable counter in payload", parent_id, phase.value)
        elif counter.field != preferred:
            logger.warning(
                "Meter %s phase %s: %s missing, using %s",
                parent_id, phase.value, preferred, counter.field,
            )
        counters[phase] = counter
    return counters


def compute_delta(current: float, previous: float | None) -> float:
    """max(0, current - previous); 0 when there is no previous counter."""
    if previous is None:
        return 0.0
    return max(0.0, current - previous)


class DeltaComputer:

    def __init__(self, session: AsyncSession):
        self.session = session
        self.raw_store = RawPayloadStore(session)
        self.phase_map = PhaseMapRegistry(session)
        self.readings = ReadingStore(session)
        self.emitted: list[Reading] = []

    async def _load_state(self, parent_id: int) -> dict[Phase, PhaseCounterState]:
        stmt = (
            select(PhaseCounterState)
            .where(PhaseCounterState.parent_meter_id == parent_id)
            .with_for_update()
        )
        result = await self.session.execute(stmt)
        return {s.phase: s for s in result.scalars().all()}

    async def _prior_counters(self, parent_id: int, sample_id: int) -> dict[Phase, Counter | None]:
        for prior in await self.raw_store.last_samples(parent_id, 2):
            if prior.id != sample_id:
                return extract_counters(prior.raw_payload or {}, parent_id=parent_id)
        return {}

    async def process(self, parent: Meter, sample: RawTelemetrySample) -> dict[str, float]:
        """Turn an already-appended sample into readings. Returns {A, B, C} deltas."""
        current = extract_counters(sample.raw_payload or {}, parent_id=parent.id)
        state = await self._load_state(parent.id)
        mapping = await self.phase_map.resolve(parent.id)
        prior: dict[Phase, Counter | None] | None = None

        deltas: dict[str, float] = {}
        for phase in Phase:
            cur = current[phase]
            if cur is None:
                deltas[phase.value] = 0.0
                continue

            cached = state.get(phase)
            if cached is not None:
                previous, previous_field = cached.last_value, cached.source_field
            else:
                if prior is None:
                    prior = await self._prior_counters(parent.id, sample.id)
                seed = prior.get(phase)
                previous, previous_field = seed if seed is not None else (None, None)
                if previous is None:
                    logger.info("Meter %d phase %s: cold start at %s", parent.id, phase.value, cur.value)

            if previous is not None and previous_field != cur.field:
                logger.warning(
                    "Meter %d phase %s: counter source changed %s -> %s, rebasing at %s with delta 0",
                    parent.id, phase.value, previous_field, cur.field, cur.value,
                )
                previous = None

            delta = compute_delta(cur.value, previous)
            if previous is not None and cur.value < previous:
                logger.warning(
                    "Meter %d phase %s: counter went back %s -> %s, delta clamped to 0",
                    parent.id, phase.value, previous, cur.value,
                )
            deltas[phase.value] = delta

            target = mapping.get(phase)
            if delta > 0 and target is not None:
                self.emitted.append(
                    await self.readings.append(target.child_meter_id, ReadingKind.ENERGY, delta)
                )

            if cached is None:
                self.session.add(PhaseCounterState(
                    parent_meter_id=parent.id, phase=phase,
                    last_value=cur.value, source_field=cur.field, sample_id=sample.id,
                ))
            else:
                cached.last_value = cur.value
                cached.source_field = cur.field
                cached.sample_id = sample.id

        await self.session.flush()
        return deltas
