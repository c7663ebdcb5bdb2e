"""Phase → sub-meter routing for three-phase parent meters."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import InvalidState, NotFound
from models import Meter, MeterKind, Phase, PhaseMapping
from services.meter_registry import MeterRegistry

logger = logging.getLogger("meterledger.phase_map")


@dataclass
class MappingEntry:
    phase: Phase
    child_meter_id: int
    child_name: str
    label: str | None


def default_label(phase: Phase) -> str:
    return f"Phase {phase.value}"


class PhaseMapRegistry:

    def __init__(self, session: AsyncSession):
        self.session = session
        self.meters = MeterRegistry(session)

    async def _get_parent(self, parent_meter_id: int) -> Meter:
        parent = await self.meters.get(parent_meter_id)
        if parent.kind is not MeterKind.ENERGY_3PH:
            raise InvalidState(f"Meter {parent_meter_id} is not a three-phase meter")
        return parent

    async def _upsert(self, parent_id: int, phase: Phase, child: Meter, label: str | None) -> None:
        result = await self.session.execute(
            select(PhaseMapping).where(
                PhaseMapping.parent_meter_id == parent_id,
                PhaseMapping.phase == phase,
            )
        )
        mapping = result.scalar_one_or_none()
        if mapping is None:
            self.session.add(PhaseMapping(
                parent_meter_id=parent_id, phase=phase, child=child, label=label,
            ))
        else:
            mapping.child = child
            mapping.label = label
        await self.session.flush()

    async def auto_provision(self, parent_meter_id: int) -> list[Meter]:
        """Create one energy sub-meter per phase and map A/B/C to them."""
        parent = await self._get_parent(parent_meter_id)
        children = []
        for phase in Phase:
            child = await self.meters.create(
                name=f"{parent.name} - {default_label(phase)}",
                kind=MeterKind.ENERGY,
                description=f"Phase {phase.value} of meter #{parent.id}",
            )
            await self._upsert(parent.id, phase, child, default_label(phase))
            children.append(child)
        logger.info(
            "Auto-provisioned phases for meter %d: %s",
            parent.id, ", ".join(str(c.id) for c in children),
        )
        return children

    async def get_mapping(self, parent_meter_id: int) -> list[MappingEntry]:
        await self._get_parent(parent_meter_id)
        result = await self.session.execute(
            select(PhaseMapping).where(PhaseMapping.parent_meter_id == parent_meter_id)
        )
        mappings = sorted(result.scalars().all(), key=lambda m: m.phase.value)
        return [
            MappingEntry(
                phase=m.phase,
                child_meter_id=m.child_meter_id,
                child_name=m.child.name,
                label=m.label,
            )
            for m in mappings
        ]

    async def set_mapping(self, parent_meter_id: int, entries: list[dict]) -> list[MappingEntry]:
        """Upsert (parent, phase) for every entry with a recognized phase tag.

        Entries with an unknown phase are skipped. The child must be an
        existing single-phase energy meter.
        """
        parent = await self._get_parent(parent_meter_id)
        for entry in entries:
            phase = Phase.parse(entry.get("phase"))
            if phase is None:
                logger.info("Meter %d: skipping mapping entry with phase %r", parent.id, entry.get("phase"))
                continue
            child_id = entry.get("child_meter_id")
            child = await self.session.get(Meter, child_id) if child_id is not None else None
            if child is None:
                raise NotFound(f"Child meter {child_id} not found")
            if child.kind is not MeterKind.ENERGY:
                raise InvalidState(f"Meter {child.id} is not a single-phase energy meter")
            await self._upsert(parent.id, phase, child, entry.get("label") or default_label(phase))
        return await self.get_mapping(parent.id)

    async def resolve(self, parent_meter_id: int) -> dict[Phase, MappingEntry]:
        result = await self.session.execute(
            select(PhaseMapping).where(PhaseMapping.parent_meter_id == parent_meter_id)
        )
        return {
            m.phase: MappingEntry(
                phase=m.phase, child_meter_id=m.child_meter_id,
                child_name=m.child.name, label=m.label,
            )
            for m in result.scalars().all()
        }
