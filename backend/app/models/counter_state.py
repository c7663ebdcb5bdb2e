"""Last-known cumulative counter per (parent meter, phase).

Updated in the same transaction as the raw sample insert, so the delta
baseline never depends on scanning raw_telemetry_samples.
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import Float, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base
from models.phase_mapping import Phase


class PhaseCounterState(Base):
    __tablename__ = "phase_counter_state"

    parent_meter_id: Mapped[int] = mapped_column(
        ForeignKey("meters.id", ondelete="CASCADE"), primary_key=True
    )
    phase: Mapped[Phase] = mapped_column(primary_key=True)
    last_value: Mapped[float] = mapped_column(Float)
    source_field: Mapped[str] = mapped_column(String(20))   # epa_g, epb_c, pc ...
    sample_id: Mapped[int | None] = mapped_column(default=None)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now()
    )
