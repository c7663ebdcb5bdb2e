"""Consumption ledger: active readings and archived (reset) history.

Reading.value is always incremental consumption (kWh or m³), never a raw
cumulative counter. History rows keep the original created_at so a restore
puts them back exactly where they were.
"""
from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Float, ForeignKey, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base


class ReadingKind(str, enum.Enum):
    WATER = "water"
    ENERGY = "energy"


class Reading(Base):
    __tablename__ = "readings"

    __table_args__ = (
        Index("ix_readings_meter_created", "meter_id", "created_at"),
        Index("ix_readings_created", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    meter_id: Mapped[int] = mapped_column(
        ForeignKey("meters.id", ondelete="CASCADE")
    )
    meter_name: Mapped[str] = mapped_column(String(100))
    kind: Mapped[ReadingKind]
    value: Mapped[float] = mapped_column(Float)

    # --- Water secondary metrics ---
    volume_liters: Mapped[float | None] = mapped_column(Float, default=None)
    flow_lph: Mapped[float | None] = mapped_column(Float, default=None)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())


class ReadingHistory(Base):
    __tablename__ = "readings_history"

    __table_args__ = (
        Index("ix_readings_history_meter_cycle", "meter_id", "cycle_tag"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    original_reading_id: Mapped[int]
    meter_id: Mapped[int] = mapped_column(
        ForeignKey("meters.id", ondelete="CASCADE")
    )
    meter_name: Mapped[str] = mapped_column(String(100))
    kind: Mapped[ReadingKind]
    value: Mapped[float] = mapped_column(Float)
    volume_liters: Mapped[float | None] = mapped_column(Float, default=None)
    flow_lph: Mapped[float | None] = mapped_column(Float, default=None)
    created_at: Mapped[datetime]
    cycle_tag: Mapped[str] = mapped_column(String(100))
    backup_at: Mapped[datetime] = mapped_column(server_default=func.now())
