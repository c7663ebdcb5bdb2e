"""Raw three-phase telemetry buffer.

One row per device submission, payload stored verbatim (including fields
the ingestion path ignores). Append-only; pruned only by RawRetentionManager.
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, ForeignKey, Index, func
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base


class RawTelemetrySample(Base):
    __tablename__ = "raw_telemetry_samples"

    __table_args__ = (
        Index("ix_raw_telemetry_samples_parent_received", "parent_meter_id", "received_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    parent_meter_id: Mapped[int] = mapped_column(
        ForeignKey("meters.id", ondelete="CASCADE")
    )
    raw_payload: Mapped[dict] = mapped_column(JSON)
    received_at: Mapped[datetime] = mapped_column(server_default=func.now())
