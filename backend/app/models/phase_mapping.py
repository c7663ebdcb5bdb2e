import enum

from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base, CreatedAtMixin


class Phase(str, enum.Enum):
    A = "A"
    B = "B"
    C = "C"

    @classmethod
    def parse(cls, raw) -> "Phase | None":
        """Return the phase for a tag like 'a' / ' B ', or None if unrecognized."""
        if raw is None:
            return None
        try:
            return cls(str(raw).strip().upper())
        except ValueError:
            return None


class PhaseMapping(CreatedAtMixin, Base):
    __tablename__ = "phase_mappings"

    __table_args__ = (
        UniqueConstraint("parent_meter_id", "phase", name="uq_phase_mappings_parent_phase"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    parent_meter_id: Mapped[int] = mapped_column(
        ForeignKey("meters.id", ondelete="CASCADE")
    )
    phase: Mapped[Phase]
    child_meter_id: Mapped[int] = mapped_column(
        ForeignKey("meters.id", ondelete="CASCADE")
    )
    label: Mapped[str | None] = mapped_column(String(100), default=None)

    child = relationship("Meter", foreign_keys=[child_meter_id], lazy="joined")

    def __repr__(self) -> str:
        return f"<PhaseMapping parent={self.parent_meter_id} {self.phase.value} -> {self.child_meter_id}>"
