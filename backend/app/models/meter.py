import enum

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, CreatedAtMixin


class MeterKind(str, enum.Enum):
    WATER = "water"
    ENERGY = "energy"            # single-phase, or a phase sub-meter
    ENERGY_3PH = "energy_3ph"    # parent: routes phases to child meters

    @property
    def is_parent(self) -> bool:
        return self is MeterKind.ENERGY_3PH


class Meter(CreatedAtMixin, Base):
    __tablename__ = "meters"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100))
    kind: Mapped[MeterKind]
    # Issued once at creation, never updated or reused
    token: Mapped[str] = mapped_column(String(64), unique=True)
    description: Mapped[str | None] = mapped_column(String(500), default=None)

    def __repr__(self) -> str:
        return f"<Meter {self.name} ({self.kind.value})>"
