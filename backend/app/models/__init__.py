from models.base import Base, async_session, engine, get_session
from models.meter import Meter, MeterKind
from models.phase_mapping import Phase, PhaseMapping
from models.raw_sample import RawTelemetrySample
from models.counter_state import PhaseCounterState
from models.reading import Reading, ReadingHistory, ReadingKind

__all__ = [
    "Base",
    "async_session",
    "engine",
    "get_session",
    "Meter",
    "MeterKind",
    "Phase",
    "PhaseMapping",
    "RawTelemetrySample",
    "PhaseCounterState",
    "Reading",
    "ReadingHistory",
    "ReadingKind",
]
