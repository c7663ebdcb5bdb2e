from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from core.errors import NotFound, Unauthenticated
from models import MeterKind, RawTelemetrySample
from services.raw_store import RawPayloadStore
from services.token_auth import TokenAuthenticator


async def test_authenticate_by_token(session, make_meter):
    meter = await make_meter("Hall", MeterKind.WATER)

    found = await TokenAuthenticator(session).authenticate(meter.token)

    assert found.id == meter.id


@pytest.mark.parametrize("token", [None, "", "   "])
async def test_missing_token(session, token):
    with pytest.raises(Unauthenticated):
        await TokenAuthenticator(session).authenticate(token)


async def test_unknown_token(session, make_meter):
    await make_meter("Hall", MeterKind.WATER)
    with pytest.raises(NotFound):
        await TokenAuthenticator(session).authenticate("not-a-token")


async def test_tokens_are_unique(make_meter):
    meters = [await make_meter(f"M{i}") for i in range(5)]
    assert len({m.token for m in meters}) == 5


async def test_append_unknown_parent(session):
    with pytest.raises(NotFound):
        await RawPayloadStore(session).append(31337, {"epa_g": 1})


async def test_last_samples_most_recent_first(session, make_meter):
    parent = await make_meter("3F", MeterKind.ENERGY_3PH)
    store = RawPayloadStore(session)
    for i in range(3):
        await store.append(parent.id, {"seq": i})
    await session.commit()

    samples = await store.last_samples(parent.id, 2)

    assert [s.raw_payload["seq"] for s in samples] == [2, 1]


async def test_prune_batch_keeps_newest_per_meter(session, make_meter):
    parent = await make_meter("3F", MeterKind.ENERGY_3PH)
    other = await make_meter("3F other", MeterKind.ENERGY_3PH)
    old = datetime(2020, 1, 1)
    for i in range(5):
        session.add(RawTelemetrySample(
            parent_meter_id=parent.id, raw_payload={"seq": i}, received_at=old + timedelta(minutes=i),
        ))
    session.add(RawTelemetrySample(parent_meter_id=other.id, raw_payload={"seq": 0}, received_at=old))
    await session.commit()

    deleted = await RawPayloadStore(session).prune_batch(datetime(2021, 1, 1), keep_per_meter=2, batch_size=100)
    await session.commit()

    assert deleted == 3
    left = (await session.execute(
        select(RawTelemetrySample).order_by(RawTelemetrySample.id)
    )).scalars().all()
    assert [(s.parent_meter_id, s.raw_payload["seq"]) for s in left] == [
        (parent.id, 3), (parent.id, 4), (other.id, 0),
    ]
