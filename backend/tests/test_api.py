import json
from datetime import datetime

from conftest import ADMIN_HEADERS
from models import MeterKind, Reading, ReadingKind
from services.ingestion import UPDATES_CHANNEL, IngestionService


# --- health / admin gate ---

async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


async def test_admin_key_required(client):
    assert (await client.get("/api/meters")).status_code == 401
    assert (await client.get("/api/meters", headers={"X-Admin-Key": "nope"})).status_code == 403
    assert (await client.get("/api/meters", headers=ADMIN_HEADERS)).status_code == 200


# --- meters ---

async def test_create_and_list_meters(client):
    resp = await client.post(
        "/api/meters", json={"name": "Garden", "kind": "water"}, headers=ADMIN_HEADERS,
    )
    assert resp.status_code == 201
    meter = resp.json()
    assert meter["kind"] == "water"
    assert len(meter["token"]) == 32

    resp = await client.get("/api/meters", params={"kind": "water"}, headers=ADMIN_HEADERS)
    assert [m["id"] for m in resp.json()] == [meter["id"]]

    assert (await client.get(f"/api/meters/{meter['id']}", headers=ADMIN_HEADERS)).json()["name"] == "Garden"
    resp = await client.get("/api/meters/9999", headers=ADMIN_HEADERS)
    assert resp.status_code == 404
    assert "error" in resp.json()


async def test_create_meter_blank_name(client):
    resp = await client.post("/api/meters", json={"name": "  ", "kind": "energy"}, headers=ADMIN_HEADERS)
    assert resp.status_code == 400


# --- phase map ---

async def test_phase_map_endpoints(client, make_meter):
    parent = await make_meter("Tower 3F", MeterKind.ENERGY_3PH)
    spare = await make_meter("Shop")

    resp = await client.post(f"/api/meters/{parent.id}/phase-map/auto", headers=ADMIN_HEADERS)
    assert resp.status_code == 201
    body = resp.json()
    assert len(body["children"]) == 3
    assert [e["phase"] for e in body["map"]] == ["A", "B", "C"]

    resp = await client.put(
        f"/api/meters/{parent.id}/phase-map",
        json={"map": [{"phase": "B", "child_meter_id": spare.id, "label": "Shop"}, {"phase": "X", "child_meter_id": spare.id}]},
        headers=ADMIN_HEADERS,
    )
    assert resp.status_code == 200
    by_phase = {e["phase"]: e for e in resp.json()["map"]}
    assert by_phase["B"]["child_meter_id"] == spare.id
    assert by_phase["B"]["child_name"] == "Shop"

    resp = await client.get(f"/api/meters/{parent.id}/phase-map", headers=ADMIN_HEADERS)
    assert len(resp.json()["map"]) == 3

    resp = await client.post(f"/api/meters/{spare.id}/phase-map/auto", headers=ADMIN_HEADERS)
    assert resp.status_code == 400


# --- ingestion ---

async def test_ingest_single_json(client, make_meter, fake_redis):
    meter = await make_meter("Kitchen")

    resp = await client.post("/api/ingest/reading", json={"token": meter.token, "value": "1.5"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["value"] == 1.5
    channel, message = fake_redis.published[-1]
    assert channel == UPDATES_CHANNEL
    assert json.loads(message)["meter_id"] == meter.id


async def test_ingest_water_form(client, make_meter):
    meter = await make_meter("Tap", MeterKind.WATER)

    resp = await client.post(
        "/api/ingest/reading",
        data={"token": meter.token, "consumo": "0,25", "consumo_litros": "250", "vazao_lh": "30"},
    )
    assert resp.status_code == 200

    rows = (await client.get("/api/readings", params={"meter_id": meter.id})).json()
    assert rows[0]["value"] == 0.25
    assert rows[0]["volume_liters"] == 250.0
    assert rows[0]["flow_lph"] == 30.0
    assert rows[0]["kind"] == "water"


async def test_ingest_token_in_header(client, make_meter):
    meter = await make_meter("Hall")
    resp = await client.post("/api/ingest/reading", json={"value": 2}, headers={"X-Device-Token": meter.token})
    assert resp.status_code == 200


async def test_ingest_errors(client, three_phase, make_meter):
    parent, _ = await three_phase()
    single = await make_meter("Single")

    resp = await client.post("/api/ingest/reading", json={"value": 1})
    assert resp.status_code == 400
    assert "error" in resp.json()
    assert (await client.post("/api/ingest/reading", json={"token": "bogus", "value": 1})).status_code == 404
    assert (await client.post("/api/ingest/reading", json={"token": parent.token, "value": 1})).status_code == 400
    assert (await client.post("/api/ingest/energy3ph", json={"token": single.token})).status_code == 400
    resp = await client.post(
        "/api/ingest/reading", content=b"{not json", headers={"content-type": "application/json"},
    )
    assert resp.status_code == 400
    resp = await client.post("/api/ingest/reading", json=[1, 2])
    assert resp.status_code == 400


async def test_ingest_three_phase_flow(client, three_phase, fake_redis):
    parent, (child_a, child_b, child_c) = await three_phase("Depot")

    first = await client.post("/api/ingest/energy3ph", json={"token": parent.token, "epa_g": 100, "epb_g": 50, "epc_g": 10})
    assert first.json()["deltas"] == {"A": 0.0, "B": 0.0, "C": 0.0}

    resp = await client.post(
        "/api/ingest/energy3ph",
        data={"token": parent.token, "epa_g": "101.5", "epb_g": "50", "epc_g": "12"},
    )
    assert resp.status_code == 200
    assert resp.json()["deltas"] == {"A": 1.5, "B": 0.0, "C": 2.0}
    assert json.loads(fake_redis.published[-1][1])["type"] == "energy3ph"

    summary = (await client.get("/api/readings/summary")).json()
    totals = {m["meter_id"]: m["total"] for m in summary["meters"]}
    assert totals == {child_a.id: 1.5, child_c.id: 2.0}


async def test_unexpected_error_is_rendered(client, make_meter, monkeypatch):
    meter = await make_meter("Flaky")

    async def explode(self, token, payload):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(IngestionService, "ingest_single", explode)
    resp = await client.post("/api/ingest/reading", json={"token": meter.token, "value": 1})

    assert resp.status_code == 500
    assert resp.json() == {"error": "internal error"}


# --- readings / billing cycle ---

async def test_reset_and_restore_endpoints(client, make_meter):
    meter = await make_meter("Apt 201")
    for value in (1, 2):
        await client.post("/api/ingest/reading", json={"token": meter.token, "value": value})

    resp = await client.post(f"/api/meters/{meter.id}/reset", json={"cycle_tag": "2024-05"}, headers=ADMIN_HEADERS)
    assert resp.json() == {"success": True, "meter_id": meter.id, "cycle_tag": "2024-05", "archived": 2}
    assert (await client.get("/api/readings", params={"meter_id": meter.id})).json() == []

    resp = await client.post(f"/api/meters/{meter.id}/reset", headers=ADMIN_HEADERS)
    assert resp.json()["cycle_tag"] == "previous-cycle"
    assert resp.json()["archived"] == 0

    cycles = (await client.get("/api/readings/cycles", params={"meter_id": meter.id}, headers=ADMIN_HEADERS)).json()
    assert [(c["cycle_tag"], c["readings"], c["total"]) for c in cycles] == [("2024-05", 2, 3.0)]
    history = (await client.get("/api/readings/history", params={"meter_id": meter.id}, headers=ADMIN_HEADERS)).json()
    assert len(history) == 2

    resp = await client.post(
        "/api/readings/restore",
        json={"meter_id": meter.id, "cycle_tag": "2024-05", "purge": True},
        headers=ADMIN_HEADERS,
    )
    assert resp.json() == {"success": True, "restored": 2, "removed": 2}
    assert len((await client.get("/api/readings", params={"meter_id": meter.id})).json()) == 2

    resp = await client.post("/api/readings/restore", json={"backup_ids": [424242]}, headers=ADMIN_HEADERS)
    assert resp.status_code == 404
    resp = await client.post("/api/readings/restore", json={}, headers=ADMIN_HEADERS)
    assert resp.status_code == 400
    assert (await client.post("/api/meters/9999/reset", headers=ADMIN_HEADERS)).status_code == 404


async def test_history_requires_admin(client):
    assert (await client.get("/api/readings/history")).status_code == 401
    assert (await client.post("/api/readings/restore", json={})).status_code == 401


async def test_summary_month(client):
    resp = await client.get("/api/readings/summary", params={"month": "2024-02"})
    assert resp.status_code == 200
    assert resp.json()["start"].startswith("2024-02-01")
    assert resp.json()["meters"] == []
    assert (await client.get("/api/readings/summary", params={"month": "02-2024"})).status_code == 400


async def test_admin_failures_use_error_body(client):
    resp = await client.get("/api/meters")
    assert resp.json() == {"error": "Admin key required"}
    resp = await client.get("/api/meters", headers={"X-Admin-Key": "nope"})
    assert resp.json() == {"error": "Admin access denied"}


async def test_readings_filter_accepts_utc_offsets(client, session_factory, make_meter):
    meter = await make_meter("Offset")
    async with session_factory() as s:
        s.add(Reading(
            meter_id=meter.id, meter_name=meter.name, kind=ReadingKind.ENERGY,
            value=2.0, created_at=datetime(2024, 5, 1, 10),
        ))
        await s.commit()

    resp = await client.get("/api/readings", params={"from": "2024-05-01T12:00:00+03:00"})
    assert resp.status_code == 200
    assert [r["value"] for r in resp.json()] == [2.0]

    resp = await client.get("/api/readings", params={"to": "2024-05-01T10:00:00Z"})
    assert resp.json() == []

    resp = await client.get(
        "/api/readings/summary",
        params={"from": "2024-05-01T09:30:00Z", "to": "2024-05-01T13:30:01+03:00"},
    )
    assert [(m["meter_id"], m["total"]) for m in resp.json()["meters"]] == [(meter.id, 2.0)]
