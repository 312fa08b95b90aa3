import pytest
from sqlmodel import Session

from solar_portal import storage


# ============ WIZARD SESSIONS ============

def test_upsert_requires_token(client):
    assert client.post("/api/wizard-sessions", json={"current_step": 1}).status_code == 400


def test_upsert_creates_then_updates(client):
    r = client.post("/api/wizard-sessions", json={"session_token": "tok", "current_step": 1, "utm_source": "facebook"})
    assert r.status_code == 200
    assert r.json()["created"] is True

    r = client.post("/api/wizard-sessions", json={"session_token": "tok", "current_step": 3, "address": "Triq il-Kbira"})
    body = r.json()
    assert body["created"] is False
    session = body["session"]
    assert session["current_step"] == 3
    assert session["highest_step_reached"] == 3
    assert session["utm_source"] == "facebook"
    assert session["address"] == "Triq il-Kbira"


def test_get_by_token(client):
    client.post("/api/wizard-sessions", json={"session_token": "tok", "current_step": 2})
    assert client.get("/api/wizard-sessions", params={"token": "tok"}).json()["session"]["current_step"] == 2
    assert client.get("/api/wizard-sessions", params={"token": "nope"}).status_code == 404


def test_get_without_filter_is_400(client):
    assert client.get("/api/wizard-sessions").status_code == 400


def test_convert_session(client):
    sid = client.post("/api/wizard-sessions", json={"session_token": "tok"}).json()["session"]["id"]

    assert client.patch("/api/wizard-sessions", json={"session_id": sid, "action": "convert_to_lead"}).status_code == 400

    r = client.patch("/api/wizard-sessions", json={"session_id": sid, "action": "convert_to_lead", "lead_id": "L-1"})
    assert r.status_code == 200
    assert r.json()["session"]["status"] == "converted_to_lead"
    assert r.json()["session"]["converted_lead_id"] == "L-1"

    again = client.patch("/api/wizard-sessions", json={"session_id": sid, "action": "convert_to_lead", "lead_id": "L-2"})
    assert again.status_code == 409


def test_complete_session(client):
    sid = client.post("/api/wizard-sessions", json={"session_token": "tok"}).json()["session"]["id"]
    r = client.patch("/api/wizard-sessions", json={"session_id": sid, "action": "complete"})
    assert r.json()["session"]["status"] == "completed"
    assert r.json()["session"]["completed_at"] is not None


def test_patch_unknown_session_is_404(client):
    assert client.patch("/api/wizard-sessions", json={"session_id": "nope", "action": "complete"}).status_code == 404


def test_list_abandoned_sessions(client, engine):
    with Session(engine) as s:
        deep = storage.create_wizard_session(s, "deep", {"current_step": 5, "address": "Triq il-Kbira"})
        shallow = storage.create_wizard_session(s, "shallow", {"current_step": 2})
        storage.create_wizard_session(s, "live", {"current_step": 6})
        storage.mark_sessions_abandoned(s, [deep, shallow])

    body = client.get("/api/wizard-sessions", params={"abandoned": "true", "min_step": 3}).json()
    assert body["count"] == 1
    assert body["sessions"][0]["session_token"] == "deep"

    body = client.get("/api/wizard-sessions", params={"abandoned": "true", "has_address": "true"}).json()
    assert [row["session_token"] for row in body["sessions"]] == ["deep"]


def test_dispatch_action_runs_reducer_server_side(client):
    client.post("/api/wizard-sessions", json={"session_token": "tok", "current_step": 3})
    r = client.post("/api/wizard-sessions/tok/actions", json={
        "type": "SET_SYSTEM",
        "payload": {"selected_system": "essential-5kw", "with_battery": True, "battery_size_kwh": 10, "grant_type": "pv_battery"},
    })
    assert r.status_code == 200
    body = r.json()
    assert body["state"]["total_price"] == 3050
    assert body["session"]["grant_amount"] == 6950

    r = client.post("/api/wizard-sessions/tok/actions", json={"type": "NEXT_STEP"})
    assert r.json()["session"]["current_step"] == 4
    assert r.json()["session"]["highest_step_reached"] == 4


def test_dispatch_unknown_action_is_400(client):
    client.post("/api/wizard-sessions", json={"session_token": "tok"})
    assert client.post("/api/wizard-sessions/tok/actions", json={"type": "TELEPORT"}).status_code == 400


@pytest.mark.parametrize("payload", [{"step": None}, {"step": "abc"}, {"step": 12}])
def test_dispatch_set_step_with_bad_step_is_400(client, payload):
    client.post("/api/wizard-sessions", json={"session_token": "tok", "current_step": 2})
    r = client.post("/api/wizard-sessions/tok/actions", json={"type": "SET_STEP", "payload": payload})
    assert r.status_code == 400
    assert client.get("/api/wizard-sessions", params={"token": "tok"}).json()["session"]["current_step"] == 2


# ============ QUOTE ============

def test_quote_end_to_end(client):
    r = client.post("/api/quote", json={
        "monthly_bill": 150, "household_size": 3, "location": "malta",
        "grant_type": "pv_battery", "package_id": "essential-5kw", "battery_id": "luna-10",
        "loan_term": 60,
    })
    assert r.status_code == 200
    q = r.json()
    assert q["monthly_consumption_kwh"] == 1054
    assert q["gross_price"] == 10000
    assert q["grant_amount"] == 6950
    assert q["total_price"] == 3050
    assert q["annual_savings"] == 945
    assert q["payback_years"] == 3.2
    assert q["deposit"] == 915
    assert q["co2_offset_tonnes"] == 4.5
    assert [o["term"] for o in q["financing_options"]] == [36, 60, 84, 120]
    assert q["monthly_payment"] == q["financing_options"][1]["monthly_payment"]


def test_quote_recommends_package_when_none_given(client):
    q = client.post("/api/quote", json={"monthly_bill": 150, "household_size": 3}).json()
    assert q["package_id"] == "performance-10kw"


def test_quote_extras_add_to_total(client):
    base = client.post("/api/quote", json={"package_id": "starter-3kw"}).json()
    extra = client.post("/api/quote", json={"package_id": "starter-3kw", "extras": ["salva_vita", "ovr"]}).json()
    assert extra["extras_total"] == 300
    assert extra["total_price"] == base["total_price"] + 300


def test_battery_only_quote(client):
    q = client.post("/api/quote", json={"grant_type": "battery_only", "battery_id": "luna-10", "location": "gozo"}).json()
    assert q["package_id"] is None
    assert q["grant_amount"] == 6175  # 95% of the battery price
    assert q["total_price"] == 6500 - 6175 + 350


@pytest.mark.parametrize("body,status", [
    ({"package_id": "nope"}, 404),
    ({"battery_id": "nope"}, 404),
    ({"grant_type": "battery_only"}, 400),
    ({"grant_type": "free"}, 422),
])
def test_quote_errors(client, body, status):
    assert client.post("/api/quote", json=body).status_code == status
