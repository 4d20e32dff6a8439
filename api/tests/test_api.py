from datetime import timedelta

from sqlalchemy.exc import OperationalError

from spinwheel import ledger, tokens
from spinwheel.tokens import ClientContext


def test_health(client):
    assert client.get("/health").json() == {"ok": True}
    assert client.get("/api/wheel/health").json()["status"] == "OK"


def test_spin_success_payload(client, make_prize, make_token):
    prize = make_prize("Free coffee", 100, position=0, description="Any size", color="#AA0000")
    make_token("ABC12345")

    resp = client.post("/api/wheel/spin", json={"token_code": "abc12345"}, headers={"User-Agent": "test-agent"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["prize_id"] == prize.id
    assert body["prize_name"] == "Free coffee"
    assert body["prize_description"] == "Any size"
    assert body["prize_color"] == "#AA0000"
    assert body["is_win"] is True
    assert body["display_index"] == 0
    assert body["slot_count"] == 8
    assert body["token_code"] == "ABC12345"
    assert body["token_used_at"]
    assert body["spin_id"]

    again = client.post("/api/wheel/spin", json={"token_code": "ABC12345"})
    assert again.status_code == 409
    assert again.json()["reason"] == "already_used"
    assert again.json()["code"] == "ALREADY_USED"


def test_spin_rejections(client, db, make_prize, make_token):
    make_prize("a", 10)
    make_token("OLDX2345", expires_in=timedelta(hours=-1))
    d = make_token("DELX2345")
    tokens.soft_delete(db, d.id, "admin")

    cases = [
        ({"token_code": "NOPE2345"}, 404, "not_found"),
        ({"token_code": "OLDX2345"}, 410, "expired"),
        ({"token_code": "DELX2345"}, 410, "already_deleted"),
        ({"token_code": ""}, 400, "invalid_input"),
        ({}, 400, "invalid_input"),
    ]
    for payload, code, reason in cases:
        resp = client.post("/api/wheel/spin", json=payload)
        assert resp.status_code == code, payload
        assert resp.json()["reason"] == reason
        assert resp.json()["message"]


def test_spin_without_prizes(client, make_token):
    make_token("NOPZ2345")
    resp = client.post("/api/wheel/spin", json={"token_code": "NOPZ2345"})
    assert resp.status_code == 400
    assert resp.json()["reason"] == "no_selectable_outcome"


def test_spin_storage_failure_after_claim_is_not_retryable(client, make_prize, make_token, monkeypatch):
    make_prize("a", 100)
    make_token("LOSE2345")

    def broken(*args, **kwargs):
        raise OperationalError("INSERT INTO spin_results", {}, Exception("connection lost"))

    monkeypatch.setattr(ledger, "append", broken)
    first = client.post("/api/wheel/spin", json={"token_code": "LOSE2345"})
    assert first.status_code == 500
    assert first.json()["reason"] == "consumed_without_prize"
    assert first.json()["code"] != "TRANSIENT_FAILURE"
    monkeypatch.undo()

    again = client.post("/api/wheel/spin", json={"token_code": "LOSE2345"})
    assert again.status_code == 409
    assert again.json()["reason"] == "already_used"


def test_wheel_prizes_match_spin_index(client, make_prize, make_token):
    make_prize("zero", 0, position=0)
    make_prize("only", 100, position=1)
    make_token("WHEL2345")

    slots = client.get("/api/wheel/prizes").json()
    assert len(slots) == 8
    assert [s["index"] for s in slots] == list(range(8))
    assert [s["is_win"] for s in slots[:3]] == [True, True, False]

    spin = client.post("/api/wheel/spin", json={"token_code": "WHEL2345"}).json()
    assert slots[spin["display_index"]]["name"] == spin["prize_name"] == "only"


def test_validate_and_check_history(client, db, make_token):
    make_token("VALD2345")

    ok = client.post("/api/tokens/validate", json={"token_code": "vald2345"})
    assert ok.status_code == 200
    assert ok.json()["valid"] is True
    assert ok.json()["status"] == "active"

    hist = client.post("/api/tokens/check-history", json={"token_code": "VALD2345"}).json()
    assert hist["exists"] is True and hist["status"] == "active"

    tokens.claim(db, "VALD2345", ClientContext())

    used = client.post("/api/tokens/validate", json={"token_code": "VALD2345"})
    assert used.status_code == 409
    assert used.json()["reason"] == "already_used"
    hist = client.post("/api/tokens/check-history", json={"token_code": "VALD2345"}).json()
    assert hist["status"] == "used" and hist["used_at"]

    missing = client.post("/api/tokens/check-history", json={"token_code": "MISS2345"}).json()
    assert missing["exists"] is False
    empty = client.post("/api/tokens/check-history", json={})
    assert empty.status_code == 400
    assert empty.json()["code"] == "INVALID_INPUT"
    assert empty.json()["reason"] == "invalid_input"


def test_wheel_stats(client, make_prize, make_token):
    make_prize("a", 10)
    make_token("STSA2345")
    make_token("STSB2345")
    client.post("/api/wheel/spin", json={"token_code": "STSA2345"})

    stats = client.get("/api/wheel/stats").json()
    assert stats["total_spins"] == 1
    assert stats["total_prizes"] == 1
    assert stats["total_active_tokens"] == 1


# --- admin ---

def test_admin_endpoints_require_auth(client):
    assert client.get("/api/admin/tokens").status_code == 401
    assert client.post("/api/admin/tokens", json={"quantity": 1}).status_code == 401
    bad = client.get("/api/admin/prizes", headers={"Authorization": "Bearer nope"})
    assert bad.status_code == 401
    assert bad.json()["code"] == "HTTP_ERROR"


def test_login_throttles_after_failures(client):
    for _ in range(5):
        assert client.post("/api/admin/login", json={"password": "wrong"}).status_code == 401
    assert client.post("/api/admin/login", json={"password": "letmein"}).status_code == 429


def test_issue_list_and_delete_tokens(client, admin_headers):
    resp = client.post("/api/admin/tokens", json={"quantity": 3}, headers=admin_headers)
    assert resp.status_code == 201
    issued = resp.json()["tokens"]
    assert len(issued) == 3
    assert all(t["status"] == "active" and t["created_by"] == "admin" for t in issued)

    listed = client.get("/api/admin/tokens", headers=admin_headers).json()
    assert {t["code"] for t in listed} == {t["code"] for t in issued}

    first = issued[0]
    deleted = client.delete(f"/api/admin/tokens/{first['id']}", headers=admin_headers)
    assert deleted.status_code == 200
    assert deleted.json()["code"] == first["code"]
    assert client.delete(f"/api/admin/tokens/{first['id']}", headers=admin_headers).status_code == 404

    listed = client.get("/api/admin/tokens", headers=admin_headers).json()
    assert first["code"] not in {t["code"] for t in listed}

    spin = client.post("/api/wheel/spin", json={"token_code": first["code"]})
    assert spin.status_code == 410


def test_issue_quantity_bounds(client, admin_headers):
    for q in (0, 101):
        resp = client.post("/api/admin/tokens", json={"quantity": q}, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json()["reason"] == "invalid_input"


def test_token_history_and_stats(client, admin_headers, make_prize, make_token):
    make_prize("a", 10)
    make_token("HSTA2345")
    make_token("HSTB2345")
    make_token("HSTC2345", expires_in=timedelta(seconds=-1))
    client.post("/api/wheel/spin", json={"token_code": "HSTA2345"})

    hist = client.get("/api/admin/tokens/history?page=1&limit=10", headers=admin_headers).json()
    assert [t["code"] for t in hist["tokens"]] == ["HSTA2345"]
    assert hist["pagination"] == {"current_page": 1, "total_pages": 1, "total": 1, "has_more": False}

    stats = client.get("/api/admin/tokens/stats", headers=admin_headers).json()
    assert stats["used_tokens"] == 1
    assert stats["active_tokens"] == 1
    assert stats["expired_tokens"] == 1

    dash = client.get("/api/admin/stats", headers=admin_headers).json()
    assert dash["total_spins"] == 1
    assert dash["total_tokens"] == 3


def test_cleanup_endpoints(client, admin_headers, make_token):
    make_token("CLNA2345", expires_in=timedelta(seconds=-1))
    make_token("CLNB2345", expires_in=timedelta(seconds=-1))
    make_token("CLNC2345")

    soft = client.delete("/api/admin/tokens/soft-cleanup-expired", headers=admin_headers)
    assert soft.json()["deleted_count"] == 2

    hard = client.delete("/api/admin/tokens/hard-cleanup-expired", headers=admin_headers)
    assert hard.json()["deleted_count"] == 2

    bulk = client.delete("/api/admin/tokens/bulk/all-unused", headers=admin_headers)
    assert bulk.json()["deleted_count"] == 1
    assert client.delete("/api/admin/tokens/bulk/bogus", headers=admin_headers).status_code == 400


def test_prize_crud(client, admin_headers):
    created = client.post(
        "/api/admin/prizes",
        json={"name": "Donut", "probability": 25, "position": 2},
        headers=admin_headers,
    )
    assert created.status_code == 201
    prize = created.json()
    assert prize["color"] == "#3B82F6"
    assert prize["is_active"] is True

    updated = client.put(
        f"/api/admin/prizes/{prize['id']}",
        json={"probability": 40, "is_active": False},
        headers=admin_headers,
    ).json()
    assert updated["probability"] == 40
    assert updated["is_active"] is False
    assert updated["name"] == "Donut"

    assert client.post(
        "/api/admin/prizes", json={"name": "Bad", "probability": 150}, headers=admin_headers
    ).status_code == 422
    assert client.put("/api/admin/prizes/999", json={"name": "x"}, headers=admin_headers).status_code == 404

    assert len(client.get("/api/admin/prizes", headers=admin_headers).json()) == 1
    assert client.delete(f"/api/admin/prizes/{prize['id']}", headers=admin_headers).json() == {"ok": True}
    assert client.delete(f"/api/admin/prizes/{prize['id']}", headers=admin_headers).status_code == 404


def test_prize_update_rejects_null_required_fields(client, admin_headers, make_prize):
    p = make_prize("Pie", 30, description="Apple", position=3)

    for field in ("name", "probability", "color", "is_active"):
        resp = client.put(f"/api/admin/prizes/{p.id}", json={field: None}, headers=admin_headers)
        assert resp.status_code == 422, field
        assert resp.json()["code"] == "VALIDATION_ERROR"

    cleared = client.put(
        f"/api/admin/prizes/{p.id}", json={"description": None, "position": None}, headers=admin_headers
    ).json()
    assert cleared["description"] is None
    assert cleared["position"] is None
    assert cleared["name"] == "Pie"
    assert cleared["probability"] == 30


def test_prize_with_results_cannot_be_deleted(client, admin_headers, make_prize, make_token):
    p = make_prize("Cake", 100)
    make_token("CAKE2345")
    client.post("/api/wheel/spin", json={"token_code": "CAKE2345"})

    resp = client.delete(f"/api/admin/prizes/{p.id}", headers=admin_headers)
    assert resp.status_code == 409


def test_results_and_stats(client, admin_headers, make_prize, make_token):
    make_prize("Cake", 100)
    for c in ("RESA2345", "RESB2345", "RESC2345"):
        make_token(c)
        client.post("/api/wheel/spin", json={"token_code": c}, headers={"User-Agent": "ua"})

    page = client.get("/api/admin/results?page=1&limit=2", headers=admin_headers).json()
    assert len(page["results"]) == 2
    assert page["results"][0]["token_code"] == "RESC2345"
    assert page["results"][0]["prize_name"] == "Cake"
    assert page["results"][0]["user_agent"] == "ua"
    assert page["pagination"]["total"] == 3
    assert page["pagination"]["has_more"] is True

    stats = client.get("/api/admin/results/stats", headers=admin_headers).json()
    assert stats == {
        "total_spins": 3,
        "unique_tokens": 3,
        "prize_stats": {"Cake": 3},
        "most_popular_prize": "Cake",
    }
