from fastapi.testclient import TestClient

from conftest import FakeAPIError, seed_inventory
from fulfillment_engine import observability
from fulfillment_engine.auth import dependencies
from fulfillment_engine.main import app
from fulfillment_engine.observability import incr_metric, metrics_snapshot
from fulfillment_engine.services import signup_grants

client = TestClient(app)
SECRET = "backfill-secret"


def _admin(monkeypatch, secret=SECRET):
    monkeypatch.setattr(dependencies.settings, "admin_backfill_secret", secret)
    return {"X-Admin-Secret": SECRET}


def test_admin_endpoints_unavailable_without_configured_secret(fake_db, monkeypatch):
    monkeypatch.setattr(dependencies.settings, "admin_backfill_secret", None)
    response = client.post("/admin/backfill-starter", headers={"X-Admin-Secret": SECRET})
    assert response.status_code == 503


def test_admin_endpoints_reject_wrong_secret(fake_db, monkeypatch):
    _admin(monkeypatch)
    assert client.post("/admin/backfill-starter").status_code == 401
    response = client.post("/admin/backfill-starter", headers={"X-Admin-Secret": "nope"})
    assert response.status_code == 401
    assert response.json()["detail"] == "invalid admin secret"
    assert client.get("/admin/metrics", headers={"X-Admin-Secret": "nope"}).status_code == 401


def test_non_ascii_admin_secret_is_rejected_not_crashed(fake_db, monkeypatch):
    _admin(monkeypatch)
    headers = {"X-Admin-Secret": "cl\u00e9-secr\u00e8te".encode("utf-8")}
    response = client.post("/admin/backfill-starter", headers=headers)
    assert response.status_code == 401


def test_backfill_grants_unclaimed_users_and_skips_the_rest(fake_db, monkeypatch):
    headers = _admin(monkeypatch)
    monkeypatch.setattr(signup_grants.settings, "free_signup_leads", 2)
    monkeypatch.setattr(signup_grants.settings, "backfill_page_size", 2)
    seed_inventory(fake_db, 10)
    fake_db.users = ["u-new-1", "u-claimed", "u-has-leads", "u-new-2", "u-new-3"]
    fake_db.tables["signup_grants"] = [{"id": "g-0", "user_id": "u-claimed", "ip_hash": "h", "created_at": "2026-01-01T00:00:00+00:00"}]
    fake_db.tables["leads"] = [{"id": "lead-0", "user_id": "u-has-leads", "source_lead_id": "legacy"}]

    response = client.post("/admin/backfill-starter", headers=headers)

    assert response.status_code == 200
    assert response.json() == {"processed": 5, "granted": 3, "skipped": 2}
    grants = {row["user_id"]: row for row in fake_db.rows("signup_grants")}
    assert set(grants) == {"u-claimed", "u-new-1", "u-new-2", "u-new-3"}
    assert grants["u-new-1"]["ip_hash"] == signup_grants.backfill_ip_hash("u-new-1")
    snapshots = fake_db.rows("observability_metric_snapshots")
    assert len(snapshots) == 1
    assert snapshots[0]["source"] == "backfill_starter"


def test_backfill_stops_when_pool_cannot_cover_a_full_grant(fake_db, monkeypatch):
    headers = _admin(monkeypatch)
    monkeypatch.setattr(signup_grants.settings, "free_signup_leads", 5)
    seed_inventory(fake_db, 7)
    fake_db.users = ["u-1", "u-2", "u-3"]

    response = client.post("/admin/backfill-starter", headers=headers)

    assert response.json() == {
        "processed": 2,
        "granted": 1,
        "skipped": 0,
        "stoppedReason": "insufficient_inventory",
    }
    assert [row["user_id"] for row in fake_db.rows("signup_grants")] == ["u-1"]
    owned_by_u2 = [row for row in fake_db.rows("leads") if row["user_id"] == "u-2"]
    assert owned_by_u2 == []
    available = [row for row in fake_db.rows("marketplace_leads") if row["status"] == "available"]
    assert len(available) == 2


def test_backfill_with_no_users(fake_db, monkeypatch):
    headers = _admin(monkeypatch)
    response = client.post("/admin/backfill-starter", headers=headers)
    assert response.json() == {"processed": 0, "granted": 0, "skipped": 0}


def test_metrics_snapshot_endpoint(fake_db, monkeypatch):
    headers = _admin(monkeypatch)
    incr_metric("fulfillment.granted", source="ledger")
    response = client.get("/admin/metrics", headers=headers)
    assert response.status_code == 200
    assert response.json()["counters"]["fulfillment.granted|source=ledger"] == 1


def test_metrics_flush_persists_and_resets(fake_db, monkeypatch):
    headers = _admin(monkeypatch)
    monkeypatch.setattr(observability.settings, "observability_export_url", None)
    incr_metric("webhook.events.received")

    response = client.post(
        "/admin/metrics/flush",
        json={"source": "cron", "reset_after_persist": True},
        headers=headers,
    )

    body = response.json()
    assert body["persisted"] is True
    assert body["source"] == "cron"
    assert body["counter_count"] == 1
    snapshot = fake_db.rows("observability_metric_snapshots")[0]
    assert snapshot["counters"] == {"webhook.events.received": 1}
    assert metrics_snapshot() == {}


def test_metrics_flush_exports_when_configured(fake_db, monkeypatch):
    headers = _admin(monkeypatch)
    monkeypatch.setattr(observability.settings, "observability_export_url", "https://metrics.example.com/ingest")
    monkeypatch.setattr(observability.settings, "observability_export_bearer_token", "export-token")
    sent = {}

    class FakeResponse:
        status_code = 202
        text = "accepted"

    class FakeClient:
        def __init__(self, timeout):
            sent["timeout"] = timeout

        def __enter__(self):
            return self

        def __exit__(self, *args):
            return False

        def post(self, url, headers, json):
            sent.update({"url": url, "headers": headers, "json": json})
            return FakeResponse()

    monkeypatch.setattr(observability.httpx, "Client", FakeClient)
    incr_metric("signup_grant.granted")

    response = client.post("/admin/metrics/flush", json={}, headers=headers)

    assert response.json()["persisted"] is True
    assert sent["url"] == "https://metrics.example.com/ingest"
    assert sent["headers"]["Authorization"] == "Bearer export-token"
    assert sent["json"]["source"] == "manual_flush"
    assert sent["json"]["counters"] == {"signup_grant.granted": 1}


def test_metrics_flush_reports_persist_failure(fake_db, monkeypatch):
    headers = _admin(monkeypatch)
    fake_db.failures[("observability_metric_snapshots", "insert")] = FakeAPIError("denied", "42501")
    response = client.post("/admin/metrics/flush", json={}, headers=headers)
    assert response.status_code == 200
    assert response.json()["persisted"] is False
