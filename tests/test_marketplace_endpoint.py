from fastapi.testclient import TestClient

from conftest import seed_inventory
from fulfillment_engine.main import app

client = TestClient(app)


def test_health_and_root():
    assert client.get("/health").json() == {"status": "healthy"}
    assert client.get("/").json()["status"] == "ok"


def test_request_id_is_echoed():
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


def test_availability_counts_unassigned_units(fake_db):
    seed_inventory(fake_db, 6)
    fake_db.tables["marketplace_leads"][0].update({"status": "assigned", "assigned_to": "user-1"})
    response = client.get("/marketplace/availability")
    assert response.status_code == 200
    assert response.json() == {"available": 5}
