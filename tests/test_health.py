# tests/test_health.py
from fastapi.testclient import TestClient


def test_health_check(client: TestClient):
    """Test the health check endpoint."""
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["database"] == "connected"


def test_health_check_reports_database_errors(client: TestClient, monkeypatch):
    monkeypatch.setenv("SUPABASE_DB_URL", "sqlite:///nonexistent-dir/ledger.db")

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["database"] == "error"
