from unittest.mock import MagicMock

from storefront.health import service as health_service


def test_health_root(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"ok": True}


def test_health_supabase(client, monkeypatch):
    monkeypatch.setattr("storefront.health.router.health_supabase_info", lambda: {"ok": True, "tables": {"orders": "ok"}})
    res = client.get("/health/supabase")
    assert res.status_code == 200
    assert res.json()["tables"]["orders"] == "ok"


def test_health_rate_limit_reports_worker(client):
    # INVENTORY_RETRY_INTERVAL_SECONDS=0 dans les tests: worker non démarré
    info = client.get("/health/rate-limit").json()
    assert info["inventory_worker"] is False
    assert "ready" in info


def test_security_headers_and_csrf_cookie(client):
    res = client.get("/health")
    assert res.headers["X-Frame-Options"] == "DENY"
    assert res.headers["X-Content-Type-Options"] == "nosniff"
    assert "csrf_token" in res.cookies


def test_cookie_session_requires_csrf_header(client):
    client.cookies.set("sb_access", "token")
    res = client.post("/api/v1/orders/checkout", json={})
    assert res.status_code == 403


def test_health_supabase_info_checks_each_table(monkeypatch):
    # Arrange
    monkeypatch.setattr("storefront.config.SUPABASE_URL", "")
    supabase = MagicMock()
    monkeypatch.setattr("storefront.infra.supabase_client.get_service_supabase", lambda: supabase)
    # Act
    info = health_service.health_supabase_info()
    # Assert
    assert set(info["tables"]) == set(health_service.CHECKED_TABLES)
