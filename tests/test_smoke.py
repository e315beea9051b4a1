def test_import_app(monkeypatch):
    # Minimal env for Settings() to load during import.
    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite:///:memory:")
    monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/0")
    monkeypatch.setenv("ADMIN_TOKEN", "change-me-admin-token")

    import erp_outbox.main  # noqa: F401


def test_health_reports_dependencies(monkeypatch):
    from fastapi.testclient import TestClient

    import erp_outbox.main as main

    monkeypatch.setattr(main, "_check_redis", lambda: False)
    r = TestClient(main.app).get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["deps"] == {"database": True, "redis": False}
    assert body["ok"] is False
