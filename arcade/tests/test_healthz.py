from sqlalchemy import create_engine

from arcade.api.deps import get_store
from arcade.core.database import build_engine
from arcade.main import app


def test_healthz_always_ok(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json().get("status") == "ok"


def test_readyz_ok_with_tables(client):
    resp = client.get("/readyz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_readyz_reports_missing_tables(client):
    empty = build_engine("sqlite+pysqlite://")
    app.dependency_overrides[get_store] = lambda: empty

    resp = client.get("/readyz")
    assert resp.status_code == 503
    assert "user_credits" in resp.json()["detail"]


def test_readyz_database_unreachable(client):
    broken = create_engine("sqlite:////nonexistent-dir/arcade.db")
    app.dependency_overrides[get_store] = lambda: broken

    resp = client.get("/readyz")
    assert resp.status_code == 503
    assert resp.json()["detail"] == "database unreachable"
