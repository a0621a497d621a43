# ============================================================================
# tests/unit/test_api.py
# ============================================================================
"""
Tests for the FastAPI session routes
"""

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from api.main import app, services, sessions
from notarial_intake.cache import FingerprintKey, FingerprintStore
from notarial_intake.config import base_settings
from notarial_intake.core import SessionStore


@pytest.fixture
def fake_client(extraction_client_factory):
    return extraction_client_factory(responses={
        "ine_comprador.png": {"buyers": [{"name": "Juan Pérez García", "tax_id": "PEGJ850505XY2"}]},
    })


@pytest.fixture
def session_store(tmp_path):
    return SessionStore(tmp_path / "sessions.db")


@pytest.fixture
def client(tmp_path, monkeypatch, fake_client, session_store):
    monkeypatch.setattr(base_settings, "DATA_DIR", tmp_path / "data")
    monkeypatch.setattr(base_settings, "CACHE_DIR", tmp_path / "cache")
    monkeypatch.setattr(base_settings, "SESSION_DB_PATH", tmp_path / "sessions.db")
    services.clear()
    sessions.clear()
    services.update({
        "extraction_client": fake_client,
        "cache_check": None,
        "uploader": None,
        "session_store": session_store,
        "store": None,
    })
    with TestClient(app) as test_client:
        yield test_client
    services.clear()
    sessions.clear()


def _upload(client, session_id, png_bytes, name="ine_comprador.png", **data):
    return client.post(
        f"/api/sessions/{session_id}/documents",
        files=[("files", (name, png_bytes, "image/png"))],
        data=data,
    )


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "active_sessions": 0}


def test_upload_batch(client, png_bytes, fake_client):
    response = _upload(client, "s-1", png_bytes, case_id="T-1", last_question="¿Nombre del comprador?")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "completed"
    assert body["total_pages"] == 1
    assert body["documents"][0]["subtype"] == "identification"
    assert body["documents"][0]["processed"] is True
    assert body["wizard"]["current_step"] == "payment_method"
    assert fake_client.requests[0].case_id == "T-1"


def test_record_wizard_and_documents(client, png_bytes):
    _upload(client, "s-1", png_bytes)

    record = client.get("/api/sessions/s-1/record").json()
    assert record["buyers"][0]["tax_id"] == "PEGJ850505XY2"

    wizard = client.get("/api/sessions/s-1/wizard").json()
    assert wizard["steps"]["buyers"] == "completed"

    documents = client.get("/api/sessions/s-1/documents").json()
    assert [d["name"] for d in documents["documents"]] == ["ine_comprador.png"]
    assert documents["progress"] == {"ine_comprador.png": 100}


def test_empty_file_is_rejected(client):
    response = _upload(client, "s-1", b"")
    assert response.status_code == 400


def test_unknown_session(client):
    assert client.get("/api/sessions/nope/record").status_code == 404
    assert client.post("/api/sessions/nope/cancel").status_code == 404


def test_cancel_without_running_batch(client, png_bytes):
    _upload(client, "s-1", png_bytes)

    response = client.post("/api/sessions/s-1/cancel")

    assert response.status_code == 200
    assert response.json() == {"session_id": "s-1", "cancelled": False}


def test_stored_session_is_resumed(client, session_store, complete_record):
    session_store.save("s-old", complete_record.to_dict())

    record = client.get("/api/sessions/s-old/record").json()
    wizard = client.get("/api/sessions/s-old/wizard").json()

    assert record["property"]["folio_real"] == "1234567"
    assert wizard["ready"] is True
    assert "s-old" in sessions


def test_shutdown_drops_expired_cache_entries(client, tmp_path):
    store = FingerprintStore(cache_dir=tmp_path / "page-cache")
    store.put(FingerprintKey("abc123", "escritura-p1.png", "deed"), {"payload": {}, "raw_text": "x"}, ttl=60)
    next(iter(store._cache.values())).created_at = datetime.now() - timedelta(seconds=120)
    services["store"] = store

    with TestClient(app):
        pass

    assert len(store) == 0
    assert store.get_statistics()["expirations"] == 1
    assert (tmp_path / "page-cache" / FingerprintStore.CACHE_FILE).exists()
