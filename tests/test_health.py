import pytest


@pytest.mark.anyio("asyncio")
async def test_healthcheck(client):
    response = await client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] in {"ok", "degraded"}
    assert payload["db_status"] in {"ok", "error"}
    assert payload["migrations_status"] in {"up_to_date", "out_of_date", "unknown"}
    assert payload["stripe"]["webhook_secret_status"] in {"missing", "ok", "rotating"}
    fps = payload["stripe"]["webhook_secret_fingerprints"]
    assert fps["primary"] is not None
    assert fps["next"] is None
    assert "payment_intent.succeeded" in payload["webhook_event_types"]
    assert isinstance(payload["scheduler_config_enabled"], bool)
    assert isinstance(payload["scheduler_running"], bool)


@pytest.mark.anyio("asyncio")
async def test_health_degrades_on_db_failure(monkeypatch, client):
    class BrokenEngine:
        def connect(self):  # pragma: no cover - simple stub
            raise RuntimeError("DB down")

    monkeypatch.setattr("minerpay.routers.health.get_engine", lambda: BrokenEngine())

    response = await client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "degraded"
    assert payload["db_status"] == "error"
    assert payload["db_ok"] is False
    assert payload["migrations_ok"] is False
