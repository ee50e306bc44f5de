import pytest
from fastapi.testclient import TestClient

from lightrelay.core.config import Settings
from lightrelay.core.security import create_access_token
from lightrelay.main import create_app

SECRET = "test-secret"


@pytest.fixture
def client(session_factory):
    settings = Settings(JANITOR_ENABLED=False, JWT_SECRET_KEY=SECRET)
    app = create_app(settings, session_factory=session_factory)
    with TestClient(app) as test_client:
        yield test_client


def auth(uid="guest-a"):
    return {"Authorization": f"Bearer {create_access_token(uid, secret_key=SECRET)}"}


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_requires_authentication(client):
    response = client.post("/api/v1/commands/turn-off")
    assert response.status_code == 401
    assert response.json()["error"] == "AuthError"
    assert response.headers["WWW-Authenticate"] == "Bearer"

    response = client.get("/api/v1/commands/pending", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


def test_token_signed_with_other_secret_rejected(client):
    token = create_access_token("guest-a", secret_key="someone-else")
    response = client.get("/api/v1/commands/pending", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


def test_theme_is_queued(client):
    response = client.post(
        "/api/v1/commands/theme",
        json={"theme": "girl", "brightness": 255},
        headers=auth(),
    )
    assert response.status_code == 201
    body = response.json()
    assert body["command"] == "set_theme"
    assert body["path"] == "buffered"

    pending = client.get("/api/v1/commands/pending", headers=auth("executor")).json()
    assert len(pending) == 1
    assert pending[0]["id"] == body["command_id"]
    assert pending[0]["status"] == "pending"
    assert pending[0]["createdBy"] == "guest-a"
    assert pending[0]["parameters"] == {"theme": "girl", "brightness": 255, "permanent": False}


def test_invalid_brightness_writes_nothing(client):
    response = client.post(
        "/api/v1/commands/theme",
        json={"theme": "girl", "brightness": 300},
        headers=auth(),
    )
    assert response.status_code == 422
    assert response.json()["error"] == "CommandValidationError"
    assert "brightness" in response.json()["detail"]

    assert client.get("/api/v1/commands/pending", headers=auth()).json() == []


def test_generic_command_endpoint(client):
    response = client.post(
        "/api/v1/commands",
        json={"command": "run_effect", "parameters": {"effect": "sparkle", "speed": 40, "brightness": 180}},
        headers=auth(),
    )
    assert response.status_code == 201

    response = client.post(
        "/api/v1/commands",
        json={"command": "explode", "parameters": {}},
        headers=auth(),
    )
    assert response.status_code == 422


def test_executor_status_updates(client):
    command_id = client.post(
        "/api/v1/commands/color",
        json={"red": 0, "green": 191, "blue": 255, "brightness": 200},
        headers=auth(),
    ).json()["command_id"]

    response = client.patch(
        f"/api/v1/commands/{command_id}/status",
        json={"status": "processing"},
        headers=auth("executor"),
    )
    assert response.status_code == 200
    assert response.json()["envelope"]["status"] == "processing"
    assert client.get("/api/v1/commands/pending", headers=auth()).json() == []

    response = client.patch(
        f"/api/v1/commands/{command_id}/status",
        json={"status": "completed"},
        headers=auth("executor"),
    )
    assert response.status_code == 200
    assert response.json()["deleted"] is False

    response = client.patch(
        f"/api/v1/commands/{command_id}/status",
        json={"status": "pending"},
        headers=auth("executor"),
    )
    assert response.status_code == 409

    envelope = client.get(f"/api/v1/commands/{command_id}", headers=auth()).json()
    assert envelope["status"] == "completed"
    assert envelope["processedAt"] is not None


def test_unknown_command_lookups(client):
    assert client.get("/api/v1/commands/missing", headers=auth()).status_code == 404

    response = client.patch(
        "/api/v1/commands/missing/status",
        json={"status": "completed"},
        headers=auth(),
    )
    assert response.status_code == 404

    response = client.delete("/api/v1/commands/missing", headers=auth())
    assert response.status_code == 200
    assert response.json() == {"command_id": "missing", "deleted": False}


def test_delete_command(client):
    command_id = client.post("/api/v1/commands/turn-off", headers=auth()).json()["command_id"]

    response = client.delete(f"/api/v1/commands/{command_id}", headers=auth())
    assert response.json()["deleted"] is True
    assert client.get(f"/api/v1/commands/{command_id}", headers=auth()).status_code == 404


def test_low_latency_without_realtime_store(client):
    response = client.post(
        "/api/v1/commands/blinking?path=low_latency",
        json={"duration": 5000, "brightness": 255},
        headers=auth(),
    )
    assert response.status_code == 502
    assert response.json()["error"] == "StoreError"


def test_cleanup_endpoints(client):
    response = client.post("/api/v1/commands/cleanup?older_than_hours=24", headers=auth())
    assert response.status_code == 200
    assert response.json() == {
        "store": "buffered", "deleted": 0, "failed": 0, "complete": True, "error": None
    }

    command_id = client.post("/api/v1/commands/turn-off", headers=auth()).json()["command_id"]
    client.patch(f"/api/v1/commands/{command_id}/status", json={"status": "failed"}, headers=auth())

    # Zero retention removes every resolved command
    response = client.post("/api/v1/commands/cleanup?older_than_hours=0", headers=auth())
    assert response.json()["deleted"] == 1

    response = client.post("/api/v1/commands/cleanup/realtime", headers=auth())
    assert response.json()["store"] == "realtime"
    assert response.json()["deleted"] == 0


def test_device_configuration(client):
    assert client.get("/api/v1/device", headers=auth()).json() == {
        "ip_address": None, "configured": False
    }
    assert client.post("/api/v1/device/rainbow", headers=auth()).status_code == 409

    response = client.put("/api/v1/device", json={"ip_address": " 192.168.1.50 "}, headers=auth())
    assert response.json() == {"ip_address": "192.168.1.50", "configured": True}

    response = client.delete("/api/v1/device", headers=auth())
    assert response.json() == {"cleared": True}
    assert client.get("/api/v1/device", headers=auth()).json()["configured"] is False


def test_server_entry_point_loads_app():
    import uvicorn

    config = uvicorn.Config("lightrelay.main:app")
    config.load()
    assert config.loaded_app is not None
