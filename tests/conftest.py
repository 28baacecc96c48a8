import pytest
from fastapi.testclient import TestClient

from config import Settings
from main import create_app


@pytest.fixture
def settings(tmp_path):
    return Settings(
        data_dir=str(tmp_path / "data"),
        upload_dir=str(tmp_path / "uploads" / "checklist-photos"),
        jwt_secret="test-secret",
        timezone="UTC",
        log_level="WARNING",
    )


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    return TestClient(app)


def _login(client, username, password):
    resp = client.post("/auth/login", json={"username": username, "password": password})
    assert resp.status_code == 200, resp.text
    return resp.json()


@pytest.fixture
def admin_headers(client):
    token = _login(client, "admin", "admin123")["token"]
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def technician(client, admin_headers):
    resp = client.post(
        "/users",
        json={"username": "tech1", "password": "pw-tech1", "name": "Tech One"},
        headers=admin_headers,
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.fixture
def tech_headers(client, technician):
    token = _login(client, "tech1", "pw-tech1")["token"]
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def references(client, admin_headers):
    """A client, one of its locations and a checklist type."""
    c = client.post("/clients", json={"name": "Central Tower"}, headers=admin_headers).json()
    loc = client.post(
        "/locations", json={"name": "Boiler room", "clientId": c["id"]}, headers=admin_headers
    ).json()
    t = client.post("/checklisttypes", json={"name": "Inspection"}, headers=admin_headers).json()
    return {"clientId": c["id"], "locationId": loc["id"], "typeId": t["id"]}
