"""API smoke tests using FastAPI TestClient."""

from fastapi.testclient import TestClient

from backend.app.main import app

client = TestClient(app)


def test_run_default_world():
    r = client.post("/run", json={"code": "move()"})
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "success"
    assert body["errors"] is None
    assert body["world"]["robot"]["position"] == {"x": 2, "y": 1}
    assert body["frames"] == [{"step": 1, "line": 1, "primitive": "move"}]


def test_run_requires_code():
    r = client.post("/run", json={})
    assert r.status_code == 422


def test_presets():
    r = client.get("/presets")
    assert r.status_code == 200
    assert r.json()["Instant"] == 0
