from fastapi.testclient import TestClient

from backend.app import main

client = TestClient(main.app)


def test_api_step_limit_through_run(monkeypatch):
    # lower the server-side budget; the client cannot raise it back
    monkeypatch.setattr(main.controller_defaults, "max_steps", 5)
    payload = {"code": "while True:\n    turn_left()", "settings": {"max_steps": 1000000}}
    r = client.post("/run", json=payload)
    assert r.status_code == 200
    body = r.json()
    assert body["errors"] is not None
    assert body["errors"]["code"] == "STEP_LIMIT"
    assert len(body["frames"]) == 5


def test_api_time_limit_through_run(monkeypatch):
    monkeypatch.setattr(main.controller_defaults, "max_time_s", 0.2)
    payload = {"code": "while True:\n    pass", "settings": {"max_time_s": 1000}}
    r = client.post("/run", json=payload)
    body = r.json()
    assert body["errors"]["code"] == "TIMEOUT"


def test_client_may_lower_limits():
    payload = {"code": "for i in range(20):\n    turn_left()", "settings": {"max_steps": 3}}
    body = client.post("/run", json=payload).json()
    assert body["errors"]["code"] == "STEP_LIMIT"
