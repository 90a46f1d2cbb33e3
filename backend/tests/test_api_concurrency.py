"""Concurrency-focused tests exercising the API's per-request isolation."""

from concurrent.futures import ThreadPoolExecutor, as_completed

from fastapi.testclient import TestClient

from backend.app.main import app

client = TestClient(app)


def _post_run(payload):
    r = client.post("/run", json=payload)
    return payload["tag"], r.status_code, r.json()


def test_concurrent_runs_isolated():
    # three different jobs; one of them hits its own step cap
    jobs = [
        {"tag": "walk", "code": "for i in range(9):\n    move()", "settings": {"max_steps": 1000}},
        {"tag": "spin", "code": "while True:\n    turn_left()", "settings": {"max_steps": 20}},
        {"tag": "turn", "code": "turn_left()", "settings": {}},
    ]

    results = {}
    with ThreadPoolExecutor(max_workers=3) as ex:
        futures = [ex.submit(_post_run, j) for j in jobs]
        for fut in as_completed(futures):
            tag, status, body = fut.result()
            results[tag] = (status, body)

    assert len(results) == 3
    assert all(status == 200 for status, _ in results.values())

    walk = results["walk"][1]
    assert walk["status"] == "success"
    assert walk["world"]["robot"]["position"] == {"x": 10, "y": 1}

    spin = results["spin"][1]
    assert spin["errors"]["code"] == "STEP_LIMIT"
    assert len(spin["frames"]) == 20

    turn = results["turn"][1]
    assert turn["status"] == "success"
    assert turn["world"]["robot"] == {"position": {"x": 1, "y": 1}, "direction": "north", "beeper_bag": 0}
