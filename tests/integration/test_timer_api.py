import time

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from ctrlsys.main import create_app


@pytest.fixture
def client(tmp_path):
    app = create_app(
        store_backend="sql",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'api.db'}",
        sweep_interval=0.2,
        ws_push_interval=0.2,
        api_tokens=[],
    )
    with TestClient(app) as c:
        yield c


def _create(client, **body):
    payload = {"name": "tea", "duration_seconds": 60}
    payload.update(body)
    resp = client.post("/api/timers", json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_timer_runs_to_completion(client):
    created = _create(client, name="short", duration_seconds=2, labels={"room": "lab"})
    assert created["status"] == "running"
    assert created["labels"] == {"room": "lab"}
    assert created["created_by"] == "api"

    resp = client.get(f"/api/timers/{created['id']}")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "running"
    assert 1 <= body["remaining_seconds"] <= 2

    time.sleep(3)
    body = client.get(f"/api/timers/{created['id']}").json()
    assert body["status"] == "completed"
    assert body["remaining_seconds"] == 0


def test_pending_timer_has_no_remaining(client):
    created = _create(client, auto_start=False)
    assert created["status"] == "pending"
    assert created["remaining_seconds"] is None
    assert created["expires_at"] is None

    started = client.post(f"/api/timers/{created['id']}/start").json()
    assert started["status"] == "running"
    assert started["expires_at"] is not None


def test_validation_errors(client):
    resp = client.post("/api/timers", json={"name": "x", "duration_seconds": 0})
    assert resp.status_code == 422
    assert resp.json()["error"] == "validation_error"

    resp = client.post("/api/timers", json={"name": "x", "duration_seconds": 86401})
    assert resp.status_code == 422

    resp = client.post("/api/timers", json={"duration_seconds": 5})
    assert resp.status_code == 422


def test_unknown_timer_is_404(client):
    resp = client.get("/api/timers/nope")
    assert resp.status_code == 404
    assert resp.json() == {"error": "not_found", "detail": "Timer nope not found"}
    assert client.delete("/api/timers/nope").status_code == 404
    assert client.post("/api/timers/nope/start").status_code == 404


def test_cancel_is_idempotent_and_listed_last(client):
    keep = _create(client, name="keep")
    drop = _create(client, name="drop")

    first = client.delete(f"/api/timers/{drop['id']}")
    second = client.delete(f"/api/timers/{drop['id']}")
    assert first.status_code == second.status_code == 200
    assert second.json()["status"] == "cancelled"

    listed = client.get("/api/timers").json()
    assert [t["id"] for t in listed] == [keep["id"], drop["id"]]


def test_completed_timer_conflicts(client):
    created = _create(client, duration_seconds=1)
    deadline = time.time() + 5
    while client.get(f"/api/timers/{created['id']}").json()["status"] != "completed":
        assert time.time() < deadline
        time.sleep(0.1)

    resp = client.delete(f"/api/timers/{created['id']}")
    assert resp.status_code == 409
    assert resp.json()["error"] == "invalid_transition"

    resp = client.patch(f"/api/timers/{created['id']}", json={"labels": {"a": "b"}})
    assert resp.status_code == 409


def test_patch_labels_and_status(client):
    created = _create(client, auto_start=False)
    resp = client.patch(f"/api/timers/{created['id']}", json={"labels": {"k": "v"}, "status": "running"})
    assert resp.status_code == 200
    assert resp.json()["labels"] == {"k": "v"}
    assert resp.json()["status"] == "running"

    resp = client.patch(f"/api/timers/{created['id']}", json={"status": "completed"})
    assert resp.status_code == 400


def test_purge_deletes_the_row(client):
    created = _create(client)
    resp = client.delete(f"/api/timers/{created['id']}", params={"purge": "true"})
    assert resp.status_code == 204
    assert client.get(f"/api/timers/{created['id']}").status_code == 404


def test_websocket_snapshot_then_updates_until_cancelled(client):
    created = _create(client, duration_seconds=60)
    with client.websocket_connect(f"/api/timers/{created['id']}/ws") as ws:
        snapshot = ws.receive_json()
        assert snapshot["event"] == "snapshot"
        assert snapshot["id"] == created["id"]
        assert snapshot["status"] == "running"

        tick = ws.receive_json()
        assert tick["event"] == "tick"
        assert tick["remaining_seconds"] <= 60

        client.delete(f"/api/timers/{created['id']}")
        last = ws.receive_json()
        while last["status"] != "cancelled":
            last = ws.receive_json()
        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_json()
    assert exc_info.value.code == 1000


def test_websocket_unknown_timer_closes_4404(client):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect("/api/timers/missing/ws") as ws:
            ws.receive_json()
    assert exc_info.value.code == 4404


def test_health_and_metrics(client):
    _create(client)
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"

    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "ctrlsys_timers_created_total" in resp.text
    assert 'ctrlsys_timer_transitions_total{status="running"}' in resp.text
    assert "ctrlsys_stream_subscribers" in resp.text


def _report(timer_id):
    return {
        "timer_id": timer_id,
        "metadata": {
            "timer_id": timer_id,
            "name": "job",
            "labels": {},
            "duration_seconds": 5,
            "created_at": "2026-03-01T09:00:00Z",
            "created_by": "scheduler",
        },
        "total_duration_seconds": 5,
        "completed_at": "2026-03-01T09:00:05Z",
    }


def test_control_plane_receives_completion_reports(client):
    resp = client.post("/api/control-plane/timers/job-1/complete", json=_report("job-1"))
    assert resp.status_code == 200
    assert resp.json() == {"acknowledged": True, "timer_id": "job-1", "duplicate": False}

    resp = client.post("/api/control-plane/timers/job-1/complete", json=_report("job-1"))
    assert resp.json()["duplicate"] is True

    resp = client.post("/api/control-plane/timers/job-2/complete", json=_report("job-1"))
    assert resp.status_code == 400

    listed = client.get("/api/control-plane/completions").json()
    assert [c["timer_id"] for c in listed] == ["job-1"]
    assert client.get("/api/control-plane/completions/job-1").json()["name"] == "job"


def test_bearer_token_required_when_configured(tmp_path):
    app = create_app(
        store_backend="memory",
        api_tokens=["s3cret"],
        start_sweeper=False,
    )
    with TestClient(app) as c:
        assert c.get("/api/timers").status_code == 401
        assert c.get("/api/timers", headers={"Authorization": "Bearer wrong"}).status_code == 401
        assert c.get("/api/timers", headers={"Authorization": "Bearer s3cret"}).status_code == 200
        assert c.get("/health").status_code == 200

        with pytest.raises(WebSocketDisconnect) as exc_info:
            with c.websocket_connect("/api/timers/any/ws") as ws:
                ws.receive_json()
        assert exc_info.value.code == 1008

        with pytest.raises(WebSocketDisconnect) as exc_info:
            with c.websocket_connect("/api/timers/any/ws?token=s3cret") as ws:
                ws.receive_json()
        assert exc_info.value.code == 4404
