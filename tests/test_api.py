"""HTTP and WebSocket surface tests."""

import time

import pytest
from fastapi.testclient import TestClient

from conftest import scratch_files
from coderunner.api import deps
from coderunner.api.routers import tutor as tutor_router
from coderunner.main import app
from coderunner.services.history import RecentRuns


@pytest.fixture
def history():
    return RecentRuns(limit=3)


@pytest.fixture
def client(engine, settings, history):
    app.dependency_overrides[deps.get_engine] = lambda: engine
    app.dependency_overrides[deps.get_history] = lambda: history
    app.dependency_overrides[deps.get_app_settings] = lambda: settings
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def receive_until_terminal(ws, limit=100):
    events = []
    for _ in range(limit):
        event = ws.receive_json()
        events.append(event)
        if event["type"] in ("exit", "error"):
            return events
    raise AssertionError(f"no terminal event in {events!r}")


def test_health(client):
    assert client.get("/api/health").json() == {"ok": True}


def test_run_endpoint(client, scratch):
    resp = client.post("/api/run", json={"language": "python", "code": "print(input() + '!')", "input": "hi\n"})

    assert resp.status_code == 200
    assert resp.json() == {"stdout": "hi!\n", "stderr": "", "code": 0}
    assert scratch_files(scratch) == []


def test_run_endpoint_unsupported_language(client):
    resp = client.post("/api/run", json={"language": "cobol", "code": "x"})

    assert resp.status_code == 400
    assert resp.json() == {"stdout": "", "stderr": "Unsupported language: cobol", "code": -1}


def test_run_endpoint_timeout(client, settings):
    settings.RUN_TIME_LIMIT_S = 0.5
    resp = client.post("/api/run", json={"language": "python", "code": "while True: pass"})

    assert resp.status_code == 500
    assert resp.json()["stderr"] == "Program timed out after 0.5 seconds"


def test_run_endpoint_rejects_malformed_body(client):
    resp = client.post("/api/run", json={"language": "python"})
    assert resp.status_code == 422


def test_recent_runs_newest_first_and_bounded(client):
    for i in range(5):
        client.post("/api/run", json={"language": "python", "code": f"print({i})"})
    client.post("/api/run", json={"language": "cobol", "code": "x"})

    runs = client.get("/api/recent-runs").json()

    assert len(runs) == 3
    assert runs[0]["language"] == "cobol"
    assert runs[0]["result"]["code"] == -1
    assert runs[1]["result"]["stdout"] == "4\n"
    assert runs[2]["code"] == "print(3)"
    assert "timestamp" in runs[0]


def test_ws_run_streams_and_exits(client, scratch):
    with client.websocket_connect("/api/ws") as ws:
        ws.send_json({"type": "run", "language": "python", "code": "import sys; sys.stdout.write('hello\\n')"})
        events = receive_until_terminal(ws)

    assert events == [{"type": "stdout", "data": "hello\n"}, {"type": "exit", "code": 0}]
    assert scratch_files(scratch) == []


def test_ws_input_and_kill(client, scratch):
    code = "import sys\nwhile True:\n    sys.stdout.write('echo:' + input() + '\\n')\n"
    with client.websocket_connect("/api/ws") as ws:
        ws.send_json({"type": "run", "language": "python", "code": code})
        ws.send_json({"type": "input", "data": "hello"})
        assert ws.receive_json() == {"type": "stdout", "data": "echo:hello\n"}

        ws.send_json({"type": "run", "language": "python", "code": "print(1)"})
        assert ws.receive_json() == {"type": "error", "error": "A program is still running."}

        ws.send_json({"type": "kill"})
        assert receive_until_terminal(ws) == [{"type": "exit", "code": "manual_kill"}]

    assert scratch_files(scratch) == []


def test_ws_invalid_json(client):
    with client.websocket_connect("/api/ws") as ws:
        ws.send_text("not json")
        assert ws.receive_json() == {"type": "error", "error": "Invalid JSON"}
        ws.send_json({"type": "run", "language": "ruby", "code": "puts 1"})
        assert ws.receive_json() == {"type": "error", "error": "Unsupported language: ruby"}


def test_ws_disconnect_purges_running_program(client, scratch):
    code = "import sys, time\nsys.stdout.write('up\\n')\ntime.sleep(30)\n"
    with client.websocket_connect("/api/ws") as ws:
        ws.send_json({"type": "run", "language": "python", "code": code})
        assert ws.receive_json() == {"type": "stdout", "data": "up\n"}
        assert scratch_files(scratch) != []

    # leaving the block closes the socket; teardown finishes on the server loop
    deadline = time.monotonic() + 10
    while scratch_files(scratch) and time.monotonic() < deadline:
        time.sleep(0.05)
    assert scratch_files(scratch) == []


def test_tutor_requires_api_key(client):
    resp = client.post("/api/tutor", json={"prompt": "What is recursion?"})
    assert resp.status_code == 500
    assert resp.json()["detail"] == "Missing OpenAI API key"


def test_tutor_requires_prompt(client, settings):
    settings.OPENAI_API_KEY = "sk-test"
    resp = client.post("/api/tutor", json={"prompt": "   "})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Prompt is required"


def test_tutor_returns_completion(client, settings, monkeypatch):
    settings.OPENAI_API_KEY = "sk-test"
    seen = {}

    async def fake_complete(cfg, prompt, max_tokens):
        seen["prompt"] = prompt
        return "Recursion is a function calling itself."

    monkeypatch.setattr(tutor_router, "_complete", fake_complete)
    resp = client.post("/api/tutor", json={"prompt": "What is recursion?"})

    assert resp.status_code == 200
    assert resp.json() == {"response": "Recursion is a function calling itself.", "model": settings.AI_MODEL}
    assert seen["prompt"] == "What is recursion?"


def test_tutor_upstream_failure(client, settings, monkeypatch):
    settings.OPENAI_API_KEY = "sk-test"

    async def failing(cfg, prompt, max_tokens):
        raise RuntimeError("rate limited")

    monkeypatch.setattr(tutor_router, "_complete", failing)
    resp = client.post("/api/tutor", json={"prompt": "hi"})

    assert resp.status_code == 500
    assert resp.json()["detail"] == "rate limited"
