"""Integration tests for the HTTP API server (patchwright_cli/server.py).

Uses FastAPI TestClient against:
  GET  /health
  POST /run  (JSON and server-sent events)

The orchestrator dependency is overridden with one backed by a scripted
completion service so no real model calls are made.
"""
from __future__ import annotations

import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from core.events import EventType, PipelineEvent
from core.orchestrator import PipelineOrchestrator
from core.types import ChangeRequest
from memory.store import InMemoryContextStore
from patchwright_cli import server
from tests.fakes.fake_completion import ScriptedCompletion, code_reply, make_settings

EXISTING = {"App.jsx": "export default function App() { return <h1>Hi</h1>; }\n"}


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.delenv("PATCHWRIGHT_API_TOKEN", raising=False)
    completion = ScriptedCompletion({
        "intent": {"intent": "style_change", "confidence": 0.9},
        "modification": code_reply("export default function App() { return <h1 className=\"text-blue-500\">Hi</h1>; }"),
    })
    orchestrator = PipelineOrchestrator(completion, make_settings(tmp_path), store=InMemoryContextStore())
    server.app.dependency_overrides[server.get_orchestrator] = lambda: orchestrator
    yield TestClient(server.app)
    server.app.dependency_overrides.clear()


def _sse_payloads(text):
    return [json.loads(line[len("data: "):]) for line in text.splitlines() if line.startswith("data: ")]


# ---------------------------------------------------------------------------
# GET /health
# ---------------------------------------------------------------------------

class TestHealthEndpoint:
    def test_health_returns_200(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert set(data["providers"]) == {"openai", "openrouter"}
        assert data["test_mode"] in ("auto", "sandbox", "command")

    def test_health_requires_auth_when_token_set(self, client, monkeypatch):
        monkeypatch.setenv("PATCHWRIGHT_API_TOKEN", "mysecret")
        assert client.get("/health").status_code == 401
        assert client.get("/health", headers={"Authorization": "Bearer wrong"}).status_code == 403
        assert client.get("/health", headers={"Authorization": "Bearer mysecret"}).status_code == 200


# ---------------------------------------------------------------------------
# POST /run
# ---------------------------------------------------------------------------

class TestRunEndpoint:
    def test_run_without_streaming_returns_the_result(self, client):
        resp = client.post("/run", json={"message": "make it blue", "files": EXISTING, "stream": False})
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["file_operations"][0]["filename"] == "App.jsx"
        assert "text-blue-500" in data["file_operations"][0]["content"]
        assert data["metadata"]["route"]["rule"] == "simple_color"

    def test_run_streams_progress_then_result(self, client):
        resp = client.post("/run", json={"message": "make it blue", "files": EXISTING})
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")

        payloads = _sse_payloads(resp.text)
        assert payloads[0] == {"type": "start"}
        assert payloads[-1]["type"] == "result"
        assert payloads[-1]["result"]["success"] is True
        events = [p["event"] for p in payloads if p["type"] == "event"]
        assert events[0]["type"] == "phase"
        assert any(e["type"] == "success" for e in events)

    def test_options_are_forwarded(self, client):
        resp = client.post("/run", json={"message": "make it blue", "files": EXISTING, "stream": False,
                                         "options": {"run_tests": False}})
        assert resp.json()["metadata"]["tests_run"] is False

    def test_empty_message_is_rejected(self, client):
        assert client.post("/run", json={"message": "", "stream": False}).status_code == 422

    def test_run_requires_auth_when_token_set(self, client, monkeypatch):
        monkeypatch.setenv("PATCHWRIGHT_API_TOKEN", "mysecret")
        assert client.post("/run", json={"message": "x", "stream": False}).status_code == 401


# ---------------------------------------------------------------------------
# Stream lifecycle
# ---------------------------------------------------------------------------

class BlockingOrchestrator:
    """Emits one event, then waits until released; records cancellation."""

    def __init__(self):
        self.release = asyncio.Event()
        self.cancelled = asyncio.Event()

    async def run(self, request, on_update=None):
        on_update(PipelineEvent(EventType.PHASE, "Understanding your request"))
        try:
            await self.release.wait()
        except asyncio.CancelledError:
            self.cancelled.set()
            raise


@pytest.mark.asyncio
async def test_closing_the_stream_cancels_the_run():
    orchestrator = BlockingOrchestrator()
    stream = server.stream_run(orchestrator, ChangeRequest("make it blue", EXISTING))

    assert json.loads((await stream.__anext__())[len("data: "):]) == {"type": "start"}
    first = json.loads((await stream.__anext__())[len("data: "):])
    assert first["event"]["message"] == "Understanding your request"

    await stream.aclose()

    await asyncio.wait_for(orchestrator.cancelled.wait(), timeout=1)


@pytest.mark.asyncio
async def test_finished_stream_leaves_nothing_running(tmp_path):
    completion = ScriptedCompletion({
        "intent": {"intent": "style_change", "confidence": 0.9},
        "modification": code_reply("export default function App() { return <h1>Hi</h1>; }"),
    })
    orchestrator = PipelineOrchestrator(completion, make_settings(tmp_path), store=InMemoryContextStore())

    frames = [frame async for frame in server.stream_run(orchestrator, ChangeRequest("make it blue", EXISTING))]

    assert _sse_payloads("".join(frames))[-1]["result"]["success"] is True
    assert [t for t in asyncio.all_tasks() if t is not asyncio.current_task()] == []
