from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from eowkit import config
from eowkit.api import app
from eowkit.errors import GenerationRequestFailed
from eowkit.pipeline_types import Answer, PipelineState


client = TestClient(app)


class DummyOrchestrator:
    def __init__(self, answer=None, error=None):
        self._answer = answer
        self._error = error
        self.questions = []

    def answer(self, question):
        self.questions.append(question)
        if self._error:
            raise self._error
        return self._answer


@pytest.fixture
def runtime():
    def _install(orchestrator):
        app.state.runtime = SimpleNamespace(orchestrator=orchestrator)
        return orchestrator

    yield _install
    app.state.runtime = None


def test_health_endpoint():
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "healthy"}


def test_ask_requires_non_empty_question(runtime):
    runtime(DummyOrchestrator(Answer(text="x")))
    resp = client.post("/ask", json={"question": " "})
    assert resp.status_code == 422


def test_ask_without_runtime_is_503():
    app.state.runtime = None
    resp = client.post("/ask", json={"question": "Who was Einstein?"})
    assert resp.status_code == 503


def test_ask_returns_answer_and_sources(runtime):
    orch = runtime(DummyOrchestrator(Answer(text="A physicist.", sources=["Albert Einstein", "Relativity"])))
    resp = client.post("/ask", json={"question": "Who was Einstein?"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["answer"] == "A physicist.\n\nSources: Albert Einstein; Relativity"
    assert data["sources"] == ["Albert Einstein", "Relativity"]
    assert data["state"] == "answered"
    assert orch.questions == ["Who was Einstein?"]


def test_ask_no_support(runtime):
    runtime(DummyOrchestrator(Answer(text=config.NO_SUPPORT_MESSAGE, state=PipelineState.NO_SUPPORT)))
    data = client.post("/ask", json={"question": "zzzz"}).json()
    assert data["answer"] == config.NO_SUPPORT_MESSAGE
    assert data["sources"] == []
    assert data["state"] == "no_support"


def test_ask_generation_failure_is_502(runtime):
    runtime(DummyOrchestrator(error=GenerationRequestFailed("/api/chat: HTTP 500", 500)))
    resp = client.post("/ask", json={"question": "Who was Einstein?"})
    assert resp.status_code == 502
