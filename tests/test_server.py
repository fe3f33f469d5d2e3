import json

import httpx
import pytest
from fastapi.testclient import TestClient

from fakes import FakeLLM, merge_reports, report_json
from server import app as server_app
from stride_analyzer.agents.orchestrator import Orchestrator
from stride_analyzer.clients.call_pacer import CallPacer
from stride_analyzer.clients.errors import ExhaustedRetries, RemoteServiceFault

SETTINGS = {"pipeline": {"min_delay_sec": 0.0, "max_delay_sec": 0.0}}


class PassthroughLLM(FakeLLM):
    def __init__(self, call_result=None, status_code=200, **kwargs):
        super().__init__(**kwargs)
        self.call_result = call_result
        self.status_code = status_code
        self.payloads = []

    def call(self, payload):
        self.payloads.append(payload)
        if isinstance(self.call_result, Exception):
            raise self.call_result
        return httpx.Response(self.status_code, json=self.call_result)


def _respond(system, user):
    if "SEPARATOR" in system:
        return merge_reports(user)
    return report_json(components=[user.splitlines()[1]])


@pytest.fixture
def client():
    yield TestClient(server_app.app)
    server_app.set_orchestrator(None)


def _use(llm, pacer=None):
    server_app.set_orchestrator(Orchestrator(SETTINGS, llm_client=llm, pacer=pacer))
    return llm


def test_analyze_security_returns_serialized_report(client) -> None:
    _use(FakeLLM(respond=_respond))
    resp = client.post("/api/analyze-security", json={"text": "Component: A\n\nComponent: B"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["processedChunks"] == 2
    assert body["totalChunks"] == 2
    assert "error" not in body
    report = json.loads(body["result"])
    assert report["components"] == ["Component: A", "Component: B"]
    assert len(report["strideCategories"]) == 6


def test_analyze_security_requires_text(client) -> None:
    _use(FakeLLM())
    assert client.post("/api/analyze-security", json={}).status_code == 400
    assert client.post("/api/analyze-security", json={"text": "   "}).status_code == 400


def test_remote_fault_maps_to_its_status(client) -> None:
    fault = RemoteServiceFault("bad key", status_code=401, detail={"error": {"message": "bad key"}})
    _use(FakeLLM(responses=[fault]))
    resp = client.post("/api/analyze-security", json={"text": "Component: A service"})
    assert resp.status_code == 401
    assert resp.json()["detail"]["stage"] == "segment_analysis"
    assert resp.json()["detail"]["details"] == {"error": {"message": "bad key"}}


def test_exhausted_retries_map_to_429(client) -> None:
    _use(FakeLLM(responses=[ExhaustedRetries(5)]))
    resp = client.post("/api/analyze-security", json={"text": "Component: A service"})
    assert resp.status_code == 429
    assert resp.json()["detail"]["details"] == "Failed after 5 retries"
    assert resp.json()["detail"]["stage"] == "segment_analysis"


def test_process_text_returns_chunks(client) -> None:
    _use(None)
    resp = client.post("/api/process-text", json={"text": "some text to split"})
    assert resp.status_code == 200
    assert resp.json() == {"chunks": ["some text to split"]}
    assert client.post("/api/process-text", json={}).status_code == 400


def test_openai_passthrough(client) -> None:
    llm = _use(PassthroughLLM(call_result={"choices": [{"message": {"content": "hi"}}]}))
    payload = {"model": "gpt-4o-mini", "messages": [{"role": "user", "content": "hello"}]}
    resp = client.post("/api/openai", json=payload)
    assert resp.status_code == 200
    assert resp.json()["choices"][0]["message"]["content"] == "hi"
    assert llm.payloads == [payload]


def test_openai_passthrough_rate_limited(client) -> None:
    _use(PassthroughLLM(call_result=ExhaustedRetries(3)))
    resp = client.post("/api/openai", json={"model": "m", "messages": []})
    assert resp.status_code == 429


def test_healthz(client) -> None:
    _use(None)
    assert client.get("/healthz").json() == {"status": "ok", "llm_configured": False}


def test_openai_passthrough_keeps_upstream_status(client) -> None:
    _use(PassthroughLLM(call_result={"id": "batch_1", "status": "validating"}, status_code=202))
    resp = client.post("/api/openai", json={"model": "m", "messages": []})
    assert resp.status_code == 202
    assert resp.json() == {"id": "batch_1", "status": "validating"}


def test_openai_passthrough_shares_the_pipeline_pacer(client) -> None:
    sleeps = []
    pacer = CallPacer(1.5, 1.5, sleep=sleeps.append, clock=lambda: 0.0)
    llm = _use(PassthroughLLM(call_result={"choices": []}), pacer=pacer)
    client.post("/api/openai", json={"model": "m", "messages": []})
    client.post("/api/openai", json={"model": "m", "messages": []})
    assert len(llm.payloads) == 2
    assert sleeps == [1.5]
