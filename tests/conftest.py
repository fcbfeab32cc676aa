import json

import httpx
import pytest
import requests
from fastapi.testclient import TestClient
from pydantic import BaseModel

import lexer
import orchestrator
import parser
import render


class _FakeResponse:
    def __init__(self, payload):
        self._payload = payload

    def raise_for_status(self):
        pass

    def json(self):
        return self._payload


@pytest.fixture
def render_forwarding(monkeypatch):
    """Route the parser's render hop straight into render-svc."""
    calls = []

    def fake_post(url, json=None, headers=None, timeout=None):
        calls.append({"url": url, "json": json, "headers": headers})
        out = render.render_api(render.RenderReq(**json), x_request_id=(headers or {}).get("X-Request-Id"))
        return _FakeResponse(out.model_dump())

    monkeypatch.setattr(parser.requests, "post", fake_post)
    return calls


@pytest.fixture
def render_down(monkeypatch):
    def fake_post(url, json=None, headers=None, timeout=None):
        raise requests.ConnectionError("connection refused")

    monkeypatch.setattr(parser.requests, "post", fake_post)


def _dump(out):
    return out.model_dump() if isinstance(out, BaseModel) else out


def _upstream(request: httpx.Request) -> httpx.Response:
    body = json.loads(request.content)
    rid = request.headers.get("X-Request-Id")
    if request.url.path == "/lex":
        out = lexer.lex(lexer.LexReq(**body), x_request_id=rid)
    elif request.url.path == "/run":
        out = parser.run_api(parser.EvalReq(**body), x_request_id=rid)
    else:
        return httpx.Response(404, json={"detail": "Not Found"})
    return httpx.Response(200, json=_dump(out))


@pytest.fixture
def gateway(monkeypatch, render_forwarding):
    """Gateway client whose upstream services run in-process."""
    seen = []

    def handler(request):
        seen.append(request)
        return _upstream(request)

    monkeypatch.setattr(
        orchestrator, "_client",
        lambda: httpx.AsyncClient(transport=httpx.MockTransport(handler), timeout=orchestrator.TIMEOUT),
    )
    client = TestClient(orchestrator.app)
    client.upstream_requests = seen
    return client


@pytest.fixture
def gateway_down(monkeypatch):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    monkeypatch.setattr(
        orchestrator, "_client",
        lambda: httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    return TestClient(orchestrator.app)


@pytest.fixture
def lexer_client():
    return TestClient(lexer.app)


@pytest.fixture
def parser_client():
    return TestClient(parser.app)


@pytest.fixture
def render_client():
    return TestClient(render.app)
