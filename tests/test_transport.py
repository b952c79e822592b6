"""Tests for the retrying HTTP transport."""

import json

import pytest
from aiohttp import web

from registry_cleanup.core.session import is_json_content_type, parse_response_body
from registry_cleanup.core.transport import RetryingTransport, error_message
from registry_cleanup.core.types import TransportConfig
from registry_cleanup.exceptions import (
    AuthenticationError,
    NotFoundError,
    RegistryError,
)


def flaky_app(failures: int, status: int = 503):
    """App failing ``failures`` times with ``status`` before answering."""
    hits = {"count": 0}

    async def handler(request):
        hits["count"] += 1
        if hits["count"] <= failures:
            return web.json_response({"message": "try later"}, status=status)
        return web.json_response({"ok": True}, headers={"X-Trace": "abc"})

    app = web.Application()
    app.router.add_route("*", "/resource", handler)
    return app, hits


def status_app(status: int, payload=None):
    hits = {"count": 0}

    async def handler(request):
        hits["count"] += 1
        if payload is None:
            return web.Response(status=status)
        return web.json_response(payload, status=status)

    app = web.Application()
    app.router.add_get("/resource", handler)
    return app, hits


@pytest.mark.asyncio
async def test_get_parses_json(serve, transport):
    """Test a successful JSON response."""
    app, hits = flaky_app(0)
    server = await serve(app)

    response = await transport.get(str(server.make_url("/resource")))

    assert response.status == 200
    assert response.data == {"ok": True}
    assert response.headers["x-trace"] == "abc"
    assert json.loads(response.body) == {"ok": True}
    assert hits["count"] == 1
    assert transport.delays == []


@pytest.mark.asyncio
async def test_retries_server_errors_with_linear_backoff(serve, transport):
    """Test that 5xx responses are retried with throttle * attempt delays."""
    app, hits = flaky_app(2)
    server = await serve(app)

    response = await transport.get(str(server.make_url("/resource")))

    assert response.data == {"ok": True}
    assert hits["count"] == 3
    assert transport.delays == [10, 20]


@pytest.mark.asyncio
async def test_exhausted_retries_raise_last_error(serve, transport):
    """Test that retry=2 means three attempts in total."""
    app, hits = flaky_app(10)
    server = await serve(app)

    with pytest.raises(RegistryError) as exc_info:
        await transport.get(str(server.make_url("/resource")))

    assert hits["count"] == 3
    assert exc_info.value.status_code == 503
    assert exc_info.value.message == "try later"


@pytest.mark.parametrize(
    "status,error_cls",
    [(401, AuthenticationError), (404, NotFoundError), (403, RegistryError)],
)
@pytest.mark.asyncio
async def test_client_errors_are_terminal(serve, transport, status, error_cls):
    """Test that 4xx responses are raised without retry."""
    app, hits = status_app(status)
    server = await serve(app)

    with pytest.raises(error_cls) as exc_info:
        await transport.get(str(server.make_url("/resource")))

    assert hits["count"] == 1
    assert exc_info.value.status_code == status
    assert transport.delays == []


@pytest.mark.asyncio
async def test_error_message_from_registry_errors_array(serve, transport):
    """Test OCI style error bodies."""
    payload = {"errors": [{"code": "DENIED", "message": "requested access is denied"}]}
    app, _ = status_app(400, payload)
    server = await serve(app)

    with pytest.raises(RegistryError, match="requested access is denied"):
        await transport.get(str(server.make_url("/resource")))


@pytest.mark.asyncio
async def test_network_failure_is_wrapped(serve, transport):
    """Test that connection errors are retried and then wrapped."""
    app, _ = flaky_app(0)
    server = await serve(app)
    url = str(server.make_url("/resource"))
    await server.close()

    with pytest.raises(RegistryError, match="Request failed after 3 attempts") as exc_info:
        await transport.get(url)

    assert exc_info.value.__cause__ is not None
    assert transport.delays == [10, 20]


@pytest.mark.asyncio
async def test_post_sends_json(serve, transport):
    """Test JSON request bodies."""
    received = {}

    async def handler(request):
        received["content_type"] = request.content_type
        received["body"] = await request.json()
        return web.Response(status=204)

    app = web.Application()
    app.router.add_post("/login", handler)
    server = await serve(app)

    response = await transport.post(str(server.make_url("/login")), {"username": "me"})

    assert response.status == 204
    assert response.data is None
    assert received == {"content_type": "application/json", "body": {"username": "me"}}


@pytest.mark.asyncio
async def test_backoff_sleeps_linearly(monkeypatch):
    """Test the real backoff delay computation."""
    slept = []

    async def fake_sleep(seconds):
        slept.append(seconds)

    monkeypatch.setattr("registry_cleanup.core.transport.asyncio.sleep", fake_sleep)
    transport = RetryingTransport(TransportConfig(throttle=1000))

    await transport._backoff(1)
    await transport._backoff(3)

    assert slept == [1.0, 3.0]


@pytest.mark.asyncio
async def test_transport_closes_owned_session():
    """Test the async context manager lifecycle."""
    async with RetryingTransport() as transport:
        session = transport.session
        assert session is not None

    assert session.closed
    assert transport.session is None


def test_parse_response_body():
    """Test body decoding rules."""
    assert parse_response_body(204, "application/json", b"{}") is None
    assert parse_response_body(200, "application/json", b"") is None
    assert parse_response_body(200, "application/json", b'{"a": 1}') == {"a": 1}
    assert parse_response_body(
        200, "application/vnd.oci.image.index.v1+json", b'{"manifests": []}'
    ) == {"manifests": []}
    assert parse_response_body(200, "text/plain", b"hello") == "hello"


def test_is_json_content_type():
    """Test JSON media type detection."""
    assert is_json_content_type("application/json; charset=utf-8")
    assert is_json_content_type("application/vnd.docker.distribution.manifest.v2+json")
    assert not is_json_content_type("text/html")
    assert not is_json_content_type(None)


def test_error_message_defaults():
    """Test per-status default messages."""
    assert error_message(404, None) == "Resource not found"
    assert error_message(418, "teapot") == "HTTP 418: Request failed"
    assert error_message(500, {"error": "boom"}) == "boom"
