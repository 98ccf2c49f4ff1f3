from __future__ import annotations

import asyncio
import json

import httpx
import pytest
from fastapi import Depends, FastAPI

from sse_reply.core.errors import (
    ConfigurationError,
    EventStreamError,
    event_stream_exception_handler,
)
from sse_reply.events.responses import (
    EventReply,
    EventStreamResponse,
    get_event_reply,
    send_events,
)
from sse_reply.events.sources import Single, Stream

END = "event: end\r\ndata: \r\n\r\n"


def _compact(value) -> str:
    return json.dumps(value, separators=(",", ":"))


def _assert_event_stream_headers(resp: httpx.Response) -> None:
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "text/event-stream"
    assert resp.headers["content-encoding"] == "identity"


async def _values(*values):
    for v in values:
        yield v


def _host_app(handler) -> FastAPI:
    """Minimal host app around one handler, used to exercise send options."""
    host = FastAPI()
    host.add_api_route("/", handler, methods=["GET"])
    host.add_exception_handler(EventStreamError, event_stream_exception_handler)
    return host


async def _get(app: FastAPI, path: str = "/", **kwargs) -> httpx.Response:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.get(path, **kwargs)


async def test_object_mode_stream():
    data = {"hello": "world"}

    async def handler():
        return send_events(Stream(_values(data)))

    resp = await _get(_host_app(handler))
    _assert_event_stream_headers(resp)
    assert resp.text == f"id: 1\r\ndata: {_compact(data)}\r\n\r\n{END}"


async def test_byte_mode_stream():
    data = "hello: world"

    async def handler():
        return send_events(Stream(_values(data.encode("utf-8"))))

    resp = await _get(_host_app(handler))
    _assert_event_stream_headers(resp)
    assert resp.text == f"id: 1\r\ndata: {data}\r\n\r\n{END}"


async def test_streams_can_generate_ids():
    data = {"num": 4, "hello": "world"}

    async def handler():
        return send_events(
            Stream(_values(data)),
            id_generator=lambda event: event["num"] * 5 if event else None,
        )

    resp = await _get(_host_app(handler))
    _assert_event_stream_headers(resp)
    assert resp.text == f"id: {4 * 5}\r\ndata: {_compact(data)}\r\n\r\n{END}"


async def test_streams_can_ignore_ids():
    data = {"num": 4, "hello": "world"}

    async def handler():
        return send_events(Stream(_values(data)), id_generator=None)

    resp = await _get(_host_app(handler))
    _assert_event_stream_headers(resp)
    assert resp.text == f"data: {_compact(data)}\r\n\r\n{END}"


async def test_streams_can_specify_static_events():
    data = {"hello": "world"}

    async def handler():
        return send_events(Stream(_values(data)), event="test")

    resp = await _get(_host_app(handler))
    _assert_event_stream_headers(resp)
    assert resp.text == f"id: 1\r\nevent: test\r\ndata: {_compact(data)}\r\n\r\n{END}"


async def test_streams_can_generate_dynamic_events():
    data = {"name": "test function", "hello": "world"}

    async def handler():
        return send_events(
            Stream(_values(data)), event=lambda event: event["name"] if event else None
        )

    resp = await _get(_host_app(handler))
    _assert_event_stream_headers(resp)
    assert resp.text == f"id: 1\r\nevent: test function\r\ndata: {_compact(data)}\r\n\r\n{END}"


async def test_single_value_is_followed_by_terminal_event():
    async def handler():
        return send_events(Single({"hello": "world"}))

    resp = await _get(_host_app(handler))
    _assert_event_stream_headers(resp)
    assert resp.text == f'id: 1\r\ndata: {{"hello":"world"}}\r\n\r\n{END}'


async def test_caller_headers_cannot_override_event_stream_headers():
    async def handler():
        return send_events(
            Single("x"),
            headers={"Content-Type": "application/json", "X-Custom": "1"},
        )

    resp = await _get(_host_app(handler))
    _assert_event_stream_headers(resp)
    assert resp.headers["x-custom"] == "1"
    assert resp.headers["cache-control"] == "no-cache"


async def test_reply_can_only_be_sent_once():
    seen: list[bool] = []

    async def handler(reply: EventReply = Depends(get_event_reply)) -> EventStreamResponse:
        seen.append(reply.sent)
        reply.send(Single("first"))
        seen.append(reply.sent)
        return reply.send(Single("second"))

    resp = await _get(_host_app(handler))
    assert seen == [False, True]
    assert resp.status_code == 500
    assert resp.json() == {"error": {"message": "Event stream could not be started."}}


async def test_bad_options_fail_before_streaming():
    async def handler():
        return send_events(Single("x"), id_generator="nope")

    resp = await _get(_host_app(handler))
    assert resp.status_code == 500
    assert "text/event-stream" not in resp.headers["content-type"]


def test_options_and_loose_keywords_are_exclusive():
    from sse_reply.events.policies import EventOptions

    with pytest.raises(ConfigurationError):
        send_events(Single("x"), options=EventOptions(), event="test")


async def test_echo_endpoint(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.post("/api/events/echo", json={"hello": "world"})
        _assert_event_stream_headers(resp)
        assert resp.text == f'id: 1\r\ndata: {{"hello":"world"}}\r\n\r\n{END}'
        assert "x-request-id" in resp.headers

        resp = await client.post(
            "/api/events/echo", params={"ids": "false", "event": "note"}, json=[1, 2]
        )
        assert resp.text == f"event: note\r\ndata: [1,2]\r\n\r\n{END}"


async def test_ticks_endpoint(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.get("/api/events/ticks", params={"count": 3, "event": "tick"})
        _assert_event_stream_headers(resp)
        assert resp.text == (
            'id: 1\r\nevent: tick\r\ndata: {"tick":0}\r\n\r\n'
            'id: 2\r\nevent: tick\r\ndata: {"tick":1}\r\n\r\n'
            'id: 3\r\nevent: tick\r\ndata: {"tick":2}\r\n\r\n' + END
        )

        empty = await client.get("/api/events/ticks", params={"count": 0})
        assert empty.text == END


async def test_lines_endpoint_sends_text_verbatim(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.get("/api/events/lines", params={"text": "first\nsecond: 2"})
        _assert_event_stream_headers(resp)
        assert resp.text == (
            "id: 1\r\ndata: first\r\n\r\nid: 2\r\ndata: second: 2\r\n\r\n" + END
        )


async def test_countdown_endpoint_uses_push_channel(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.get("/api/events/countdown", params={"start": 2})
        _assert_event_stream_headers(resp)
        assert resp.text == (
            'id: 2\r\nevent: tick\r\ndata: {"remaining":2}\r\n\r\n'
            'id: 1\r\nevent: last\r\ndata: {"remaining":1}\r\n\r\n' + END
        )


async def test_gzip_does_not_touch_event_streams(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.get(
            "/api/events/ticks",
            params={"count": 200},
            headers={"accept-encoding": "gzip"},
        )
        _assert_event_stream_headers(resp)
        assert resp.text.endswith('data: {"tick":199}\r\n\r\n' + END)


async def test_client_disconnect_releases_the_source():
    released = asyncio.Event()
    first_body_sent = asyncio.Event()
    gate = asyncio.Event()

    async def values():
        try:
            yield {"n": 1}
            await gate.wait()
            yield {"n": 2}
        finally:
            released.set()

    response = send_events(Stream(values()))
    messages: list[dict] = []

    async def receive():
        await first_body_sent.wait()
        return {"type": "http.disconnect"}

    async def send(message):
        messages.append(message)
        if message["type"] == "http.response.body" and message.get("body"):
            first_body_sent.set()

    scope = {
        "type": "http",
        "asgi": {"version": "3.0", "spec_version": "2.0"},
        "http_version": "1.1",
        "method": "GET",
        "path": "/",
        "headers": [],
    }
    await asyncio.wait_for(response(scope, receive, send), timeout=2.0)

    assert released.is_set()
    bodies = b"".join(m.get("body", b"") for m in messages if m["type"] == "http.response.body")
    assert bodies == b'id: 1\r\ndata: {"n":1}\r\n\r\n'
    assert b"event: end" not in bodies
