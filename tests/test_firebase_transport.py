"""
Tests for network/firebase_transport.py — stream parsing, tree folding,
status mapping and the retry loop.

No network: the HTTP layer (``_raw_request``) is replaced with an AsyncMock.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from network.errors import (
    PayloadTooLargeError,
    TransportAuthError,
    TransportConnectionError,
    TransportError,
)
from network.firebase_transport import (
    FirebaseTransport,
    SSEParser,
    apply_stream_event,
    error_for_status,
    parse_sse_lines,
)


@pytest.fixture
def no_limit():
    limiter = MagicMock()
    limiter.acquire = AsyncMock()
    return limiter


class _FakeStreamResponse:
    """An open ``text/event-stream`` response replaying canned lines."""

    status = 200

    def __init__(self, lines):
        self._lines = lines

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def text(self):
        return ""

    @property
    def content(self):
        async def lines():
            for line in self._lines:
                await asyncio.sleep(0)
                yield line
        return lines()


class _FakeStreamSession:
    closed = False

    def __init__(self, lines):
        self.lines = lines
        self.opened = 0

    def get(self, url, **kwargs):
        self.opened += 1
        return _FakeStreamResponse(self.lines)

    async def close(self):
        self.closed = True


def _put_events(count):
    lines = []
    for n in range(count):
        lines += [b"event: put\n", f'data: {{"path": "/", "data": {{"n": {n}}}}}\n'.encode(), b"\n"]
    return lines


class TestSSEParser:

    def test_put_event(self):
        events = parse_sse_lines([
            "event: put\n",
            'data: {"path": "/", "data": {"a": 1}}\n',
            "\n",
        ])
        assert events == [("put", {"path": "/", "data": {"a": 1}})]

    def test_keep_alive_and_comments(self):
        events = parse_sse_lines([
            ": comment",
            "event: keep-alive",
            "data: null",
            "",
        ])
        assert events == [("keep-alive", None)]

    def test_multiline_data_and_default_event(self):
        parser = SSEParser()
        assert parser.feed('data: {"a":') is None
        assert parser.feed("data: 1}") is None
        assert parser.feed("") == ("message", {"a": 1})

    def test_undecodable_data_is_kept_raw(self):
        assert parse_sse_lines(["event: cancel", "data: permission denied", ""]) == [
            ("cancel", "permission denied"),
        ]

    def test_blank_lines_alone_produce_nothing(self):
        assert parse_sse_lines(["", "", ""]) == []


class TestApplyStreamEvent:

    def test_initial_put_replaces_tree(self):
        tree = apply_stream_event(None, "put", {"path": "/", "data": {"a": {"b": 1}}})
        assert tree == {"a": {"b": 1}}

    def test_nested_put(self):
        tree = apply_stream_event({"a": {"b": 1}}, "put", {"path": "/a/c", "data": 2})
        assert tree == {"a": {"b": 1, "c": 2}}

    def test_put_null_removes_and_prunes(self):
        tree = apply_stream_event({"a": {"b": 1}, "x": 1}, "put", {"path": "/a/b", "data": None})
        assert tree == {"x": 1}

    def test_patch_merges_children(self):
        tree = apply_stream_event({"a": 1, "b": 2}, "patch", {"path": "/", "data": {"b": 3, "c": 4}})
        assert tree == {"a": 1, "b": 3, "c": 4}

    def test_patch_with_null_child(self):
        tree = apply_stream_event({"a": 1, "b": 2}, "patch", {"path": "/", "data": {"a": None}})
        assert tree == {"b": 2}

    def test_input_tree_is_not_mutated(self):
        original = {"a": {"b": 1}}
        apply_stream_event(original, "put", {"path": "/a/b", "data": 5})
        assert original == {"a": {"b": 1}}

    def test_other_events_are_ignored(self):
        assert apply_stream_event({"a": 1}, "keep-alive", None) == {"a": 1}


class TestErrorForStatus:

    def test_success(self):
        assert error_for_status(200, "") is None

    def test_auth(self):
        assert isinstance(error_for_status(401, "no"), TransportAuthError)
        assert isinstance(error_for_status(403, "no"), TransportAuthError)

    def test_too_large(self):
        assert isinstance(error_for_status(413, "big"), PayloadTooLargeError)

    def test_retryable(self):
        assert isinstance(error_for_status(503, "busy"), TransportConnectionError)
        assert isinstance(error_for_status(429, "slow down"), TransportConnectionError)

    def test_other_client_errors(self):
        error = error_for_status(400, "bad path")
        assert type(error) is TransportError


class TestRequests:

    def test_url_and_auth(self):
        transport = FirebaseTransport("https://forge.firebaseio.com/", "secret")
        assert transport._url("/games/1/state") == "https://forge.firebaseio.com/games/1/state.json"
        assert transport._params() == {"auth": "secret"}
        assert FirebaseTransport("https://forge.firebaseio.com")._params() == {}

    def test_append_returns_push_key(self, no_limit):
        async def run():
            transport = FirebaseTransport("https://forge.firebaseio.com", limiter=no_limit)
            transport._raw_request = AsyncMock(return_value={"name": "-Nabc"})
            key = await transport.append("games/1/actions", {"type": "END_TURN"})
            assert key == "-Nabc"
            transport._raw_request.assert_awaited_once()
            assert transport._raw_request.call_args.args[:2] == ("POST", "games/1/actions")
        asyncio.run(run())

    def test_read_prunes(self, no_limit):
        async def run():
            transport = FirebaseTransport("https://forge.firebaseio.com", limiter=no_limit)
            transport._raw_request = AsyncMock(return_value={"a": [], "b": 1})
            assert await transport.read("x") == {"b": 1}
        asyncio.run(run())

    def test_retries_connection_errors(self, no_limit):
        async def run():
            transport = FirebaseTransport("https://forge.firebaseio.com", limiter=no_limit)
            transport.base_delay = 0
            transport._raw_request = AsyncMock(side_effect=[
                TransportConnectionError("down"),
                TransportConnectionError("still down"),
                None,
            ])
            await transport.write("games/1/state", {"a": 1})
            assert transport._raw_request.await_count == 3
        asyncio.run(run())

    def test_gives_up_after_max_retries(self, no_limit):
        async def run():
            transport = FirebaseTransport("https://forge.firebaseio.com", limiter=no_limit)
            transport.base_delay = 0
            transport._raw_request = AsyncMock(side_effect=TransportConnectionError("down"))
            with pytest.raises(TransportConnectionError):
                await transport.remove("games/1")
            assert transport._raw_request.await_count == transport.max_retries
        asyncio.run(run())

    def test_auth_errors_are_not_retried(self, no_limit):
        async def run():
            transport = FirebaseTransport("https://forge.firebaseio.com", limiter=no_limit)
            transport._raw_request = AsyncMock(side_effect=TransportAuthError("denied"))
            with pytest.raises(TransportAuthError):
                await transport.write("games/1/state", {"a": 1})
            assert transport._raw_request.await_count == 1
        asyncio.run(run())

    def test_request_without_session_fails(self):
        async def run():
            transport = FirebaseTransport("https://forge.firebaseio.com")
            with pytest.raises(TransportConnectionError):
                await transport._raw_request("GET", "x")
        asyncio.run(run())

    def test_close_runs_disconnect_hooks(self):
        async def run():
            transport = FirebaseTransport("https://forge.firebaseio.com")
            transport._raw_request = AsyncMock(return_value=None)
            await transport.on_disconnect_remove("games/1/presence/p1")
            cancelled = await transport.on_disconnect_remove("games/1/presence/p2")
            await cancelled.cancel()

            await transport.close()

            assert transport._raw_request.await_count == 1
            assert transport._raw_request.call_args.args[:2] == ("DELETE", "games/1/presence/p1")
        asyncio.run(run())


class TestStreams:

    def test_unsubscribe_from_own_callback_stops_the_stream(self):
        async def run():
            transport = FirebaseTransport("https://forge.firebaseio.com")
            session = _FakeStreamSession(_put_events(15))
            transport._session = session
            calls = []
            handle = {}

            async def on_value(value):
                calls.append(value)
                await handle["sub"].unsubscribe()

            handle["sub"] = await transport.subscribe_value("games/1/state", on_value)
            task = transport._streams[0][0]
            await asyncio.wait_for(task, timeout=1)

            assert calls == [{"n": 0}]
            assert transport._streams == []
            assert session.opened == 1
        asyncio.run(run())

    def test_close_stops_running_streams(self):
        async def run():
            transport = FirebaseTransport("https://forge.firebaseio.com")
            session = _FakeStreamSession(_put_events(3))
            transport._session = session
            calls = []

            async def on_value(value):
                calls.append(value)

            await transport.subscribe_value("games/1/state", on_value)
            task = transport._streams[0][0]
            while not calls:
                await asyncio.sleep(0)

            await transport.close()
            seen = len(calls)
            for _ in range(20):
                await asyncio.sleep(0)

            assert task.done()
            assert len(calls) == seen
            assert session.closed
        asyncio.run(run())
