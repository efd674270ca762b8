"""
Tests for the realtime channel state machine and SSE parsing.
"""
import asyncio
import threading
import time

import pytest
import requests

from taskboard import realtime
from taskboard.realtime import ChangeEvent, ChannelState, RealtimeChannel, iter_sse_data


def make_channel(seen):
    channel = RealtimeChannel("http://rows.local:3000", table="tasks", schema="public")
    channel._on_change = seen.append
    channel.state = ChannelState.CONNECTING
    return channel


def test_subscribed_message_completes_handshake():
    seen = []
    channel = make_channel(seen)
    channel.handle_message({"type": "subscribed", "schema": "public", "table": "tasks"})
    assert channel.state is ChannelState.SUBSCRIBED


def test_events_before_subscription_are_dropped():
    seen = []
    channel = make_channel(seen)
    channel.handle_message({"event": "INSERT", "schema": "public", "table": "tasks"})
    assert seen == []


def test_events_after_subscription_are_delivered():
    seen = []
    channel = make_channel(seen)
    channel.handle_message({"type": "subscribed"})
    channel.handle_message({"event": "UPDATE", "schema": "public", "table": "tasks"})
    channel.handle_message({"event": "delete", "schema": "public", "table": "tasks"})
    assert [e.event for e in seen] == ["UPDATE", "DELETE"]


def test_other_tables_and_schemas_are_ignored():
    seen = []
    channel = make_channel(seen)
    channel.handle_message({"type": "subscribed"})
    channel.handle_message({"event": "INSERT", "schema": "public", "table": "users"})
    channel.handle_message({"event": "INSERT", "schema": "audit", "table": "tasks"})
    channel.handle_message({"event": "TRUNCATE", "schema": "public", "table": "tasks"})
    assert seen == []


def test_disconnect_stops_delivery():
    seen = []
    channel = make_channel(seen)
    channel.handle_message({"type": "subscribed"})
    channel.handle_disconnect()
    assert channel.state is ChannelState.DISCONNECTED
    channel.handle_message({"event": "*", "schema": "public", "table": "tasks"})
    assert seen == []


def test_failing_callback_is_contained():
    channel = RealtimeChannel("http://rows.local:3000")
    channel.state = ChannelState.SUBSCRIBED

    def broken(event):
        raise RuntimeError("boom")

    channel._on_change = broken
    channel.handle_message({"event": "INSERT", "schema": "public", "table": "tasks"})
    assert channel.state is ChannelState.SUBSCRIBED


def test_change_event_from_message():
    assert ChangeEvent.from_message({"event": "insert", "table": "tasks"}) == ChangeEvent(
        event="INSERT", schema="", table="tasks"
    )
    assert ChangeEvent.from_message({"type": "subscribed"}) is None


def test_iter_sse_data_splits_events_and_skips_comments():
    lines = [
        'data: {"type": "subscribed"}',
        "",
        ": keepalive",
        "",
        'data: {"event": "INSERT"}',
        "",
        "data: trailing",
    ]
    assert list(iter_sse_data(lines)) == [
        '{"type": "subscribed"}',
        '{"event": "INSERT"}',
        "trailing",
    ]


def test_channel_url():
    channel = RealtimeChannel("http://rows.local:3000/", table="cards")
    assert channel.url == "http://rows.local:3000/realtime/v1/cards"
    assert channel.state is ChannelState.DISCONNECTED


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Reader thread and subscription lifecycle
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

SUBSCRIBED = 'data: {"type": "subscribed", "schema": "public", "table": "tasks"}'


def change(event: str) -> str:
    return f'data: {{"event": "{event}", "schema": "public", "table": "tasks"}}'


class StreamingResponse:
    """Server-sent-events response; stays open until closed unless hold_open is False."""

    def __init__(self, lines, hold_open: bool = True):
        self.lines = list(lines)
        self.hold_open = hold_open
        self.closed = threading.Event()

    def raise_for_status(self):
        pass

    def iter_lines(self, decode_unicode=False):
        for line in self.lines:
            if self.closed.is_set():
                return
            yield line
        if self.hold_open:
            self.closed.wait(timeout=5)

    def close(self):
        self.closed.set()


class StreamServer:
    """Stands in for requests.get; hands out one response per connection."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.connects = []
        self.release = {}

    def hold(self, index: int) -> threading.Event:
        """Make connection number `index` block inside requests.get until released."""
        self.release[index] = threading.Event()
        return self.release[index]

    def get(self, url, **kwargs):
        index = len(self.connects)
        self.connects.append((url, kwargs))
        if index in self.release:
            self.release[index].wait(timeout=5)
        return self.responses[index]


async def wait_until(predicate, timeout: float = 2.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_reader_delivers_events_on_the_loop(monkeypatch):
    response = StreamingResponse([SUBSCRIBED, "", ": keepalive", "", change("INSERT"), ""])
    server = StreamServer(response)
    monkeypatch.setattr(realtime.requests, "get", server.get)

    seen = []
    channel = RealtimeChannel("http://rows.local:3000", api_key="s3cret")
    channel.subscribe(seen.append)
    await wait_until(lambda: seen)

    assert channel.state is ChannelState.SUBSCRIBED
    assert [e.event for e in seen] == ["INSERT"]
    url, kwargs = server.connects[0]
    assert url == "http://rows.local:3000/realtime/v1/tasks"
    assert kwargs["stream"] is True
    assert kwargs["headers"]["X-API-Key"] == "s3cret"

    reader = channel._thread
    channel.unsubscribe()
    assert response.closed.is_set()
    assert not reader.is_alive()
    assert channel.state is ChannelState.DISCONNECTED


@pytest.mark.asyncio
async def test_stream_end_drops_to_disconnected(monkeypatch):
    response = StreamingResponse([SUBSCRIBED, ""], hold_open=False)
    monkeypatch.setattr(realtime.requests, "get", StreamServer(response).get)

    channel = RealtimeChannel("http://rows.local:3000")
    channel.subscribe(lambda event: None)
    reader = channel._thread
    await wait_until(lambda: not reader.is_alive())
    await wait_until(lambda: channel.state is ChannelState.DISCONNECTED)
    assert response.closed.is_set()


@pytest.mark.asyncio
async def test_connection_error_drops_to_disconnected(monkeypatch):
    def refuse(url, **kwargs):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(realtime.requests, "get", refuse)
    channel = RealtimeChannel("http://rows.local:3000")
    channel.subscribe(lambda event: None)
    assert channel.state is ChannelState.CONNECTING
    await wait_until(lambda: channel.state is ChannelState.DISCONNECTED)


@pytest.mark.asyncio
async def test_resubscribe_while_old_reader_is_connecting(monkeypatch):
    stale = StreamingResponse([SUBSCRIBED, "", change("UPDATE"), ""])
    fresh = StreamingResponse([SUBSCRIBED, "", change("INSERT"), ""])
    server = StreamServer(stale, fresh)
    released = server.hold(0)
    monkeypatch.setattr(realtime.requests, "get", server.get)

    seen = []
    channel = RealtimeChannel("http://rows.local:3000")
    channel.join_timeout = 0.05
    channel.subscribe(seen.append)
    await wait_until(lambda: len(server.connects) == 1)
    old_reader = channel._thread

    # old reader is still inside requests.get
    channel.unsubscribe()
    channel.subscribe(seen.append)
    await wait_until(lambda: seen)

    released.set()
    old_reader.join(timeout=2)
    assert not old_reader.is_alive()
    assert stale.closed.is_set()
    await asyncio.sleep(0.05)

    assert [e.event for e in seen] == ["INSERT"]
    assert channel.state is ChannelState.SUBSCRIBED

    channel.unsubscribe()
    assert fresh.closed.is_set()
