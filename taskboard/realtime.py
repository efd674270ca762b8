"""
Realtime change channel for the remote row service.

The server pushes one message per committed change on a server-sent-events
stream. Messages carry no row diff:

    {"type": "subscribed", "schema": "public", "table": "tasks"}
    {"event": "INSERT" | "UPDATE" | "DELETE" | "*", "schema": "public", "table": "tasks"}

Channel lifecycle:
  disconnected → connecting → subscribed

Only the subscribed state delivers change events. Connection loss drops the
channel back to disconnected; there is no reconnect.
"""
import asyncio
import json
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterator, Optional

import requests

logger = logging.getLogger(__name__)

CHANGE_EVENTS = {"INSERT", "UPDATE", "DELETE", "*"}
JOIN_TIMEOUT = 2.0


class ChannelState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"


@dataclass(frozen=True)
class ChangeEvent:
    event: str
    schema: str
    table: str

    @classmethod
    def from_message(cls, data: Dict[str, Any]) -> Optional["ChangeEvent"]:
        event = str(data.get("event", "")).upper()
        if event not in CHANGE_EVENTS:
            return None
        return cls(event=event, schema=str(data.get("schema", "")), table=str(data.get("table", "")))


def iter_sse_data(lines: Iterator[str]) -> Iterator[str]:
    """Yield the data payload of each server-sent event."""
    buf = []
    for line in lines:
        if line is None:
            continue
        if line == "":
            if buf:
                yield "\n".join(buf)
                buf = []
            continue
        if line.startswith(":"):
            continue  # keepalive comment
        if line.startswith("data:"):
            buf.append(line[5:].lstrip())
    if buf:
        yield "\n".join(buf)


class RealtimeChannel:
    """Subscription to change events for one table."""

    def __init__(
        self,
        base_url: str,
        table: str = "tasks",
        schema: str = "public",
        api_key: str = "",
        connect_timeout: float = 10.0,
    ):
        self.url = f"{base_url.rstrip('/')}/realtime/v1/{table}"
        self.table = table
        self.schema = schema
        self.api_key = api_key
        self.connect_timeout = connect_timeout
        self.state = ChannelState.DISCONNECTED
        self.join_timeout = JOIN_TIMEOUT
        self._on_change: Optional[Callable[[ChangeEvent], None]] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._stream: Optional[_Stream] = None

    # ── Lifecycle ────────────────────────────────────────────────────────

    def subscribe(self, on_change: Callable[[ChangeEvent], None]) -> None:
        """
        Open the stream on a daemon thread.

        Must be called from the running event loop; messages are handed back
        to that loop, so on_change always runs on the loop's thread.
        """
        if self.state is not ChannelState.DISCONNECTED:
            return
        self._on_change = on_change
        self._loop = asyncio.get_running_loop()
        self._stream = _Stream()
        self._set_state(ChannelState.CONNECTING)
        self._thread = threading.Thread(target=self._reader, args=(self._stream,), daemon=True)
        self._thread.start()

    def unsubscribe(self) -> None:
        """Stop the current stream and wait briefly for its reader to exit."""
        stream, thread = self._stream, self._thread
        self._stream = None
        self._thread = None
        if stream is not None:
            stream.close()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.join_timeout)
            if thread.is_alive():
                # still connecting; it closes its response once requests returns
                logger.debug("Realtime reader still connecting, left to exit on its own")
        self._set_state(ChannelState.DISCONNECTED)

    def _set_state(self, state: ChannelState) -> None:
        if state is not self.state:
            logger.info(f"Realtime channel {self.table}: {self.state.value} → {state.value}")
            self.state = state

    # ── Message handling (event loop thread) ─────────────────────────────

    def handle_message(self, data: Dict[str, Any]) -> None:
        """Apply one decoded message to the channel state machine."""
        if data.get("type") == "subscribed":
            if self.state is ChannelState.CONNECTING:
                self._set_state(ChannelState.SUBSCRIBED)
            return

        if self.state is not ChannelState.SUBSCRIBED:
            logger.debug(f"Dropping change event in state {self.state.value}")
            return

        event = ChangeEvent.from_message(data)
        if event is None or event.table != self.table:
            return
        if event.schema and event.schema != self.schema:
            return

        if self._on_change is not None:
            try:
                self._on_change(event)
            except Exception as e:
                logger.error(f"Error in realtime change callback: {e}")

    def handle_disconnect(self) -> None:
        if self.state is not ChannelState.DISCONNECTED:
            logger.warning(f"Realtime channel {self.table} lost its connection")
        self._set_state(ChannelState.DISCONNECTED)

    # ── Reader thread ────────────────────────────────────────────────────

    def _reader(self, stream: "_Stream") -> None:
        headers = {"Accept": "text/event-stream"}
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        response = None
        try:
            # read timeout None: the stream stays open between events
            response = requests.get(
                self.url, headers=headers, stream=True, timeout=(self.connect_timeout, None)
            )
            if not stream.attach(response):
                return
            response.raise_for_status()
            lines = response.iter_lines(decode_unicode=True)
            for payload in iter_sse_data(lines):
                if stream.stopped.is_set():
                    break
                try:
                    data = json.loads(payload)
                except json.JSONDecodeError:
                    logger.debug(f"Ignoring non-JSON realtime payload: {payload[:80]}")
                    continue
                if isinstance(data, dict):
                    self._dispatch(stream, self.handle_message, data)
        except Exception as e:
            if not stream.stopped.is_set():
                logger.error(f"Realtime stream error: {e}")
        finally:
            if response is not None:
                _close_quietly(response)
            if not stream.stopped.is_set():
                self._dispatch(stream, self.handle_disconnect)

    def _dispatch(self, stream: "_Stream", fn: Callable, *args) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._deliver, stream, fn, args)
        except RuntimeError as e:
            logger.debug(f"Realtime message dropped, event loop closed: {e}")

    def _deliver(self, stream: "_Stream", fn: Callable, args: tuple) -> None:
        # Runs on the loop thread. Drops messages from a superseded stream.
        if stream is self._stream and not stream.stopped.is_set():
            fn(*args)


class _Stream:
    """Stop flag and response of one subscription, shared with its reader."""

    def __init__(self):
        self.stopped = threading.Event()
        self.response: Optional[requests.Response] = None
        self._lock = threading.Lock()

    def attach(self, response: requests.Response) -> bool:
        """Record the open response. False if the stream was already closed."""
        with self._lock:
            if self.stopped.is_set():
                return False
            self.response = response
            return True

    def close(self) -> None:
        with self._lock:
            self.stopped.set()
            response, self.response = self.response, None
        if response is not None:
            _close_quietly(response)


def _close_quietly(response: requests.Response) -> None:
    try:
        response.close()
    except Exception as e:
        logger.debug(f"Error closing realtime stream: {e}")
