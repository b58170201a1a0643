"""
WebSocket connection establishment and inbound event delivery.

:func:`connect` performs one connection attempt against the chat
gateway and, on a 101 upgrade, returns a :class:`GatewayConnection`
whose single inbound listener is already running.  The listener is a
reader thread (a greenlet under Locust's monkey-patching) that parses
frames, updates the attempt's :class:`~chatload.tracker.MessageStateTracker`,
appends to the ordered event log, and publishes each event on a
cancellable :class:`EventSubscription` once a caller has subscribed.

Key Concepts Demonstrated:
- Listener installed before the first send, so early replies are not lost
- One attempt, one transport: failures are recorded, never retried here
- Transport errors degrade the connection instead of raising
- Queue-backed subscription in place of per-frame callbacks
"""

from __future__ import annotations

import logging
import queue
import re
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import websocket

from chatload.classifier import parse_frame
from chatload.errors import FrameParseError, TransportFailure
from chatload.log import ActorLogAdapter, actor_logger, preview
from chatload.metrics import MetricsSink
from chatload.models import (
    AttemptStatus,
    AuthMode,
    ConnectionAttempt,
    EventKind,
    InboundEvent,
    ProtocolAction,
    Session,
)
from chatload.tracker import MessageStateTracker

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 30.0
# Receive timeout of the reader loop; bounds how long close() waits for it.
DEFAULT_POLL_INTERVAL = 0.5

_TOKEN_RE = re.compile(r"(token=)[^&]+")

TransportFactory = Callable[..., Any]


def redact_token(url: str) -> str:
    return _TOKEN_RE.sub(r"\1<redacted>", url)


def build_handshake(ws_url: str, token: str, auth_mode: AuthMode) -> tuple[str, list[str]]:
    """
    Return the URL and extra headers that carry *token* during the upgrade.

    ``AuthMode.QUERY`` appends ``token=<bearer>`` to the query string
    (keeping any existing parameters); ``AuthMode.HEADER`` sends an
    ``Authorization: Bearer`` header and leaves the URL unchanged.
    """
    if auth_mode is AuthMode.HEADER:
        return ws_url, [f"Authorization: Bearer {token}"]

    parts = urlsplit(ws_url)
    query = [(key, value) for key, value in parse_qsl(parts.query) if key != "token"]
    query.append(("token", token))
    return urlunsplit(parts._replace(query=urlencode(query))), []


class EventSubscription:
    """
    Cancellable channel of :class:`~chatload.models.InboundEvent`.

    The connection's reader publishes into it; calling code drains it
    with :meth:`get`, :meth:`drain`, or plain iteration.  After
    :meth:`cancel` nothing new is delivered and blocked readers wake up.
    """

    _CLOSED = object()

    def __init__(self) -> None:
        self._queue: queue.Queue = queue.Queue()
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def deliver(self, event: InboundEvent) -> bool:
        if self._cancelled.is_set():
            return False
        self._queue.put(event)
        return True

    def get(self, timeout: float | None = None) -> InboundEvent | None:
        """Return the next event, or ``None`` on timeout or once cancelled and empty."""
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is self._CLOSED:
            # Leave the marker in place so later readers also stop.
            self._queue.put(item)
            return None
        return item

    def drain(self) -> list[InboundEvent]:
        events = []
        saw_marker = False
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            if item is self._CLOSED:
                saw_marker = True
                continue
            events.append(item)
        if saw_marker:
            self._queue.put(self._CLOSED)
        return events

    def cancel(self) -> None:
        if self._cancelled.is_set():
            return
        self._cancelled.set()
        self._queue.put(self._CLOSED)

    def __iter__(self) -> Iterator[InboundEvent]:
        while True:
            event = self.get()
            if event is None:
                return
            yield event


class GatewayConnection:
    """
    An established WebSocket to the chat gateway.

    Owned by a single actor.  ``send`` calls are serialised, so frames
    leave in the order they were issued.  Once the transport reports an
    error the connection is marked failed and further sends are no-ops.

    Attributes:
        attempt: The :class:`~chatload.models.ConnectionAttempt` this
            transport belongs to.
        tracker: Tag counts for this attempt only.
        subscription: Channel of inbound events for calling code,
            created on first access (see :meth:`subscribe`).
        parse_failures: Number of frames skipped as unparsable.
        transport_error: Description of the first transport error.
        messages_sent: Frames successfully handed to the transport.
    """

    def __init__(
        self,
        transport: Any,
        attempt: ConnectionAttempt,
        *,
        metrics: MetricsSink | None = None,
        log: ActorLogAdapter | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._transport = transport
        self.attempt = attempt
        self.tracker = MessageStateTracker()
        self.parse_failures = 0
        self.transport_error: str | None = None
        self.messages_sent = 0
        self.remote_closed = False

        self._metrics = metrics or MetricsSink()
        self._log = log or actor_logger(__name__).for_attempt(attempt.attempt_id)
        self._poll_interval = poll_interval
        self._clock = clock
        self._events: list[InboundEvent] = []
        self._subscription: EventSubscription | None = None
        self._events_lock = threading.Lock()
        self._send_lock = threading.Lock()
        self._closed = threading.Event()
        self._reader: threading.Thread | None = None

    def start(self) -> None:
        """Install the inbound listener.  Must run before the first send."""
        if self._reader is not None:
            return
        self._transport.settimeout(self._poll_interval)
        self._reader = threading.Thread(
            target=self._read_loop,
            name=f"ws-reader-{self.attempt.attempt_id}",
            daemon=True,
        )
        self._reader.start()

    @property
    def failed(self) -> bool:
        return self.transport_error is not None

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def is_open(self) -> bool:
        return not (self._closed.is_set() or self.failed or self.remote_closed)

    @property
    def has_subscriber(self) -> bool:
        return self._subscription is not None

    @property
    def subscription(self) -> EventSubscription:
        return self.subscribe()

    def subscribe(self) -> EventSubscription:
        """
        Return the event channel, creating it on first use.

        Events received before the first call are replayed into the new
        channel in arrival order.  Until then nothing is queued, so a
        connection that is never subscribed keeps only its event log.
        """
        with self._events_lock:
            if self._subscription is None:
                subscription = EventSubscription()
                for event in self._events:
                    subscription.deliver(event)
                if self._closed.is_set():
                    subscription.cancel()
                self._subscription = subscription
            return self._subscription

    @property
    def events(self) -> list[InboundEvent]:
        """Snapshot of every event received so far, in arrival order."""
        with self._events_lock:
            return list(self._events)

    def send(self, action: ProtocolAction) -> float | None:
        """
        Transmit *action* as one frame.

        Returns:
            The monotonic time recorded just before the frame was
            written, or ``None`` if nothing was sent because the
            connection is closed or has failed.
        """
        if not self.is_open:
            self._log.debug("Dropping %s; connection is not open", action.kind.value)
            return None

        with self._send_lock:
            sent_at = self._clock()
            try:
                self._transport.send(action.to_frame())
            except (websocket.WebSocketException, OSError) as exc:
                self._fail(f"send failed: {exc}")
                return None

        self.messages_sent += 1
        self._metrics.message_sent(action)
        self._log.debug("Sent action=%s data=%s", action.kind.value, preview(action.data))
        return sent_at

    def close(self) -> None:
        """Stop the listener, close the transport and cancel the subscription."""
        if self._closed.is_set():
            return
        self._closed.set()

        reader = self._reader
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=self._poll_interval * 4)

        try:
            self._transport.close()
        except (websocket.WebSocketException, OSError) as exc:
            self._log.debug("Ignoring error while closing transport: %s", exc)

        with self._events_lock:
            if self._subscription is not None:
                self._subscription.cancel()
        self._log.info(
            "Connection closed received=%d sent=%d parse_failures=%d",
            len(self._events),
            self.messages_sent,
            self.parse_failures,
        )

    def __enter__(self) -> "GatewayConnection":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _fail(self, reason: str) -> None:
        if self.transport_error is None:
            self.transport_error = reason
            self._log.warning("Transport error attempt=%s error=%s", self.attempt.attempt_id, reason)

    def _read_loop(self) -> None:
        while not self._closed.is_set():
            try:
                raw = self._transport.recv()
            except (websocket.WebSocketTimeoutException, TimeoutError):
                continue
            except websocket.WebSocketConnectionClosedException:
                if not self._closed.is_set():
                    self.remote_closed = True
                    self._log.info("Gateway closed the connection")
                return
            except (websocket.WebSocketException, OSError) as exc:
                if not self._closed.is_set():
                    self._fail(f"receive failed: {exc}")
                return

            if not raw:
                # websocket-client returns an empty payload for a close frame.
                if not getattr(self._transport, "connected", True):
                    self.remote_closed = True
                    return
                continue
            self._handle_frame(raw)

    def _handle_frame(self, raw: str | bytes) -> None:
        try:
            event = parse_frame(raw, clock=self._clock)
        except FrameParseError as exc:
            self.parse_failures += 1
            self._log.warning("Skipping unparsable frame error=%s raw=%s", exc, preview(raw))
            return

        self.tracker.record(event)
        with self._events_lock:
            self._events.append(event)
            if self._subscription is not None:
                self._subscription.deliver(event)
        self._metrics.message_received(event)

        kind = event.kind
        if kind is EventKind.ERROR:
            self._log.warning("Gateway error frame message=%s", event.message or "unknown error")
        elif kind is EventKind.NEW_MESSAGE:
            self._log.debug("new_message content=%s", preview(event.data.get("content", "")))
        else:
            self._log.debug("Received action=%s message=%s", event.action, event.message)


@dataclass
class ConnectionResult:
    """
    Outcome of :func:`connect`.

    ``tracker`` is always available: for a failed attempt it is an
    empty tracker, so callers can assert on it without branching.
    """

    attempt: ConnectionAttempt
    connection: GatewayConnection | None = None
    _empty_tracker: MessageStateTracker = field(default_factory=MessageStateTracker, repr=False)

    @property
    def success(self) -> bool:
        return (
            self.connection is not None
            and self.attempt.status is AttemptStatus.SUCCESS
            and self.attempt.handshake_ok
        )

    @property
    def tracker(self) -> MessageStateTracker:
        if self.connection is None:
            return self._empty_tracker
        return self.connection.tracker

    def require(self) -> GatewayConnection:
        """Return the connection or raise :class:`TransportFailure`."""
        if not self.success or self.connection is None:
            raise TransportFailure(self.attempt.error or "connection not established")
        return self.connection


def new_attempt_id() -> str:
    return uuid.uuid4().hex[:12]


def connect(
    ws_url: str,
    session: Session,
    timeout: float = DEFAULT_CONNECT_TIMEOUT,
    *,
    auth_mode: AuthMode = AuthMode.QUERY,
    transport_factory: TransportFactory = websocket.create_connection,
    is_reconnect: bool = False,
    metrics: MetricsSink | None = None,
    actor: int | str = "-",
    poll_interval: float = DEFAULT_POLL_INTERVAL,
) -> ConnectionResult:
    """
    Open one WebSocket to the chat gateway.

    Args:
        ws_url: Gateway endpoint, e.g. ``ws://localhost/ws``.
        session: Authenticated session; its bearer token is presented
            according to *auth_mode*.
        timeout: Hard bound in seconds for the whole attempt.  The
            handshake must finish within it, and scripted interaction
            on the resulting connection is abandoned once it expires.
        auth_mode: Query-string or ``Authorization`` header token.
        transport_factory: Callable with the signature of
            ``websocket.create_connection``; replaced in tests.
        is_reconnect: Marks the attempt as a reconnection.
        metrics: Sink notified once the attempt is decided.
        actor: Actor label used in log lines.
        poll_interval: Receive timeout of the reader loop.

    Returns:
        A :class:`ConnectionResult`.  Failures (missing token, refused
        connection, handshake timeout, non-101 status) are recorded on
        the attempt; nothing is raised and nothing is retried.
    """
    metrics = metrics or MetricsSink()
    attempt = ConnectionAttempt(
        attempt_id=new_attempt_id(),
        url=redact_token(ws_url),
        started_at=time.time(),
        deadline=time.monotonic() + timeout,
        is_reconnect=is_reconnect,
    )
    log = actor_logger(__name__, actor).for_attempt(attempt.attempt_id)
    label = "Reconnect" if is_reconnect else "Connect"

    if not session.is_usable:
        attempt.mark_failed("Missing bearer token")
        log.error("%s refused locally: session has no bearer token", label)
        metrics.connection_attempt(attempt)
        return ConnectionResult(attempt=attempt)

    url, header = build_handshake(ws_url, session.token, auth_mode)
    log.info("%s starting url=%s auth=%s", label, attempt.url, auth_mode.value)

    start = time.monotonic()
    connection = None
    try:
        transport = transport_factory(url, timeout=timeout, header=header)
    except websocket.WebSocketBadStatusException as exc:
        attempt.handshake_status = getattr(exc, "status_code", None)
        attempt.mark_failed(f"Handshake rejected with status {attempt.handshake_status}")
    except (websocket.WebSocketTimeoutException, TimeoutError):
        attempt.mark_failed(f"Handshake timed out after {timeout}s", timed_out=True)
    except (websocket.WebSocketException, OSError) as exc:
        attempt.mark_failed(f"Connection failed: {exc}")
    else:
        attempt.handshake_status = transport.getstatus()
        if not attempt.handshake_ok:
            attempt.mark_failed(f"Expected handshake status 101, got {attempt.handshake_status}")
            try:
                transport.close()
            except (websocket.WebSocketException, OSError):
                pass
        else:
            attempt.connect_duration = max(0.0, time.monotonic() - start)
            attempt.status = AttemptStatus.SUCCESS
            connection = GatewayConnection(
                transport,
                attempt,
                metrics=metrics,
                log=log,
                poll_interval=poll_interval,
            )
            connection.start()

    metrics.connection_attempt(attempt)
    if connection is not None:
        log.info("%s established in %.1fms", label, attempt.connect_duration_ms)
    else:
        log.error(
            "%s failed status=%s handshake=%s error=%s",
            label,
            attempt.status.value,
            attempt.handshake_status,
            attempt.error,
        )
    return ConnectionResult(attempt=attempt, connection=connection)
