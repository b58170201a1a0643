"""
Value objects shared by every part of the harness.

These classes describe *what* flows through a simulated client: the
credentials and session an actor authenticates with, the outbound
protocol actions it sends, the inbound events the gateway pushes back,
and the bookkeeping for a single connection attempt.

Key Concepts Demonstrated:
- Frozen dataclasses for values that must not change after creation
  (sessions, actions, events)
- ``Enum`` subclasses of ``str`` so values serialise directly to the
  wire format, the same way the API models expose status strings
- Factory classmethods that keep frame construction in one place
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ActionKind(str, Enum):
    """Client-to-server actions understood by the chat gateway."""

    JOIN_ROOM = "join_room"
    LEAVE_ROOM = "leave_room"
    SEND_MESSAGE = "send_message"
    PING = "ping"


class EventKind(str, Enum):
    """Server-to-client action tags."""

    STATUS = "status"
    ROOM_JOINED = "room_joined"
    ROOM_LEFT = "room_left"
    MESSAGE_SENT = "message_sent"
    NEW_MESSAGE = "new_message"
    PONG = "pong"
    ERROR = "error"
    UNKNOWN = "unknown"

    @classmethod
    def from_tag(cls, tag: str) -> "EventKind":
        """Map a raw ``action`` string to a kind, falling back to ``UNKNOWN``."""
        try:
            return cls(tag)
        except ValueError:
            return cls.UNKNOWN


class AttemptStatus(str, Enum):
    """Terminal (or pending) outcome of one connection attempt."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"


class AuthMode(str, Enum):
    """Where the bearer token travels during the WebSocket upgrade."""

    QUERY = "query"
    HEADER = "header"


class CorrelationMode(str, Enum):
    """
    How an inbound event is matched to the action it acknowledges.

    The gateway protocol carries no request/response identifier, so
    both modes are heuristics:

    - ``FIRST_MATCH``: any event of the expected tag that arrives after
      the send acknowledges it.  Several sends may share one event.
    - ``STRICT``: each event acknowledges at most one send, in order,
      and must name the same ``room_id`` when its payload carries one.
    """

    FIRST_MATCH = "first"
    STRICT = "strict"


@dataclass(frozen=True)
class Credentials:
    """
    Identity used to log in (and, if needed, register) one actor.

    Attributes:
        username: Unique account name.
        email: Login identifier.
        password: Plain-text password (test accounts only).
        nickname: Display name sent on registration; defaults to the
            username when empty.
    """

    username: str
    email: str
    password: str
    nickname: str = ""

    def register_payload(self) -> dict[str, str]:
        return {
            "username": self.username,
            "email": self.email,
            "password": self.password,
            "nickname": self.nickname or self.username,
        }

    def login_payload(self) -> dict[str, str]:
        return {"email": self.email, "password": self.password}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Credentials":
        return cls(
            username=str(data["username"]),
            email=str(data["email"]),
            password=str(data["password"]),
            nickname=str(data.get("nickname") or ""),
        )


@dataclass(frozen=True)
class Session:
    """
    An authenticated actor identity.

    Created by :func:`chatload.auth.acquire_session` and never mutated
    afterwards.  The CSRF token, when present, belongs to ``base_url``
    and must only be replayed against that host.
    """

    token: str
    credentials: Credentials
    base_url: str
    csrf_token: str | None = None

    @property
    def is_usable(self) -> bool:
        """A session can authenticate a WebSocket only with a non-empty token."""
        return bool(self.token)

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    def csrf_headers(self) -> dict[str, str]:
        """Bearer headers plus ``X-CSRF-TOKEN`` for state-changing requests."""
        headers = dict(self.headers)
        if self.csrf_token:
            headers["X-CSRF-TOKEN"] = self.csrf_token
        return headers


@dataclass(frozen=True)
class ProtocolAction:
    """One outbound intent, serialised as exactly one frame."""

    kind: ActionKind
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def join_room(cls, room_id: str, room_type: str = "channel") -> "ProtocolAction":
        return cls(ActionKind.JOIN_ROOM, {"room_id": room_id, "room_type": room_type})

    @classmethod
    def leave_room(cls, room_id: str, room_type: str = "channel") -> "ProtocolAction":
        return cls(ActionKind.LEAVE_ROOM, {"room_id": room_id, "room_type": room_type})

    @classmethod
    def send_message(
        cls, room_id: str, room_type: str = "channel", content: str = ""
    ) -> "ProtocolAction":
        return cls(
            ActionKind.SEND_MESSAGE,
            {"room_id": room_id, "room_type": room_type, "content": content},
        )

    @classmethod
    def ping(cls) -> "ProtocolAction":
        return cls(ActionKind.PING, {})

    @property
    def room_id(self) -> str | None:
        return self.data.get("room_id")

    def to_frame(self) -> str:
        """Return the ``{"action": ..., "data": ...}`` JSON envelope."""
        return json.dumps({"action": self.kind.value, "data": self.data}, ensure_ascii=False)


@dataclass(frozen=True)
class InboundEvent:
    """
    A frame pushed by the gateway.

    ``received_at`` is a ``time.monotonic()`` reading so it can be
    compared with the send timestamps recorded by the scheduler.
    """

    action: str
    data: dict[str, Any]
    received_at: float
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def kind(self) -> EventKind:
        return EventKind.from_tag(self.action)

    @property
    def message(self) -> str:
        """Human-readable text from ``data.message`` or a top-level ``message``."""
        text = self.data.get("message")
        if not isinstance(text, str):
            text = self.raw.get("message")
        return text if isinstance(text, str) else ""

    @property
    def room_id(self) -> str | None:
        room_id = self.data.get("room_id")
        return room_id if isinstance(room_id, str) else None


@dataclass
class ConnectionAttempt:
    """
    Bookkeeping for one WebSocket transport.

    Owned exclusively by the actor that created it.  A reconnect always
    creates a new attempt with its own timestamp and duration.

    Attributes:
        attempt_id: Unique label used in log lines.
        url: Target URL with the bearer token redacted.
        started_at: Wall-clock time (epoch seconds) of the connect call.
        deadline: Monotonic time after which the attempt times out.
        status: Current :class:`AttemptStatus`.
        handshake_status: HTTP status of the upgrade response (101 on
            success), or ``None`` if no response was received.
        connect_duration: Seconds from connect call to handshake
            completion; ``None`` until established.
        error: Description of the failure, if any.
        is_reconnect: ``True`` when this attempt replaces an earlier one.
    """

    attempt_id: str
    url: str
    started_at: float
    deadline: float
    status: AttemptStatus = AttemptStatus.PENDING
    handshake_status: int | None = None
    connect_duration: float | None = None
    error: str | None = None
    is_reconnect: bool = False

    @property
    def established(self) -> bool:
        return self.connect_duration is not None

    @property
    def handshake_ok(self) -> bool:
        return self.handshake_status == 101

    @property
    def connect_duration_ms(self) -> float | None:
        if self.connect_duration is None:
            return None
        return self.connect_duration * 1000.0

    def time_elapsed_ms(self) -> float:
        return (time.time() - self.started_at) * 1000.0

    def time_remaining(self) -> float:
        return max(0.0, self.deadline - time.monotonic())

    def expired(self) -> bool:
        return time.monotonic() >= self.deadline

    def mark_failed(self, error: str, *, timed_out: bool = False) -> None:
        self.status = AttemptStatus.TIMEOUT if timed_out else AttemptStatus.FAILURE
        self.error = error
