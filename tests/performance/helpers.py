"""
Helper utilities for Locust performance scenarios.

Bridges the harness to Locust: :class:`LocustMetrics` turns WebSocket
connection attempts into ``events.request`` samples so handshake times
show up in Locust's stats (and its CSV, which the threshold gate reads),
and the small factories here keep payload and room selection in one
place for every scenario.

Key Concepts Demonstrated:
- ``events.request.fire`` with ``request_type="WS"`` for non-HTTP work
- Message counters kept off the latency table so they do not skew
  percentiles
- Deterministic room assignment from the actor index
"""

from __future__ import annotations

import itertools
import logging
import random
import string
from dataclasses import dataclass
from typing import Any

from chatload.errors import TransportFailure
from chatload.metrics import InMemoryMetrics
from chatload.models import ActionKind, ConnectionAttempt
from chatload.script import InteractionResult

logger = logging.getLogger(__name__)

WS_REQUEST_TYPE = "WS"

# Room ids that look like the backend's 24-hex-digit seeded ObjectIDs.
SEEDED_ROOM_COUNT = 5

_actor_counter = itertools.count()


def next_actor_index() -> int:
    """Hand out actor numbers in spawn order, starting at 0."""
    return next(_actor_counter)


def seeded_room_id(actor_index: int) -> str:
    """Every ``SEEDED_ROOM_COUNT`` actors share one seeded channel."""
    return f"{actor_index % SEEDED_ROOM_COUNT:024d}"


def random_message_content(prefix: str = "Load test message") -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=8))
    return f"{prefix} {suffix}"


class LocustMetrics(InMemoryMetrics):
    """
    Metrics sink that reports connection attempts to Locust.

    Handshakes are fired as ``WS connect`` / ``WS reconnect`` request
    samples; failed attempts carry a :class:`TransportFailure` so they
    count as Locust failures.  Spike recovery is fired as
    ``WS spike recovery`` so the threshold gate can limit its failure
    rate.  Message and state-recovery counters stay in memory and are
    logged by :meth:`log_summary` when the test stops.
    """

    def __init__(self, environment: Any):
        super().__init__()
        self.environment = environment

    def _fire(self, name: str, response_time: float, exception: Exception | None = None) -> None:
        self.environment.events.request.fire(
            request_type=WS_REQUEST_TYPE,
            name=name,
            response_time=response_time,
            response_length=0,
            exception=exception,
            context={},
        )

    def connection_attempt(self, attempt: ConnectionAttempt) -> None:
        super().connection_attempt(attempt)
        name = "reconnect" if attempt.is_reconnect else "connect"
        if attempt.established:
            self._fire(name, attempt.connect_duration_ms or 0.0)
        else:
            self._fire(
                name,
                max(0.0, attempt.time_elapsed_ms()),
                TransportFailure(attempt.error or attempt.status.value),
            )

    def spike_recovery(self, recovered: bool) -> None:
        super().spike_recovery(recovered)
        self._fire(
            "spike recovery",
            0.0,
            None if recovered else TransportFailure("join or send failed during spike"),
        )

    def log_summary(self) -> None:
        with self._lock:
            counters = dict(self.counters)
        if not counters:
            return
        logger.info(
            "WebSocket summary %s",
            " ".join(f"{key}={value}" for key, value in sorted(counters.items())),
        )


def report_drop(environment: Any, result: InteractionResult) -> None:
    """Fire a ``WS dropped`` failure for a connection lost with actions unsent."""
    reason = result.transport_error or "connection closed by gateway"
    environment.events.request.fire(
        request_type=WS_REQUEST_TYPE,
        name="dropped",
        response_time=max(0.0, result.attempt.time_elapsed_ms()),
        response_length=0,
        exception=TransportFailure(f"{reason}; {len(result.abandoned)} action(s) unsent"),
        context={},
    )


SPIKE_CONNECT_BUDGET_MS = 3000.0


@dataclass(frozen=True)
class SpikeOutcome:
    """
    How one actor fared during a connection surge.

    ``recovered`` is the headline figure: the room join was
    acknowledged and the message left the client on a connection that
    stayed up.
    """

    connected_in_time: bool
    joined: bool
    message_sent: bool
    broadcast_received: bool
    dropped: bool

    @property
    def recovered(self) -> bool:
        return self.joined and self.message_sent and not self.dropped


def evaluate_spike(
    result: InteractionResult,
    connect_budget_ms: float = SPIKE_CONNECT_BUDGET_MS,
) -> SpikeOutcome:
    connect_ms = result.attempt.connect_duration_ms
    return SpikeOutcome(
        connected_in_time=connect_ms is not None and connect_ms <= connect_budget_ms,
        joined=result.acknowledged(ActionKind.JOIN_ROOM),
        message_sent=any(
            outcome.sent for outcome in result.outcomes if outcome.action.kind is ActionKind.SEND_MESSAGE
        ),
        broadcast_received=result.tracker.seen("new_message"),
        dropped=result.dropped,
    )
