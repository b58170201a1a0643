"""
Pluggable metrics sink.

The harness reports timings and outcomes through a :class:`MetricsSink`
without knowing where they end up.  Under Locust the sink forwards
samples to ``events.request`` (see ``tests/performance/helpers.py``);
tests and the CLI use :class:`InMemoryMetrics`.
"""

from __future__ import annotations

import threading
from collections import Counter, defaultdict

from chatload.models import ConnectionAttempt, InboundEvent, ProtocolAction


class MetricsSink:
    """No-op base class.  Override only the hooks you care about."""

    def connection_attempt(self, attempt: ConnectionAttempt) -> None:
        """Called once per attempt, after the handshake succeeded or failed."""

    def message_sent(self, action: ProtocolAction) -> None:
        pass

    def message_received(self, event: InboundEvent) -> None:
        pass

    def reconnect(self, duration_ms: float, success: bool) -> None:
        pass

    def state_recovery(self, recovered: bool) -> None:
        pass

    def spike_recovery(self, recovered: bool) -> None:
        """Called once per spike iteration: did join and send still work under the surge?"""


class InMemoryMetrics(MetricsSink):
    """
    Thread-safe counters and trends kept in process memory.

    Attributes:
        counters: Named counters (``ws_connection_success``,
            ``ws_messages_sent``, ...).
        trends: Named lists of millisecond samples
            (``ws_connect_time``, ``ws_reconnect_time``).
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.counters: Counter[str] = Counter()
        self.trends: defaultdict[str, list[float]] = defaultdict(list)

    def connection_attempt(self, attempt: ConnectionAttempt) -> None:
        with self._lock:
            if attempt.established:
                self.counters["ws_connection_success"] += 1
                self.trends["ws_connect_time"].append(attempt.connect_duration_ms)
            else:
                self.counters["ws_connection_failed"] += 1

    def message_sent(self, action: ProtocolAction) -> None:
        with self._lock:
            self.counters["ws_messages_sent"] += 1
            self.counters[f"ws_sent_{action.kind.value}"] += 1

    def message_received(self, event: InboundEvent) -> None:
        with self._lock:
            self.counters["ws_messages_received"] += 1

    def reconnect(self, duration_ms: float, success: bool) -> None:
        with self._lock:
            self.counters["ws_reconnect_attempts"] += 1
            if success:
                self.trends["ws_reconnect_time"].append(duration_ms)
            else:
                self.counters["ws_reconnect_errors"] += 1

    def state_recovery(self, recovered: bool) -> None:
        with self._lock:
            key = "ws_state_recovery_success" if recovered else "ws_state_recovery_failed"
            self.counters[key] += 1

    def spike_recovery(self, recovered: bool) -> None:
        with self._lock:
            key = "ws_spike_recovery_success" if recovered else "ws_spike_recovery_failed"
            self.counters[key] += 1
