"""
Reconnection state machine and reconnect flows.

One :class:`SessionLifecycle` belongs to one actor.  It reuses a single
authenticated :class:`~chatload.models.Session` across many connection
attempts, drives a :class:`ConnectionStateMachine` through every
attempt, and checks whether room membership survives a reconnect.

Three flows are provided:

- ``standard``: connect, simulated outage, reconnect, recovery check,
  verification connect.
- ``storm``: every actor reconnects at almost the same moment, as after
  a gateway restart.
- ``frequent``: short-lived connections in a loop, as on a flaky network.

Key Concepts Demonstrated:
- Explicit transition table; illegal moves raise instead of drifting
- Each attempt gets its own tracker, so state never leaks between them
- Injected sleep and random source for deterministic tests
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable

import websocket

from chatload.classifier import AckClassifier
from chatload.connection import TransportFactory, connect
from chatload.errors import InvalidTransition
from chatload.log import actor_logger
from chatload.metrics import MetricsSink
from chatload.models import ActionKind, ProtocolAction, Session
from chatload.script import InteractionResult, ScriptPolicy, ScriptStep, run_script

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    RECONNECTING = "reconnecting"
    CONNECTED = "connected"


ALLOWED_TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.DISCONNECTED: frozenset(
        {ConnectionState.CONNECTING, ConnectionState.RECONNECTING}
    ),
    ConnectionState.CONNECTING: frozenset(
        {ConnectionState.CONNECTED, ConnectionState.DISCONNECTED}
    ),
    ConnectionState.RECONNECTING: frozenset(
        {ConnectionState.CONNECTED, ConnectionState.DISCONNECTED}
    ),
    ConnectionState.CONNECTED: frozenset({ConnectionState.DISCONNECTED}),
}


class ConnectionStateMachine:
    """
    Tracks the connection state of one actor.

    Attributes:
        history: ``(state, monotonic_time)`` for every state entered,
            starting with the initial one.
    """

    def __init__(
        self,
        initial: ConnectionState = ConnectionState.DISCONNECTED,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._state = initial
        self._clock = clock
        self.history: list[tuple[ConnectionState, float]] = [(initial, clock())]

    @property
    def state(self) -> ConnectionState:
        return self._state

    def can_transition(self, new_state: ConnectionState) -> bool:
        return new_state in ALLOWED_TRANSITIONS[self._state]

    def transition(self, new_state: ConnectionState) -> None:
        """
        Move to *new_state*.

        Raises:
            InvalidTransition: If the move is not in the transition table.
        """
        if not self.can_transition(new_state):
            raise InvalidTransition(self._state, new_state)
        logger.debug("Connection state %s -> %s", self._state.value, new_state.value)
        self._state = new_state
        self.history.append((new_state, self._clock()))

    @property
    def states(self) -> list[ConnectionState]:
        return [state for state, _ in self.history]


@dataclass(frozen=True)
class RecoveryReport:
    """
    Observed facts about one reconnect.

    ``recovered`` is ``True`` only if the reconnect succeeded and a room
    joined before the outage was joined again afterwards.
    """

    recovered: bool
    reconnect_succeeded: bool
    joined_before: bool
    joined_after: bool
    reason: str | None = None


def verify_state_recovery(before: InteractionResult, after: InteractionResult) -> RecoveryReport:
    joined_before = before.acknowledged(ActionKind.JOIN_ROOM)
    joined_after = after.acknowledged(ActionKind.JOIN_ROOM)

    if not after.success:
        return RecoveryReport(
            recovered=False,
            reconnect_succeeded=False,
            joined_before=joined_before,
            joined_after=joined_after,
            reason=f"reconnect failed: {after.attempt.error or after.attempt.status.value}",
        )

    if joined_before and not joined_after:
        return RecoveryReport(
            recovered=False,
            reconnect_succeeded=True,
            joined_before=True,
            joined_after=False,
            reason="room membership not restored after reconnect",
        )

    return RecoveryReport(
        recovered=True,
        reconnect_succeeded=True,
        joined_before=joined_before,
        joined_after=joined_after,
    )


@dataclass(frozen=True)
class ReconnectTiming:
    """
    Sleep ranges, in seconds, used by the reconnect flows.

    Attributes:
        outage: Simulated outage between the first attempt and the reconnect.
        hold: How long ``frequent`` keeps each connection open.
        gap: Pause between ``frequent`` cycles.
        storm_slots: ``storm`` staggers actors over this many one-second slots.
        storm_settle: Pause before the post-storm verification.
        after_join: Pause after the join in each attempt.
        after_message: Pause after the test message in each attempt.
    """

    outage: tuple[float, float] = (3.0, 5.0)
    hold: tuple[float, float] = (5.0, 10.0)
    gap: tuple[float, float] = (2.0, 5.0)
    storm_slots: int = 5
    storm_settle: float = 5.0
    after_join: float = 2.0
    after_message: float = 1.0


@dataclass
class ReconnectReport:
    """Result of a ``standard`` or ``storm`` flow."""

    initial: InteractionResult | None = None
    reconnect: InteractionResult | None = None
    reconnect_time_ms: float | None = None
    recovery: RecoveryReport | None = None
    verification: InteractionResult | None = None
    skipped_reason: str | None = None

    @property
    def reconnect_succeeded(self) -> bool:
        return self.reconnect is not None and self.reconnect.success


@dataclass
class FrequentReconnectStats:
    cycles: int
    successes: int = 0
    connect_times_ms: list[float] = field(default_factory=list)
    results: list[InteractionResult] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        if not self.cycles:
            return 0.0
        return self.successes / self.cycles

    @property
    def mean_reconnect_ms(self) -> float:
        if not self.connect_times_ms:
            return 0.0
        return sum(self.connect_times_ms) / len(self.connect_times_ms)


class SessionLifecycle:
    """
    Repeated connection attempts for one authenticated actor.

    Args:
        session: The session reused by every attempt.
        settings: :class:`~chatload.config.HarnessSettings` for URLs,
            timeouts and correlation.
        actor_index: Actor number; picks room ids and storm slots.
        metrics: Sink for connect, message and reconnect samples.
        transport_factory: Passed through to :func:`connect`.
        sleep: Blocking sleep used for outages, holds and scripts.
        rng: Random source for outage, hold and gap durations.
        timing: Sleep ranges for the flows.
        policy: Script timing; defaults to the settings' values.
        classifier: Acknowledgement correlation; defaults to the settings'.
    """

    def __init__(
        self,
        session: Session,
        settings: Any,
        *,
        actor_index: int = 0,
        metrics: MetricsSink | None = None,
        transport_factory: TransportFactory = websocket.create_connection,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
        timing: ReconnectTiming | None = None,
        policy: ScriptPolicy | None = None,
        classifier: AckClassifier | None = None,
    ):
        self.session = session
        self.settings = settings
        self.actor_index = actor_index
        self.metrics = metrics or MetricsSink()
        self.transport_factory = transport_factory
        self.timing = timing or ReconnectTiming()
        self.policy = policy or ScriptPolicy.from_settings(settings)
        self.classifier = classifier or AckClassifier.from_settings(settings)
        self.machine = ConnectionStateMachine()
        self.attempts: list[InteractionResult] = []
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._log = actor_logger(__name__, actor_index)

    @property
    def state(self) -> ConnectionState:
        return self.machine.state

    def attempt_script(self, room_id: str, *, is_reconnect: bool = False) -> list[ScriptStep]:
        """join, then one message naming the actor."""
        label = "reconnect" if is_reconnect else "connect"
        return [
            ScriptStep(ProtocolAction.join_room(room_id), delay=self.timing.after_join),
            ScriptStep(
                ProtocolAction.send_message(
                    room_id,
                    content=f"{label} test message from actor {self.actor_index}",
                ),
                delay=self.timing.after_message,
            ),
        ]

    def run_attempt(
        self,
        room_id: str,
        *,
        is_reconnect: bool = False,
        actions: list[ScriptStep] | None = None,
        policy: ScriptPolicy | None = None,
    ) -> InteractionResult:
        """
        One fresh connection attempt with its own tracker.

        The state machine goes to CONNECTING (or RECONNECTING), then to
        CONNECTED on a 101 upgrade, and back to DISCONNECTED once the
        script is done or the connect failed.
        """
        self.machine.transition(
            ConnectionState.RECONNECTING if is_reconnect else ConnectionState.CONNECTING
        )
        connection_result = connect(
            self.settings.ws_url,
            self.session,
            self.settings.connect_timeout,
            auth_mode=self.settings.auth_mode,
            transport_factory=self.transport_factory,
            is_reconnect=is_reconnect,
            metrics=self.metrics,
            actor=self.actor_index,
        )

        if not connection_result.success or connection_result.connection is None:
            self.machine.transition(ConnectionState.DISCONNECTED)
            result = InteractionResult.failed(connection_result.attempt, connection_result.tracker)
            self.attempts.append(result)
            return result

        self.machine.transition(ConnectionState.CONNECTED)
        try:
            result = run_script(
                connection_result.connection,
                actions if actions is not None else self.attempt_script(room_id, is_reconnect=is_reconnect),
                policy=policy or self.policy,
                classifier=self.classifier,
                sleep=self._sleep,
            )
        finally:
            self.machine.transition(ConnectionState.DISCONNECTED)

        self.attempts.append(result)
        return result

    def reconnect(self, room_id: str, **kwargs: Any) -> tuple[InteractionResult, float]:
        """
        Reconnect attempt with reconnect metrics.

        Returns:
            The attempt result and the reconnect time in milliseconds:
            the handshake duration when it succeeded, otherwise the time
            until it failed.
        """
        started = time.monotonic()
        result = self.run_attempt(room_id, is_reconnect=True, **kwargs)
        if result.attempt.connect_duration_ms is not None:
            duration_ms = result.attempt.connect_duration_ms
        else:
            duration_ms = (time.monotonic() - started) * 1000.0
        self.metrics.reconnect(duration_ms, result.success)
        return result, duration_ms

    def standard(self, room_id: str | None = None) -> ReconnectReport:
        room_id = room_id or f"reconnect_room_{self.actor_index % 5}"
        report = ReconnectReport()
        self._log.info("Standard reconnect flow room=%s", room_id)

        report.initial = self.run_attempt(room_id)
        if not report.initial.success:
            report.skipped_reason = "initial connection failed"
            self._log.error("Initial connection failed; skipping reconnect")
            return report

        outage = self._rng.uniform(*self.timing.outage)
        self._log.info("Simulating outage for %.1fs", outage)
        self._sleep(outage)

        report.reconnect, report.reconnect_time_ms = self.reconnect(room_id)
        if report.reconnect.success:
            report.recovery = verify_state_recovery(report.initial, report.reconnect)
            self.metrics.state_recovery(report.recovery.recovered)
            if report.recovery.recovered:
                self._log.info("State recovered after reconnect")
            else:
                self._log.error("State recovery failed: %s", report.recovery.reason)
        else:
            self._log.error("Reconnect failed after %.0fms", report.reconnect_time_ms)

        report.verification = self.run_attempt(room_id)
        return report

    def storm(self, room_id: str = "storm_test_room", sync_delay: float | None = None) -> ReconnectReport:
        report = ReconnectReport()
        self._log.info("Reconnect storm room=%s", room_id)

        report.initial = self.run_attempt(room_id)
        if not report.initial.success:
            report.skipped_reason = "initial connection failed"
            self._log.error("Initial connection failed; skipping storm")
            return report

        if sync_delay is None:
            slots = self.timing.storm_slots
            sync_delay = float(slots - self.actor_index % slots) if slots else 0.0
        self._sleep(sync_delay)

        report.reconnect, report.reconnect_time_ms = self.reconnect(room_id)
        if report.reconnect.success:
            self._log.info("Storm reconnect succeeded in %.0fms", report.reconnect_time_ms)
        else:
            self._log.error("Storm reconnect failed after %.0fms", report.reconnect_time_ms)

        self._sleep(self.timing.storm_settle)
        report.verification = self.run_attempt(room_id)
        if not report.verification.success:
            self._log.error("Gateway unstable after storm")
        return report

    def frequent(self, room_id: str | None = None, cycles: int = 5) -> FrequentReconnectStats:
        """
        Open *cycles* short connections back to back.

        Every cycle lands in the returned stats.  The first one is a
        plain connect, so only later cycles reach the sink as reconnects.
        """
        room_id = room_id or f"frequent_room_{self.actor_index % 3}"
        stats = FrequentReconnectStats(cycles=cycles)

        for cycle in range(1, cycles + 1):
            hold = self._rng.uniform(*self.timing.hold)
            # The hold is spent inside the connection as an extended grace window.
            policy = replace(self.policy, grace_window=hold, stop_when_acknowledged=False)
            started = time.monotonic()
            result = self.run_attempt(room_id, is_reconnect=cycle > 1, policy=policy)
            connect_ms = result.attempt.connect_duration_ms
            if connect_ms is None:
                connect_ms = (time.monotonic() - started) * 1000.0

            stats.results.append(result)
            if cycle > 1:
                self.metrics.reconnect(connect_ms, result.success)
            if result.success:
                stats.successes += 1
                stats.connect_times_ms.append(connect_ms)
                self._log.info("Cycle %d/%d connected in %.0fms", cycle, cycles, connect_ms)
            else:
                self._log.error("Cycle %d/%d failed: %s", cycle, cycles, result.attempt.error)

            if cycle < cycles:
                self._sleep(self._rng.uniform(*self.timing.gap))

        self._log.info(
            "Frequent reconnect summary success_rate=%.1f%% mean=%.0fms",
            stats.success_rate * 100,
            stats.mean_reconnect_ms,
        )
        return stats
