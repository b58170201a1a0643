"""
Scripted interaction over an established gateway connection.

A script is an ordered list of protocol actions, each optionally
followed by a delay.  One :class:`ActionScheduler` walks the list,
sends every action in order, waits out a grace window for late
replies, and then hands the collected events to the
:class:`~chatload.classifier.AckClassifier` for correlation.

Key Concepts Demonstrated:
- A single ordered scheduler bounded by the attempt deadline
- Injected ``sleep`` so tests control time instead of waiting on it
- Success that reflects the connection only; acknowledgements are
  reported separately so a slow backend is visible, not hidden
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable, Sequence, Union

import websocket

from chatload.classifier import AckClassifier, ActionOutcome, find_incomplete
from chatload.connection import (
    DEFAULT_CONNECT_TIMEOUT,
    GatewayConnection,
    TransportFactory,
    connect,
)
from chatload.metrics import MetricsSink
from chatload.models import (
    ActionKind,
    AttemptStatus,
    AuthMode,
    ConnectionAttempt,
    InboundEvent,
    ProtocolAction,
    Session,
)
from chatload.tracker import MessageStateTracker

logger = logging.getLogger(__name__)

DEFAULT_ACTION_DELAY = 1.0
DEFAULT_GRACE_WINDOW = 5.0


@dataclass(frozen=True)
class ScriptStep:
    """An action plus the pause that follows it (``None`` means the policy default)."""

    action: ProtocolAction
    delay: float | None = None


Step = Union[ProtocolAction, ScriptStep]


@dataclass(frozen=True)
class ScriptPolicy:
    """
    Timing knobs for :func:`run_script`.

    Attributes:
        action_delay: Pause after each send when the step sets none.
        grace_window: Wait after the last send before evaluating.
        stop_when_acknowledged: End the grace wait early once every
            sent action has been acknowledged.
    """

    action_delay: float = DEFAULT_ACTION_DELAY
    grace_window: float = DEFAULT_GRACE_WINDOW
    stop_when_acknowledged: bool = False

    @classmethod
    def from_settings(cls, settings: Any, **overrides: Any) -> "ScriptPolicy":
        values = {
            "action_delay": settings.action_delay,
            "grace_window": settings.grace_window,
        }
        values.update(overrides)
        return cls(**values)


def as_steps(actions: Iterable[Step]) -> list[ScriptStep]:
    return [item if isinstance(item, ScriptStep) else ScriptStep(item) for item in actions]


def smoke_script(room_id: str, content: str = "Load test message") -> list[ScriptStep]:
    """join → send → ping → leave with the pacing used by the smoke scenario."""
    return [
        ScriptStep(ProtocolAction.join_room(room_id), delay=3.0),
        ScriptStep(ProtocolAction.send_message(room_id, content=content), delay=2.0),
        ScriptStep(ProtocolAction.ping(), delay=1.0),
        ScriptStep(ProtocolAction.leave_room(room_id), delay=2.0),
    ]


def spike_script(room_id: str, content: str, hold: float = 10.0) -> list[ScriptStep]:
    """Join, send straight away, keep the connection for *hold* seconds, then leave."""
    return [
        ScriptStep(ProtocolAction.join_room(room_id), delay=0.5),
        ScriptStep(ProtocolAction.send_message(room_id, content=content), delay=hold),
        ScriptStep(ProtocolAction.leave_room(room_id), delay=0.5),
    ]


@dataclass
class InteractionResult:
    """
    Everything observed during one scripted attempt.

    ``success`` answers a single question: did the connection come up
    and stay within its deadline?  Whether the backend acknowledged
    the actions is answered by :meth:`acknowledged`,
    :meth:`missing_acknowledgements` and ``incomplete``.  ``dropped``
    is set when the connection was lost with actions still unsent.
    """

    attempt: ConnectionAttempt
    tracker: MessageStateTracker
    events: list[InboundEvent] = field(default_factory=list)
    outcomes: list[ActionOutcome] = field(default_factory=list)
    incomplete: list[str] = field(default_factory=list)
    parse_failures: int = 0
    transport_error: str | None = None
    messages_sent: int = 0
    dropped: bool = False

    @property
    def success(self) -> bool:
        return (
            self.attempt.established
            and self.attempt.handshake_ok
            and self.attempt.status is not AttemptStatus.TIMEOUT
        )

    @property
    def abandoned(self) -> list[ActionOutcome]:
        return [outcome for outcome in self.outcomes if outcome.abandoned]

    def acknowledged(self, kind: ActionKind) -> bool:
        """``True`` if at least one *kind* action was sent and every one was acknowledged."""
        matching = [outcome for outcome in self.outcomes if outcome.action.kind is kind]
        return bool(matching) and all(outcome.acknowledged for outcome in matching)

    def missing_acknowledgements(self) -> list[ActionOutcome]:
        return [outcome for outcome in self.outcomes if outcome.sent and not outcome.acknowledged]

    @property
    def is_complete(self) -> bool:
        return (
            self.success
            and not self.dropped
            and not self.incomplete
            and not self.abandoned
            and not self.missing_acknowledgements()
        )

    @classmethod
    def failed(cls, attempt: ConnectionAttempt, tracker: MessageStateTracker) -> "InteractionResult":
        return cls(attempt=attempt, tracker=tracker, transport_error=attempt.error)


class ActionScheduler:
    """
    Send a script over one connection, in order, within its deadline.

    The scheduler never starts a send after the attempt deadline, and
    stops as soon as the connection is no longer open.  Steps it could
    not reach are reported as abandoned.
    """

    def __init__(
        self,
        connection: GatewayConnection,
        policy: ScriptPolicy,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.connection = connection
        self.policy = policy
        self._sleep = sleep

    def run(self, steps: Sequence[ScriptStep]) -> tuple[list[tuple[ProtocolAction, float | None]], int]:
        """
        Dispatch *steps*.

        Returns:
            ``(dispatched, reached)``: one ``(action, sent_at)`` pair per
            step, and how many steps were reached before the deadline
            or the loss of the connection.
        """
        attempt = self.connection.attempt
        dispatched: list[tuple[ProtocolAction, float | None]] = []
        reached = 0

        for step in steps:
            if attempt.expired() or not self.connection.is_open:
                break
            reached += 1
            dispatched.append((step.action, self.connection.send(step.action)))
            if not self.connection.is_open:
                break

            delay = self.policy.action_delay if step.delay is None else step.delay
            self._pause(delay)

        for step in steps[reached:]:
            dispatched.append((step.action, None))
        return dispatched, reached

    def wait_grace(self, is_settled: Callable[[], bool] | None = None) -> bool:
        """
        Wait out the grace window, cut short by the attempt deadline.

        Returns:
            ``True`` if the full window (or an early settle) was reached,
            ``False`` if the deadline truncated it.
        """
        attempt = self.connection.attempt
        window = self.policy.grace_window
        truncated = window > attempt.time_remaining()
        window = min(window, attempt.time_remaining())

        if is_settled is None or not self.policy.stop_when_acknowledged:
            self._pause(window)
            return not truncated

        end = time.monotonic() + window
        while time.monotonic() < end:
            if is_settled():
                return True
            self._pause(min(0.05, max(0.0, end - time.monotonic())))
        return not truncated

    def _pause(self, seconds: float) -> None:
        seconds = min(seconds, self.connection.attempt.time_remaining())
        if seconds > 0:
            self._sleep(seconds)


def run_script(
    connection: GatewayConnection,
    actions: Iterable[Step],
    *,
    policy: ScriptPolicy | None = None,
    classifier: AckClassifier | None = None,
    sleep: Callable[[float], None] = time.sleep,
    close: bool = True,
) -> InteractionResult:
    """
    Send *actions* over *connection* and report what came back.

    Args:
        connection: An established connection from :func:`connect`.
        actions: :class:`~chatload.models.ProtocolAction` or
            :class:`ScriptStep` items, sent in order.
        policy: Delays and grace window; defaults to 1 s / 5 s.
        classifier: Correlation rules; defaults to first-match.
        sleep: Blocking sleep, replaceable in tests.
        close: Close the connection after evaluation.

    Returns:
        An :class:`InteractionResult`.  Never raises for backend
        misbehaviour: error frames, missing acknowledgements, unparsable
        frames and transport errors all end up in the result.
    """
    policy = policy or ScriptPolicy()
    classifier = classifier or AckClassifier()
    steps = as_steps(actions)
    attempt = connection.attempt
    scheduler = ActionScheduler(connection, policy, sleep=sleep)

    try:
        dispatched, reached = scheduler.run(steps)

        def settled() -> bool:
            outcomes = classifier.correlate(dispatched, connection.events)
            return all(outcome.acknowledged for outcome in outcomes if outcome.sent)

        dropped = not connection.is_open and any(sent_at is None for _, sent_at in dispatched)
        if dropped:
            grace_complete = True
        elif reached < len(steps):
            grace_complete = False
        else:
            grace_complete = scheduler.wait_grace(settled)
    finally:
        if close:
            connection.close()

    if dropped:
        logger.warning(
            "Attempt %s lost its connection reached=%d/%d error=%s",
            attempt.attempt_id,
            reached,
            len(steps),
            connection.transport_error or "closed by gateway",
        )
    elif reached < len(steps) or not grace_complete:
        attempt.mark_failed(
            f"Attempt deadline passed; {len(steps) - reached} action(s) unsent",
            timed_out=True,
        )
        logger.warning(
            "Attempt %s timed out reached=%d/%d",
            attempt.attempt_id,
            reached,
            len(steps),
        )

    events = connection.events
    outcomes = classifier.correlate(dispatched, events)
    outcomes = [
        replace(outcome, abandoned=True) if position >= reached else outcome
        for position, outcome in enumerate(outcomes)
    ]

    result = InteractionResult(
        attempt=attempt,
        tracker=connection.tracker,
        events=events,
        outcomes=outcomes,
        incomplete=find_incomplete(outcomes),
        parse_failures=connection.parse_failures,
        transport_error=connection.transport_error,
        messages_sent=connection.messages_sent,
        dropped=dropped,
    )

    logger.info(
        "Attempt %s finished success=%s received=%d missing_acks=%d incomplete=%d",
        attempt.attempt_id,
        result.success,
        len(events),
        len(result.missing_acknowledgements()),
        len(result.incomplete),
    )
    for flag in result.incomplete:
        logger.warning("Attempt %s incomplete: %s", attempt.attempt_id, flag)
    return result


def run_session(
    ws_url: str,
    session: Session,
    actions: Iterable[Step],
    *,
    timeout: float = DEFAULT_CONNECT_TIMEOUT,
    auth_mode: AuthMode = AuthMode.QUERY,
    transport_factory: TransportFactory = websocket.create_connection,
    is_reconnect: bool = False,
    metrics: MetricsSink | None = None,
    policy: ScriptPolicy | None = None,
    classifier: AckClassifier | None = None,
    sleep: Callable[[float], None] = time.sleep,
    actor: int | str = "-",
) -> InteractionResult:
    """
    Connect and run *actions* as one attempt.

    When the connection cannot be established the result carries the
    failed attempt and an empty tracker; no action is sent.
    """
    connection_result = connect(
        ws_url,
        session,
        timeout,
        auth_mode=auth_mode,
        transport_factory=transport_factory,
        is_reconnect=is_reconnect,
        metrics=metrics,
        actor=actor,
    )
    if not connection_result.success or connection_result.connection is None:
        return InteractionResult.failed(connection_result.attempt, connection_result.tracker)

    return run_script(
        connection_result.connection,
        actions,
        policy=policy,
        classifier=classifier,
        sleep=sleep,
    )
