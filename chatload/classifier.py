"""
Inbound frame parsing and acknowledgement correlation.

The gateway protocol has no request/response correlation identifier:
an acknowledgement is just a frame whose ``action`` tag matches what
the client sent earlier, possibly interleaved with broadcasts from other
users.  This module keeps that guesswork in one place.

Key Concepts Demonstrated:
- A tagged-variant classifier keyed on the ``action`` field only
- Free-text matching isolated behind an opt-in compatibility shim
- Configurable correlation strictness instead of one hard-coded guess
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence

from chatload.errors import FrameParseError
from chatload.models import (
    ActionKind,
    CorrelationMode,
    EventKind,
    InboundEvent,
    ProtocolAction,
)


def parse_frame(raw: str | bytes, *, clock: Callable[[], float] = time.monotonic) -> InboundEvent:
    """
    Decode one text frame into an :class:`InboundEvent`.

    Raises:
        FrameParseError: If the frame is not UTF-8 JSON, not an object,
            or lacks a string ``action`` tag.
    """
    received_at = clock()
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise FrameParseError("Frame is not valid UTF-8") from exc

    try:
        envelope = json.loads(raw)
    except ValueError as exc:
        raise FrameParseError(f"Frame is not valid JSON: {exc}") from exc

    if not isinstance(envelope, dict):
        raise FrameParseError("Frame JSON is not an object")

    action = envelope.get("action")
    if not isinstance(action, str) or not action:
        raise FrameParseError("Frame is missing a string 'action' field")

    data = envelope.get("data")
    if not isinstance(data, dict):
        data = {}
    return InboundEvent(action=action, data=data, received_at=received_at, raw=envelope)


@dataclass(frozen=True)
class AckRule:
    """
    Which inbound tags acknowledge one kind of outbound action.

    Attributes:
        action: The outbound action kind.
        ack_tags: ``action`` tags that count as acknowledgement.
        legacy_phrases: Substrings of a ``status`` frame's message that
            count as acknowledgement when legacy matching is enabled.
    """

    action: ActionKind
    ack_tags: frozenset[str]
    legacy_phrases: tuple[str, ...] = ()


DEFAULT_ACK_RULES: Mapping[ActionKind, AckRule] = {
    ActionKind.JOIN_ROOM: AckRule(
        ActionKind.JOIN_ROOM,
        frozenset({EventKind.ROOM_JOINED.value}),
        ("加入房間成功", "成功加入", "joined"),
    ),
    ActionKind.LEAVE_ROOM: AckRule(
        ActionKind.LEAVE_ROOM,
        frozenset({EventKind.ROOM_LEFT.value}),
        ("成功離開", "left"),
    ),
    ActionKind.SEND_MESSAGE: AckRule(
        ActionKind.SEND_MESSAGE,
        frozenset({EventKind.MESSAGE_SENT.value}),
    ),
    ActionKind.PING: AckRule(ActionKind.PING, frozenset({EventKind.PONG.value})),
}


@dataclass(frozen=True)
class ActionOutcome:
    """
    What happened to one scripted action.

    Attributes:
        action: The action as scripted.
        sent_at: Monotonic send time, or ``None`` if it never left the
            client (abandoned after timeout, or the transport had failed).
        ack: The inbound event matched as its acknowledgement.
        abandoned: ``True`` when the attempt deadline passed or the
            connection was lost before the action was reached.
    """

    action: ProtocolAction
    sent_at: float | None
    ack: InboundEvent | None = None
    abandoned: bool = False

    @property
    def sent(self) -> bool:
        return self.sent_at is not None

    @property
    def acknowledged(self) -> bool:
        return self.ack is not None


class AckClassifier:
    """
    Match inbound events to the outbound actions they acknowledge.

    Args:
        rules: Per-action acknowledgement rules; defaults to
            :data:`DEFAULT_ACK_RULES`.
        mode: :class:`~chatload.models.CorrelationMode` to apply.
        legacy_status_matching: Also accept ``status`` frames whose
            human-readable message contains a rule's legacy phrase.
            Off by default; free-text matching breaks as soon as the
            backend rewords or translates its messages.
    """

    def __init__(
        self,
        rules: Mapping[ActionKind, AckRule] | None = None,
        mode: CorrelationMode = CorrelationMode.FIRST_MATCH,
        legacy_status_matching: bool = False,
    ):
        self.rules = dict(rules or DEFAULT_ACK_RULES)
        self.mode = mode
        self.legacy_status_matching = legacy_status_matching

    @classmethod
    def from_settings(cls, settings: Any) -> "AckClassifier":
        return cls(
            mode=settings.correlation,
            legacy_status_matching=settings.legacy_status_matching,
        )

    @staticmethod
    def classify(event: InboundEvent) -> EventKind:
        return event.kind

    def expected_tags(self, kind: ActionKind) -> frozenset[str]:
        rule = self.rules.get(kind)
        return rule.ack_tags if rule else frozenset()

    def is_ack(self, action: ProtocolAction, event: InboundEvent) -> bool:
        """Return whether *event* can acknowledge *action*, ignoring timing."""
        rule = self.rules.get(action.kind)
        if rule is None:
            return False

        if event.action in rule.ack_tags:
            matched = True
        elif (
            self.legacy_status_matching
            and event.kind is EventKind.STATUS
            and any(phrase in event.message for phrase in rule.legacy_phrases)
        ):
            matched = True
        else:
            matched = False

        if matched and self.mode is CorrelationMode.STRICT:
            if action.room_id is not None and event.room_id is not None:
                return action.room_id == event.room_id
        return matched

    def correlate(
        self,
        dispatched: Sequence[tuple[ProtocolAction, float | None]],
        events: Sequence[InboundEvent],
    ) -> list[ActionOutcome]:
        """
        Pair each dispatched action with an acknowledgement, if one arrived.

        Args:
            dispatched: ``(action, sent_at)`` pairs in send order;
                ``sent_at`` is ``None`` for actions that were not sent.
            events: Inbound events in arrival order.

        Returns:
            One :class:`ActionOutcome` per dispatched action, same order.
        """
        used: set[int] = set()
        outcomes = []
        for action, sent_at in dispatched:
            ack = None
            if sent_at is not None:
                for index, event in enumerate(events):
                    if event.received_at < sent_at:
                        continue
                    if self.mode is CorrelationMode.STRICT and index in used:
                        continue
                    if self.is_ack(action, event):
                        ack = event
                        used.add(index)
                        break
            outcomes.append(ActionOutcome(action=action, sent_at=sent_at, ack=ack))
        return outcomes


def find_incomplete(outcomes: Sequence[ActionOutcome]) -> list[str]:
    """
    Flag rooms that were joined but whose scripted leave was never confirmed.

    A join acknowledgement followed later in the script by a
    ``leave_room`` for the same room must be matched by a leave
    acknowledgement; otherwise the room is reported, never silently
    treated as success.
    """
    flags = []
    for position, outcome in enumerate(outcomes):
        if outcome.action.kind is not ActionKind.JOIN_ROOM or not outcome.acknowledged:
            continue
        room_id = outcome.action.room_id
        later_leaves = [
            later
            for later in outcomes[position + 1:]
            if later.action.kind is ActionKind.LEAVE_ROOM and later.action.room_id == room_id
        ]
        if later_leaves and not any(leave.acknowledged for leave in later_leaves):
            flags.append(f"room {room_id}: joined but leave not acknowledged")
    return flags
