"""
Load-test harness for the chat backend's WebSocket gateway.

Modules:
- auth: session acquisition (login, register fallback, credential pool)
- connection: one WebSocket attempt and its inbound listener
- script: scripted join/send/ping/leave runs with ack correlation
- reconnect: connection state machine and reconnect flows
- rest: REST resources used by mixed-traffic scenarios
- config: class-based configuration and the immutable run settings

Locust scenarios live in ``tests/performance``.
"""

from chatload.auth import CredentialPool, acquire_session
from chatload.classifier import AckClassifier, ActionOutcome
from chatload.config import HarnessSettings, get_config
from chatload.connection import ConnectionResult, GatewayConnection, connect
from chatload.errors import (
    AuthFailure,
    FrameParseError,
    HarnessError,
    InvalidTransition,
    TransportFailure,
)
from chatload.models import (
    ActionKind,
    AttemptStatus,
    AuthMode,
    ConnectionAttempt,
    CorrelationMode,
    Credentials,
    EventKind,
    InboundEvent,
    ProtocolAction,
    Session,
)
from chatload.reconnect import ConnectionState, SessionLifecycle, verify_state_recovery
from chatload.script import InteractionResult, ScriptPolicy, ScriptStep, run_script, run_session
from chatload.tracker import MessageStateTracker

__all__ = [
    "AckClassifier",
    "ActionKind",
    "ActionOutcome",
    "AttemptStatus",
    "AuthFailure",
    "AuthMode",
    "ConnectionAttempt",
    "ConnectionResult",
    "ConnectionState",
    "CorrelationMode",
    "CredentialPool",
    "Credentials",
    "EventKind",
    "FrameParseError",
    "GatewayConnection",
    "HarnessError",
    "HarnessSettings",
    "InboundEvent",
    "InteractionResult",
    "InvalidTransition",
    "MessageStateTracker",
    "ProtocolAction",
    "ScriptPolicy",
    "ScriptStep",
    "Session",
    "SessionLifecycle",
    "TransportFailure",
    "acquire_session",
    "connect",
    "get_config",
    "run_script",
    "run_session",
    "verify_state_recovery",
]
