"""
Load-test harness configuration.

Defines environment-specific configuration classes for the harness.
Each class captures the endpoints of the chat backend under test and
the timing knobs that shape load (connect timeout, inter-action delay,
grace window).  The ``get_config`` factory selects the right class
based on the ``LOADTEST_ENV`` environment variable (or an explicit key).

Configuration classes are read once; :class:`HarnessSettings` turns the
selected class into an immutable object that is passed explicitly to
every actor, so no module-level mutable state is shared between
concurrent users.

Key Concepts Demonstrated:
- Class-based configuration with inheritance for DRY defaults
- Environment-variable overrides for 12-factor deployability
- A frozen settings object built once per run
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from chatload.auth import CredentialPool
from chatload.models import AuthMode, CorrelationMode

# Project root (one level above the ``chatload`` package).
BASE_DIR = Path(__file__).resolve().parent.parent


class Config:
    """
    Base (shared) configuration.

    All environment-specific classes inherit from ``Config`` so that
    common defaults only need to be stated once.
    """

    # REST base URL of the chat backend (register, login, servers, ...).
    BASE_URL: str = os.environ.get("BASE_URL", "http://localhost:80")
    API_PREFIX: str = os.environ.get("API_PREFIX", "")

    # WebSocket gateway endpoint and how the bearer token is presented.
    WS_URL: str = os.environ.get("WS_URL", "ws://localhost:80/ws")
    WS_AUTH_MODE: str = os.environ.get("WS_AUTH_MODE", AuthMode.QUERY.value)

    # Seconds allowed for one connection attempt, handshake included.
    WS_CONNECT_TIMEOUT: float = float(os.environ.get("WS_CONNECT_TIMEOUT", "30"))

    # Think-time between scripted actions.  Load shaping, not protocol.
    WS_ACTION_DELAY: float = float(os.environ.get("WS_ACTION_DELAY", "1"))

    # Wait after the last scripted action before acknowledgements are judged.
    WS_GRACE_WINDOW: float = float(os.environ.get("WS_GRACE_WINDOW", "5"))

    ACK_CORRELATION: str = os.environ.get("ACK_CORRELATION", CorrelationMode.FIRST_MATCH.value)
    # Also accept ``status`` frames whose text mentions joining/leaving.
    ACK_LEGACY_STATUS: bool = os.environ.get("ACK_LEGACY_STATUS", "0") == "1"

    HTTP_TIMEOUT: float = float(os.environ.get("HTTP_TIMEOUT", "10"))

    # Deterministic credential pool; see ``prepare_users.py``.
    USERS_FILE: Path = Path(os.environ.get("USERS_FILE", str(BASE_DIR / "data" / "users.json")))

    # Named ramp from tests/performance/profiles.py; empty means -u/-r decide.
    LOAD_PROFILE: str = os.environ.get("LOAD_PROFILE", "")

    VERBOSE: bool = os.environ.get("VERBOSE", "0") == "1"

    TEST_ROOMS: tuple[dict[str, str], ...] = (
        {"id": "test_room_001", "name": "Test Room 1", "type": "channel"},
        {"id": "test_room_002", "name": "Test Room 2", "type": "channel"},
        {"id": "test_room_003", "name": "Test Room 3", "type": "dm"},
    )


class DevelopmentConfig(Config):
    """Local runs against a backend started with docker compose."""

    VERBOSE: bool = os.environ.get("VERBOSE", "1") == "1"


class TestingConfig(Config):
    """
    Test-suite overrides.

    Points URLs at non-routable hosts so unit tests never reach a real
    backend, and shrinks every wait so scripted runs finish quickly.
    """

    __test__ = False

    BASE_URL: str = os.environ.get("TEST_BASE_URL", "http://chat.test")
    WS_URL: str = os.environ.get("TEST_WS_URL", "ws://chat.test/ws")
    WS_CONNECT_TIMEOUT: float = 2.0
    WS_ACTION_DELAY: float = 0.0
    WS_GRACE_WINDOW: float = 0.2
    HTTP_TIMEOUT: float = 1.0
    USERS_FILE: Path = Path(os.environ.get("TEST_USERS_FILE", str(BASE_DIR / "data" / "users.json")))


class ProductionConfig(Config):
    """
    Runs against a deployed stack.

    Values are expected to come from the environment; verbose payload
    logging stays off to keep worker output readable at high VU counts.
    """

    VERBOSE: bool = False


# Lookup table mapping environment name strings to their config classes.
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}


def get_config(env: str | None = None) -> type[Config]:
    """
    Return the configuration class for the given environment.

    Args:
        env: One of ``"development"``, ``"testing"``, or
            ``"production"``.  When *None*, the ``LOADTEST_ENV``
            environment variable is consulted, falling back to
            ``"development"`` if unset.

    Returns:
        The ``Config`` subclass matching the requested environment,
        or ``DevelopmentConfig`` if the key is unrecognised.
    """
    if env is None:
        env = os.environ.get("LOADTEST_ENV", "development")
    return config.get(env, config["default"])


@dataclass(frozen=True)
class HarnessSettings:
    """
    Immutable snapshot of the configuration handed to each actor.

    Built once at startup (Locust ``init`` event or CLI entry point).
    The credential pool is loaded here, before any actor runs, and is
    read-only afterwards.
    """

    base_url: str
    ws_url: str
    auth_mode: AuthMode
    connect_timeout: float
    action_delay: float
    grace_window: float
    correlation: CorrelationMode
    legacy_status_matching: bool
    http_timeout: float
    verbose: bool
    pool: CredentialPool
    rooms: tuple[dict[str, str], ...]

    @classmethod
    def from_config(
        cls, config_class: type[Config] | None = None, **overrides: Any
    ) -> "HarnessSettings":
        """
        Build settings from a config class.

        Args:
            config_class: Class to read; defaults to :func:`get_config`.
            **overrides: Field values that replace the config values,
                e.g. ``grace_window=0`` in tests.

        Raises:
            ValueError: If ``WS_AUTH_MODE`` or ``ACK_CORRELATION`` hold
                an unknown value.
        """
        if config_class is None:
            config_class = get_config()

        values: dict[str, Any] = {
            "base_url": f"{config_class.BASE_URL.rstrip('/')}{config_class.API_PREFIX}",
            "ws_url": config_class.WS_URL,
            "auth_mode": AuthMode(config_class.WS_AUTH_MODE),
            "connect_timeout": config_class.WS_CONNECT_TIMEOUT,
            "action_delay": config_class.WS_ACTION_DELAY,
            "grace_window": config_class.WS_GRACE_WINDOW,
            "correlation": CorrelationMode(config_class.ACK_CORRELATION),
            "legacy_status_matching": config_class.ACK_LEGACY_STATUS,
            "http_timeout": config_class.HTTP_TIMEOUT,
            "verbose": config_class.VERBOSE,
            "rooms": tuple(config_class.TEST_ROOMS),
        }
        values.update(overrides)
        if "pool" not in values:
            values["pool"] = CredentialPool.from_file(config_class.USERS_FILE)
        return cls(**values)
