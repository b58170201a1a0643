"""
Smoke-test fixtures for a live chat backend.

Provides the session-scoped ``smoke_settings`` fixture: harness settings
pointed at a backend that answered its health check.  URL resolution
is delegated to :func:`shared.live_stack.live_backend_url`, which skips
the suite when no backend is reachable.

Key SDET Concepts Demonstrated:
- Session-scoped fixtures to share one live backend across all smoke tests
- Deriving the WebSocket endpoint from the REST base URL when not given
"""

from __future__ import annotations

import os

import pytest

from chatload.config import HarnessSettings, get_config
from shared.live_stack import live_backend_url


def _default_ws_url(base_url: str) -> str:
    scheme, _, rest = base_url.partition("://")
    ws_scheme = "wss" if scheme == "https" else "ws"
    return f"{ws_scheme}://{rest.rstrip('/')}/ws"


@pytest.fixture(scope="session")
def smoke_base_url() -> str:
    """Healthy backend URL, without the API prefix."""
    return live_backend_url(base_url_env="CHAT_BASE_URL", suite_name="smoke")


@pytest.fixture(scope="session")
def smoke_settings(smoke_base_url) -> HarnessSettings:
    config_class = get_config("production")
    return HarnessSettings.from_config(
        config_class,
        base_url=f"{smoke_base_url.rstrip('/')}{config_class.API_PREFIX}",
        ws_url=os.getenv("CHAT_WS_URL") or _default_ws_url(smoke_base_url),
        grace_window=3.0,
    )
