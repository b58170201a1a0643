"""Live-backend helpers for the smoke suite."""

from __future__ import annotations

import os
import time

import pytest
import requests


def is_backend_ready(base_url: str, timeout: float = 2) -> bool:
    """Return True when the backend health endpoint answers 200."""
    try:
        response = requests.get(f"{base_url}/health", timeout=timeout)
    except requests.RequestException:
        return False
    return response.status_code == 200


def wait_for_backend_healthy(base_url: str, timeout: float = 60, interval: float = 1) -> None:
    """Poll the health endpoint until ready or timeout."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        if is_backend_ready(base_url):
            return
        time.sleep(interval)
    raise RuntimeError(f"Chat backend at {base_url} not healthy after {timeout}s")


def live_backend_url(
    *,
    base_url_env: str = "CHAT_BASE_URL",
    base_url_default: str = "http://localhost:80",
    suite_name: str = "smoke",
) -> str:
    """
    Return a healthy backend base URL, or skip the calling test.

    Priority:
    1. The URL in ``base_url_env``; the backend must become healthy
       within the wait window, otherwise this raises.
    2. ``base_url_default`` if a backend already answers there.
    3. Skip: these suites never start a backend themselves.
    """
    provided_base_url = os.getenv(base_url_env)
    if provided_base_url:
        wait_for_backend_healthy(provided_base_url)
        return provided_base_url

    if is_backend_ready(base_url_default):
        return base_url_default

    pytest.skip(f"No chat backend reachable; set {base_url_env} to run {suite_name} tests")
