"""
Shared pytest fixtures for the chat load-test harness suite.

Every fixture here is in-process: the gateway and the auth endpoints
are fakes from ``tests/mocks``, and the settings come from
``TestingConfig`` so no test ever reaches a real backend.

Key Concepts Demonstrated:
- Fixture dependencies (session → gateway, settings → lifecycle)
- Test data factories built on Faker
- A no-op sleep so scripted waits finish instantly
"""

import os
import pytest
from typing import Any, Callable
from faker import Faker

# Set testing environment before importing the harness
os.environ["LOADTEST_ENV"] = "testing"

from chatload.auth import CredentialPool
from chatload.config import HarnessSettings, TestingConfig
from chatload.metrics import InMemoryMetrics
from chatload.models import Credentials, Session
from chatload.script import ScriptPolicy
from shared.test_helpers import create_test_token
from tests.mocks.backend import FakeAuthBackend
from tests.mocks.gateway import FakeGateway


# Initialize Faker for generating test data
fake = Faker()


# -----------------------------------------------------------------------------
# Settings Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def settings() -> HarnessSettings:
    """
    Harness settings for unit tests.

    Built from ``TestingConfig`` with an empty credential pool, so the
    users file on disk never influences a test.
    """
    return HarnessSettings.from_config(TestingConfig, pool=CredentialPool())


@pytest.fixture
def policy() -> ScriptPolicy:
    """No think-time and a short grace window."""
    return ScriptPolicy(action_delay=0.0, grace_window=0.2)


@pytest.fixture
def no_sleep() -> Callable[[float], None]:
    """Sleep replacement that records requested durations instead of waiting."""
    calls: list[float] = []

    def _sleep(seconds: float) -> None:
        calls.append(seconds)

    _sleep.calls = calls
    return _sleep


@pytest.fixture
def metrics() -> InMemoryMetrics:
    return InMemoryMetrics()


# -----------------------------------------------------------------------------
# Test Data Factory Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def credentials_factory() -> Callable[..., Credentials]:
    """
    Factory fixture for unique credentials.

    Example:
        def test_something(credentials_factory):
            creds = credentials_factory(password="secret")
    """

    def _create_credentials(**overrides: Any) -> Credentials:
        username = overrides.pop("username", None) or fake.unique.user_name()
        values = {
            "username": username,
            "email": f"{username}@example.com",
            "password": fake.password(length=12),
            "nickname": fake.first_name(),
        }
        values.update(overrides)
        return Credentials(**values)

    return _create_credentials


@pytest.fixture
def credentials(credentials_factory) -> Credentials:
    return credentials_factory()


@pytest.fixture
def session(credentials) -> Session:
    """An authenticated session whose token the fake gateway accepts."""
    return Session(
        token=create_test_token(username=credentials.username),
        credentials=credentials,
        base_url=TestingConfig.BASE_URL,
        csrf_token="csrf-test",
    )


# -----------------------------------------------------------------------------
# Fake Backend Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def auth_backend() -> FakeAuthBackend:
    return FakeAuthBackend()
