"""
Authentication-heavy Locust scenario.

Defines :class:`AuthStormUser`, which hammers ``/login`` to measure the
cost of password hashing and token issuance in isolation from the
WebSocket gateway.

The weight distribution (total weight 10) is:

- **70 % re-login**: full credential exchange; the new token replaces
  the stored one, mirroring clients that rotate tokens.
- **30 % authenticated read**: a cheap ``GET /friends`` that proves the
  current token is accepted.

Key Concepts Demonstrated:
- Targeted scenario for isolating a single code path under load
- Shorter think-time (0.5–1.5 s) for higher per-user RPS
- Auth failures during the run are logged, not fatal; only the initial
  session acquisition stops the user
"""

from __future__ import annotations

import logging
from dataclasses import replace

from locust import between, tag, task

from chatload.auth import login
from chatload.errors import AuthFailure
from tests.performance.scenarios.base import ChatApiUser

logger = logging.getLogger(__name__)


@tag("auth")
class AuthStormUser(ChatApiUser):
    wait_time = between(0.5, 1.5)

    @task(7)
    def login_again(self) -> None:
        """Re-authenticate and replace the stored token."""
        try:
            token, csrf_token = login(
                self.client,
                self.settings.base_url,
                self.session.credentials,
                timeout=self.settings.http_timeout,
                catch_response=True,
            )
        except AuthFailure as exc:
            logger.warning("Re-login failed for actor %s: %s", self.actor_index, exc)
            return

        self.session = replace(self.session, token=token, csrf_token=csrf_token or self.session.csrf_token)
        self.api.session = self.session

    @task(3)
    def authenticated_read(self) -> None:
        response = self.api.list_friends()
        if not response.ok:
            logger.warning("Token rejected status=%s", response.status_code)
