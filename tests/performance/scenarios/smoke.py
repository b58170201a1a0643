"""
Smoke scenario: one end-to-end pass over REST and the WebSocket gateway.

Run with one or two users to confirm a deployment is alive before a
capacity run.  Each iteration checks ``/health``, then opens a
connection and runs join → send → ping → leave against a test room,
reporting every acknowledgement as a Locust sample.

Key Concepts Demonstrated:
- Long think-time: this is a correctness check, not a load generator
- Missing acknowledgements and unfinished rooms logged as failures
"""

from __future__ import annotations

import logging

from locust import between, tag, task

from chatload.models import ActionKind
from chatload.script import smoke_script
from tests.performance.helpers import random_message_content
from tests.performance.scenarios.base import ChatGatewayUser

logger = logging.getLogger(__name__)


@tag("smoke")
class SmokeUser(ChatGatewayUser):
    wait_time = between(3, 5)

    @task(1)
    def health(self) -> None:
        response = self.api.health()
        if not response.ok:
            logger.error("Health check failed status=%s", response.status_code)

    @task(3)
    def full_interaction(self) -> None:
        """join → send → ping → leave on the first configured room."""
        room_id = self.settings.rooms[0]["id"]
        result = self.run_ws_script(smoke_script(room_id, random_message_content()))

        if not result.success:
            logger.error(
                "Smoke connection failed actor=%s error=%s",
                self.actor_index,
                result.attempt.error,
            )
            return

        for kind in ActionKind:
            if not result.acknowledged(kind):
                logger.warning("Smoke run missing %s acknowledgement", kind.value)
        for flag in result.incomplete:
            logger.error("Smoke run incomplete: %s", flag)
