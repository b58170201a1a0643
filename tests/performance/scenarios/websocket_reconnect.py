"""
Reconnection scenarios.

Each virtual user keeps one session and runs a reconnect flow from
:class:`~chatload.reconnect.SessionLifecycle` per iteration.  The flow
is chosen by ``RECONNECT_TYPE``:

- ``standard`` (default): connect, 3-5 s outage, reconnect, recovery
  check, verification connect.
- ``storm``: all users reconnect within a five-second window, as after
  a gateway restart.
- ``frequent``: five short connections per iteration with 2-5 s gaps.

Reconnect handshakes appear in Locust's stats as ``WS reconnect``.
"""

from __future__ import annotations

import logging
import os

from locust import between, tag, task

from tests.performance.scenarios.base import ChatGatewayUser

logger = logging.getLogger(__name__)

RECONNECT_TYPES = ("standard", "storm", "frequent")


def reconnect_type() -> str:
    value = os.environ.get("RECONNECT_TYPE", "standard")
    if value not in RECONNECT_TYPES:
        logger.warning("Unknown RECONNECT_TYPE=%s; using standard", value)
        return "standard"
    return value


@tag("reconnect")
class ReconnectUser(ChatGatewayUser):
    wait_time = between(1, 3)

    def on_start(self) -> None:
        super().on_start()
        self.flow = reconnect_type()

    @task
    def reconnect_flow(self) -> None:
        lifecycle = self.lifecycle()

        if self.flow == "storm":
            report = lifecycle.storm()
            if report.skipped_reason:
                logger.error("Storm skipped: %s", report.skipped_reason)
        elif self.flow == "frequent":
            stats = lifecycle.frequent()
            logger.info(
                "Actor %s frequent reconnects success_rate=%.2f mean=%.0fms",
                self.actor_index,
                stats.success_rate,
                stats.mean_reconnect_ms,
            )
        else:
            report = lifecycle.standard()
            if report.recovery is not None and not report.recovery.recovered:
                logger.error(
                    "Actor %s state not recovered: %s",
                    self.actor_index,
                    report.recovery.reason,
                )
