"""
Logging setup for harness entry points.

Library modules only call ``logging.getLogger(__name__)``; the Locust
entrypoint and the CLI scripts call :func:`configure_logging` once.
"""

from __future__ import annotations

import logging
from typing import Any, MutableMapping

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(verbose: bool = False) -> None:
    """Install the root handler; DEBUG when *verbose* so payloads are shown."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
    )


class ActorLogAdapter(logging.LoggerAdapter):
    """
    Prefix every line with the actor index and the current attempt.

    Concurrent users write to the same stream, so each line has to say
    which virtual user and which connection attempt produced it.
    """

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        actor = self.extra.get("actor", "-") if self.extra else "-"
        attempt = self.extra.get("attempt", "-") if self.extra else "-"
        return f"[actor={actor} attempt={attempt}] {msg}", kwargs

    def for_attempt(self, attempt_id: str) -> "ActorLogAdapter":
        extra = dict(self.extra or {})
        extra["attempt"] = attempt_id
        return ActorLogAdapter(self.logger, extra)


def actor_logger(name: str, actor: int | str = "-") -> ActorLogAdapter:
    return ActorLogAdapter(logging.getLogger(name), {"actor": actor})


def preview(value: Any, limit: int = 100) -> str:
    """Shorten a payload for log output."""
    text = value if isinstance(value, str) else repr(value)
    if len(text) > limit:
        return text[:limit] + "..."
    return text
