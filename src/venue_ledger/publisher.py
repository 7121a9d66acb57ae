"""Contract for pushing mutation results to connected dashboards.

Fan-out to subscribers is handled outside this package (a websocket hub, a
message broker, ...). The business logic layer only needs something with a
``publish(topic, payload)`` method; :class:`LoggingPublisher` is the default
when nothing else is wired in.
"""

from __future__ import annotations

from typing import Any, Mapping, Protocol

from . import log


class UpdatePublisher(Protocol):
    """Receiver for results that should be broadcast to viewers."""

    def publish(self, topic: str, payload: Mapping[str, Any]) -> None:
        ...


class LoggingPublisher:
    """Publisher that only records what would have been broadcast."""

    def publish(self, topic: str, payload: Mapping[str, Any]) -> None:
        log.debug("Publishing '%s' with %d keys", topic, len(payload))
