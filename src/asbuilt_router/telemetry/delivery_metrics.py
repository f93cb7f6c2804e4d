from __future__ import annotations

from collections import Counter, defaultdict
from threading import Lock

DELIVERY_EVENTS: tuple[str, ...] = (
    "success",
    "failure",
    "skipped",
    "retry",
    "idempotent_replay",
)


class DeliveryMetrics:
    def __init__(self) -> None:
        self._lock = Lock()
        self._counters: dict[str, Counter[str]] = defaultdict(Counter)

    def increment(self, *, destination: str, event: str) -> None:
        with self._lock:
            self._counters[destination][event] += 1

    def snapshot(self) -> dict[str, dict[str, int]]:
        with self._lock:
            return {
                destination: dict(counter)
                for destination, counter in self._counters.items()
            }


__all__ = ["DELIVERY_EVENTS", "DeliveryMetrics"]
