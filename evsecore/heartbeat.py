"""Periodic Heartbeat requests to the central system."""

from __future__ import annotations

import time
from collections.abc import Callable

DEFAULT_HEARTBEAT_INTERVAL = 86400  # seconds
HEARTBEAT_OPERATION = "Heartbeat"


def _monotonic_ms() -> int:
    return time.monotonic_ns() // 1_000_000


class HeartbeatService:
    """Sends a Heartbeat each time the configured interval has elapsed.

    ``send`` is called with the operation name. ``tick_ms`` returns a
    monotonic clock in milliseconds. ``interval`` is given in seconds and may
    be changed at any time through the attribute of the same name.
    """

    def __init__(
        self,
        send: Callable[[str], object],
        tick_ms: Callable[[], int] | None = None,
        interval: int = DEFAULT_HEARTBEAT_INTERVAL,
    ) -> None:
        self._send = send
        self._tick_ms = tick_ms or _monotonic_ms
        self.interval = interval
        self._last_heartbeat = self._tick_ms()

    def loop(self) -> bool:
        """Send a Heartbeat if it is due; return whether one was sent."""
        now = self._tick_ms()
        if now - self._last_heartbeat >= self.interval * 1000:
            self._last_heartbeat = now
            self._send(HEARTBEAT_OPERATION)
            return True
        return False