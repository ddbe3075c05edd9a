"""Statistics tracking and reporting for the relay."""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .registry import Registry


class StatsManager:
    """
    Thread-safe relay counters.

    Tracks:
    - Connections accepted and names registered
    - Name conflicts during the handshake
    - Lines and bytes read from clients
    - Routed messages by kind
    - Unreachable recipients and failed deliveries
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()

        self.started_wall_time: float | None = None
        self.started_monotonic: float | None = None

        self._counters: dict[str, int] = {
            "connections": 0,
            "registrations": 0,
            "name_conflicts": 0,
            "lines_in": 0,
            "bytes_in": 0,
            "broadcasts": 0,
            "unicasts": 0,
            "multicasts": 0,
            "recipients_unreachable": 0,
            "lines_out": 0,
            "delivery_failures": 0,
        }

    def set_start_time(self) -> None:
        """Set the start time for uptime calculations."""
        self.started_wall_time = time.time()
        self.started_monotonic = time.monotonic()

    def inc(self, key: str, delta: int = 1) -> None:
        with self._lock:
            self._counters[key] = int(self._counters.get(key, 0)) + int(delta)

    def get(self, key: str) -> int:
        with self._lock:
            return int(self._counters.get(key, 0))

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counters)

    def format_stats(self, registry: Registry | None = None) -> str:
        """Format current statistics as a human-readable string."""
        from . import __version__

        started = self.started_monotonic
        uptime_s = (time.monotonic() - started) if started is not None else 0.0
        counters = self.snapshot()

        lines = [f"relaychat {__version__} uptime={_fmt_duration(uptime_s)}\n"]
        if registry is not None:
            lines.append(f"online={len(registry)}\n")
        for key in sorted(counters):
            lines.append(f"{key}={counters[key]}\n")
        return "".join(lines)


def _fmt_duration(seconds: float) -> str:
    s = int(max(0.0, seconds))
    days, s = divmod(s, 86400)
    hours, s = divmod(s, 3600)
    minutes, s = divmod(s, 60)
    if days:
        return f"{days}d{hours:02d}h{minutes:02d}m{s:02d}s"
    return f"{hours:02d}h{minutes:02d}m{s:02d}s"
