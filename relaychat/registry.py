"""Registry of connected chatters.

The registry is the only shared mutable state in the relay. Every operation
takes the same lock over the whole map, so check-and-insert, check-and-remove
and roster snapshots are atomic with respect to each other.

Sinks only queue lines (`send_line` never blocks on the network), which is
what allows roster notifications to be queued while the lock is held and
keeps them ordered identically for every client.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from .constants import L_USERLIST, NAME_MAX_CHARS, ROSTER_SEP
from .util import normalize_name

if TYPE_CHECKING:
    from .stats import StatsManager


class Sink(Protocol):
    """Write endpoint for one client."""

    @property
    def label(self) -> str: ...

    def send_line(self, line: str) -> bool: ...


@dataclass(frozen=True)
class ClientEntry:
    name: str
    sink: Sink


def format_userlist(names: Iterable[str]) -> str:
    return L_USERLIST + ROSTER_SEP.join(names)


class Registry:
    def __init__(
        self,
        *,
        name_max_chars: int = NAME_MAX_CHARS,
        stats: StatsManager | None = None,
    ) -> None:
        self.log = logging.getLogger("relaychat.registry")
        self.name_max_chars = int(name_max_chars)
        self.stats = stats
        self._lock = threading.Lock()
        self._entries: dict[str, ClientEntry] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._entries

    def try_register(
        self, name: str, sink: Sink, *, welcome: Iterable[str] = ()
    ) -> bool:
        """
        Insert `name -> sink` iff the name is valid and not taken.

        On success the `welcome` lines are queued to the new sink first,
        followed by the roster, before any other line can reach it.
        """
        if normalize_name(name, max_chars=self.name_max_chars) != name:
            return False

        with self._lock:
            if name in self._entries:
                return False
            self._entries[name] = ClientEntry(name=name, sink=sink)
            for line in welcome:
                self._send(sink, line)
            self._notify_roster_locked()

        self.log.info("Registered name=%r sink=%s", name, sink.label)
        if self.stats is not None:
            self.stats.inc("registrations")
        return True

    def unregister(self, name: str | None, sink: Sink | None = None) -> bool:
        """
        Remove `name` if present. Idempotent.

        With `sink`, the entry is only removed while it still belongs to that
        sink.
        """
        if not name:
            return False

        with self._lock:
            entry = self._entries.get(name)
            if entry is None:
                return False
            if sink is not None and entry.sink is not sink:
                return False
            del self._entries[name]
            self._notify_roster_locked()

        self.log.info("Unregistered name=%r sink=%s", name, entry.sink.label)
        return True

    def resolve(self, name: str) -> Sink | None:
        with self._lock:
            entry = self._entries.get(name)
        return entry.sink if entry is not None else None

    def snapshot_names(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def broadcast(self, line: str) -> int:
        """Deliver to every registered sink. Returns how many accepted it."""
        with self._lock:
            sinks = [entry.sink for entry in self._entries.values()]
        return self.deliver((sink, line) for sink in sinks)

    def deliver(self, outgoing: Iterable[tuple[Sink, str]]) -> int:
        delivered = 0
        for sink, line in outgoing:
            if self._send(sink, line):
                delivered += 1
        return delivered

    def clear(self) -> list[Sink]:
        """Drop every entry without notifying anyone. Used at shutdown."""
        with self._lock:
            sinks = [entry.sink for entry in self._entries.values()]
            self._entries.clear()
        return sinks

    def _notify_roster_locked(self) -> None:
        line = format_userlist(self._entries)
        for entry in self._entries.values():
            self._send(entry.sink, line)

    def _send(self, sink: Sink, line: str) -> bool:
        try:
            ok = bool(sink.send_line(line))
        except OSError as e:
            self.log.warning("Delivery failed sink=%s err=%s", sink.label, e)
            ok = False
        except Exception:
            self.log.warning("Delivery failed sink=%s", sink.label, exc_info=True)
            ok = False
        else:
            if not ok:
                self.log.debug("Delivery dropped sink=%s", sink.label)

        if not ok and self.stats is not None:
            self.stats.inc("delivery_failures")
        return ok
