from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

from .constants import L_MESSAGE, MODE_UNICAST, ROUTE_DELIM, TARGET_SEP

if TYPE_CHECKING:
    from .registry import Registry, Sink
    from .stats import StatsManager


@dataclass(frozen=True)
class Broadcast:
    payload: str


@dataclass(frozen=True)
class Unicast:
    target: str
    payload: str


@dataclass(frozen=True)
class Multicast:
    targets: tuple[str, ...]
    payload: str


RoutingIntent = Union[Broadcast, Unicast, Multicast]


def parse_targets(header: str) -> tuple[str, ...]:
    targets: list[str] = []
    for part in header.split(TARGET_SEP):
        name = part.strip()
        if name and name not in targets:
            targets.append(name)
    return tuple(targets)


def parse_intent(line: str) -> RoutingIntent:
    """
    Classify one inbound line.

    `bob>>hi` is a unicast, `bob,carol>>hi` a multicast, and anything without
    `>>` a broadcast of the whole line. An empty target list (`>>hi`) is a
    broadcast of the body.
    """
    header, delim, body = line.partition(ROUTE_DELIM)
    if not delim:
        return Broadcast(payload=line)

    targets = parse_targets(header)
    if not targets:
        return Broadcast(payload=body)
    if len(targets) == 1:
        return Unicast(target=targets[0], payload=body)
    return Multicast(targets=targets, payload=body)


def format_message(sender: str, payload: str) -> str:
    return f"{L_MESSAGE}{sender}: {payload}"


def format_unicast(sender: str, target: str, payload: str) -> str:
    return f"{L_MESSAGE}{sender} >> {target}({MODE_UNICAST}): {payload}"


def format_unicast_echo(sender: str, target: str, payload: str) -> str:
    return f"{sender}>> {target}({MODE_UNICAST}): {payload}"


class MessageRouter:
    """
    Dispatches inbound chat lines to registry entries.

    Destinations are resolved under the registry lock; delivery happens
    afterwards, one independent send per recipient.
    """

    def __init__(self, registry: Registry, *, stats: StatsManager | None = None) -> None:
        self.registry = registry
        self.stats = stats
        self.log = logging.getLogger("relaychat.router")

    def route(self, sender: str, line: str) -> int:
        """Route `line` from `sender`. Returns the number of lines delivered."""
        intent = parse_intent(line)

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "RX sender=%r intent=%s len=%s",
                sender,
                type(intent).__name__,
                len(line),
            )

        if isinstance(intent, Broadcast):
            self._inc("broadcasts")
            return self.registry.broadcast(format_message(sender, intent.payload))

        outgoing: list[tuple[Sink, str]] = []
        if isinstance(intent, Unicast):
            self._inc("unicasts")
            self._queue_unicast(outgoing, sender, intent)
        elif isinstance(intent, Multicast):
            self._inc("multicasts")
            self._queue_multicast(outgoing, sender, intent)

        return self.registry.deliver(outgoing)

    def _queue_unicast(
        self, outgoing: list[tuple[Sink, str]], sender: str, intent: Unicast
    ) -> None:
        target_sink = self.registry.resolve(intent.target)
        if target_sink is None:
            self._unreachable(sender, intent.target)
            return

        outgoing.append(
            (target_sink, format_unicast(sender, intent.target, intent.payload))
        )

        sender_sink = self.registry.resolve(sender)
        if sender_sink is not None:
            outgoing.append(
                (sender_sink, format_unicast_echo(sender, intent.target, intent.payload))
            )

    def _queue_multicast(
        self, outgoing: list[tuple[Sink, str]], sender: str, intent: Multicast
    ) -> None:
        line = format_message(sender, intent.payload)
        for target in intent.targets:
            sink = self.registry.resolve(target)
            if sink is None:
                self._unreachable(sender, target)
                continue
            outgoing.append((sink, line))

    def _unreachable(self, sender: str, target: str) -> None:
        self._inc("recipients_unreachable")
        self.log.debug("Dropping message sender=%r unknown target=%r", sender, target)

    def _inc(self, key: str) -> None:
        if self.stats is not None:
            self.stats.inc(key)
