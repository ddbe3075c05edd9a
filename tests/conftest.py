import socket
import threading

import pytest

from relaychat.connection import Connection
from relaychat.registry import Registry
from relaychat.router import MessageRouter
from relaychat.stats import StatsManager


class RecordingSink:
    def __init__(self, label: str = "fake") -> None:
        self.label = label
        self.lines: list[str] = []
        self._lock = threading.Lock()

    def send_line(self, line: str) -> bool:
        with self._lock:
            self.lines.append(line)
        return True

    def take(self) -> list[str]:
        with self._lock:
            lines, self.lines = self.lines, []
        return lines


@pytest.fixture
def stats() -> StatsManager:
    return StatsManager()


@pytest.fixture
def registry(stats: StatsManager) -> Registry:
    return Registry(stats=stats)


@pytest.fixture
def router(registry: Registry, stats: StatsManager) -> MessageRouter:
    return MessageRouter(registry, stats=stats)


@pytest.fixture
def sink_factory():
    def make(label: str = "fake") -> RecordingSink:
        return RecordingSink(label)

    return make


@pytest.fixture
def conn_pair():
    """A started server-side Connection and the raw client socket facing it."""
    server_sock, client_sock = socket.socketpair()
    client_sock.settimeout(5.0)
    conn = Connection(server_sock, peer="pair", close_timeout_s=0.2)
    conn.start()
    yield conn, client_sock
    conn.close()
    client_sock.close()
