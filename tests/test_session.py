import socket
import threading

import pytest

from relaychat.connection import Connection
from relaychat.session import Session, SessionState


class _Peer:
    """Client side of a socketpair speaking raw protocol lines."""

    def __init__(self, sock: socket.socket) -> None:
        self.sock = sock
        self.reader = sock.makefile("rb")

    def send(self, line: str) -> None:
        self.sock.sendall((line + "\n").encode("utf-8"))

    def recv(self) -> str:
        raw = self.reader.readline()
        if not raw:
            raise EOFError
        return raw.decode("utf-8").rstrip("\n")

    def close(self) -> None:
        self.reader.close()
        self.sock.close()


@pytest.fixture
def start_session(registry, router, stats):
    started: list[tuple[Session, threading.Thread, _Peer]] = []

    def start(*, max_name_attempts: int = 0, route=None):
        server_sock, client_sock = socket.socketpair()
        client_sock.settimeout(5.0)
        conn = Connection(server_sock, peer="test", close_timeout_s=0.2, stats=stats)
        conn.start()
        session = Session(
            conn,
            registry,
            route or router,
            max_name_attempts=max_name_attempts,
            stats=stats,
        )
        thread = threading.Thread(target=session.run, daemon=True)
        thread.start()
        peer = _Peer(client_sock)
        started.append((session, thread, peer))
        return session, thread, peer

    yield start

    for session, thread, peer in started:
        peer.close()
        thread.join(5)


def test_handshake_then_roster(start_session, registry) -> None:
    session, _thread, peer = start_session()
    assert peer.recv() == "SUBMITNAME"
    peer.send("alice")
    assert peer.recv() == "NAMEACCEPTED"
    assert peer.recv() == "USERLISTalice"
    assert registry.snapshot_names() == ["alice"]
    assert session.state is SessionState.ACTIVE
    assert session.name == "alice"


def test_name_is_trimmed(start_session, registry) -> None:
    session, _thread, peer = start_session()
    peer.recv()
    peer.send("  alice  ")
    assert peer.recv() == "NAMEACCEPTED"
    assert session.name == "alice"


def test_conflicting_and_empty_names_are_reprompted(
    start_session, registry, sink_factory, stats
) -> None:
    registry.try_register("alice", sink_factory())
    _session, _thread, peer = start_session()

    assert peer.recv() == "SUBMITNAME"
    peer.send("alice")
    assert peer.recv() == "SUBMITNAME"
    peer.send("")
    assert peer.recv() == "SUBMITNAME"
    peer.send("a:b")
    assert peer.recv() == "SUBMITNAME"
    peer.send("bob")
    assert peer.recv() == "NAMEACCEPTED"
    assert peer.recv() == "USERLISTalice:bob"
    assert stats.get("name_conflicts") == 3


def test_eof_during_handshake_closes_cleanly(start_session, registry) -> None:
    session, thread, peer = start_session()
    assert peer.recv() == "SUBMITNAME"
    peer.sock.shutdown(socket.SHUT_WR)
    thread.join(5)
    assert not thread.is_alive()
    assert session.state is SessionState.CLOSED
    assert session.name is None
    assert registry.snapshot_names() == []


def test_disconnect_unregisters_and_updates_roster(
    start_session, registry, sink_factory
) -> None:
    observer = sink_factory("observer")
    registry.try_register("observer", observer)

    session, thread, peer = start_session()
    peer.recv()
    peer.send("alice")
    peer.recv()
    peer.recv()

    peer.sock.shutdown(socket.SHUT_WR)
    thread.join(5)

    assert session.state is SessionState.CLOSED
    assert registry.snapshot_names() == ["observer"]
    assert observer.lines == ["USERLISTobserver", "USERLISTobserver:alice", "USERLISTobserver"]
    assert session.conn.closed


def test_lines_are_routed_with_session_name(start_session, registry, sink_factory) -> None:
    bob = sink_factory("bob")
    registry.try_register("bob", bob)

    _session, _thread, peer = start_session()
    peer.recv()
    peer.send("alice")
    peer.recv()
    peer.recv()

    peer.send("hello")
    assert peer.recv() == "MESSAGE alice: hello"
    peer.send("bob>>psst")
    assert peer.recv() == "alice>> bob(UNICAST): psst"

    assert bob.take() == [
        "USERLISTbob",
        "USERLISTbob:alice",
        "MESSAGE alice: hello",
        "MESSAGE alice >> bob(UNICAST): psst",
    ]


def test_max_name_attempts_closes_connection(start_session, registry, sink_factory) -> None:
    registry.try_register("alice", sink_factory())
    session, thread, peer = start_session(max_name_attempts=2)

    assert peer.recv() == "SUBMITNAME"
    peer.send("alice")
    assert peer.recv() == "SUBMITNAME"
    peer.send("alice")
    with pytest.raises(EOFError):
        peer.recv()

    thread.join(5)
    assert session.state is SessionState.CLOSED
    assert registry.snapshot_names() == ["alice"]


class _ExplodingRouter:
    def route(self, sender: str, line: str) -> int:
        raise RuntimeError("boom")


def test_router_failure_ends_only_this_session(start_session, registry) -> None:
    session, thread, peer = start_session(route=_ExplodingRouter())
    peer.recv()
    peer.send("alice")
    peer.recv()
    peer.recv()

    peer.send("hello")
    thread.join(5)

    assert not thread.is_alive()
    assert session.state is SessionState.CLOSED
    assert registry.snapshot_names() == []
