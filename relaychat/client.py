"""Minimal line client for the relay protocol.

Used by the `relaychat-client` console script and by the end-to-end tests.
"""

from __future__ import annotations

import argparse
import logging
import socket
import sys
import threading
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

from .codec import decode_line, encode_line
from .constants import (
    DEFAULT_PORT,
    L_MESSAGE,
    L_NAMEACCEPTED,
    L_SUBMITNAME,
    L_USERLIST,
    ROSTER_SEP,
    ROUTE_DELIM,
    TARGET_SEP,
)

K_SUBMITNAME = "submitname"
K_ACCEPTED = "accepted"
K_USERLIST = "userlist"
K_MESSAGE = "message"
K_OTHER = "other"


@dataclass(frozen=True)
class ServerLine:
    kind: str
    text: str = ""
    names: tuple[str, ...] = ()


def parse_server_line(line: str) -> ServerLine:
    if line.startswith(L_SUBMITNAME):
        return ServerLine(K_SUBMITNAME)
    if line.startswith(L_NAMEACCEPTED):
        return ServerLine(K_ACCEPTED)
    if line.startswith(L_USERLIST):
        rest = line[len(L_USERLIST):]
        names = tuple(n for n in rest.split(ROSTER_SEP) if n)
        return ServerLine(K_USERLIST, names=names)
    if line.startswith(L_MESSAGE):
        return ServerLine(K_MESSAGE, text=line[len(L_MESSAGE):])
    return ServerLine(K_OTHER, text=line)


def format_outbound(text: str, targets: Sequence[str] = ()) -> str:
    if not targets:
        return text
    return TARGET_SEP.join(targets) + ROUTE_DELIM + text


class ChatClient:
    """
    Blocking client.

    `register` performs the handshake; afterwards `read_event` returns one
    parsed server line at a time and keeps `roster` and `transcript` current.
    """

    def __init__(
        self, host: str = "127.0.0.1", port: int = DEFAULT_PORT, *, timeout: float | None = None
    ) -> None:
        self.host = host
        self.port = int(port)
        self.timeout = timeout
        self.log = logging.getLogger("relaychat.client")

        self.name: str | None = None
        self.accepted = False
        self.roster: tuple[str, ...] = ()
        self.transcript: list[str] = []

        self._sock: socket.socket | None = None
        self._reader = None
        self._send_lock = threading.Lock()

    def connect(self) -> None:
        self._sock = socket.create_connection((self.host, self.port), timeout=self.timeout)
        self._reader = self._sock.makefile("rb")

    def close(self) -> None:
        if self._reader is not None:
            try:
                self._reader.close()
            except OSError:
                pass
        if self._sock is not None:
            try:
                self._sock.close()
            except OSError:
                pass
        self._sock = None
        self._reader = None

    def __enter__(self) -> ChatClient:
        self.connect()
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def read_line(self) -> str:
        if self._reader is None:
            raise ConnectionError("not connected")
        raw = self._reader.readline()
        if not raw:
            raise ConnectionError("server closed the connection")
        return decode_line(raw)

    def send_line(self, line: str) -> None:
        if self._sock is None:
            raise ConnectionError("not connected")
        with self._send_lock:
            self._sock.sendall(encode_line(line))

    def send(self, text: str, targets: Sequence[str] = ()) -> None:
        if not self.accepted:
            raise RuntimeError("name not accepted yet")
        self.send_line(format_outbound(text, targets))

    def register(self, names: Iterable[str] | Callable[[], str | None]) -> str:
        """
        Answer SUBMITNAME prompts until the server accepts a name.

        `names` is either candidate names to try in order or a callable
        producing the next candidate (None gives up).
        """
        if callable(names):
            next_name = names
        else:
            it = iter(names)

            def next_name() -> str | None:
                return next(it, None)

        proposed: str | None = None
        while not self.accepted:
            event = self._handle(self.read_line())
            if event.kind == K_SUBMITNAME:
                proposed = next_name()
                if proposed is None:
                    raise ValueError("no acceptable name left to propose")
                self.send_line(proposed)
            elif event.kind == K_ACCEPTED:
                self.name = proposed
        assert self.name is not None
        return self.name

    def read_event(self) -> ServerLine:
        return self._handle(self.read_line())

    def _handle(self, line: str) -> ServerLine:
        event = parse_server_line(line)
        if event.kind == K_ACCEPTED:
            self.accepted = True
        elif event.kind == K_USERLIST:
            self.roster = event.names
        elif event.kind in (K_MESSAGE, K_OTHER):
            self.transcript.append(event.text)
        return event


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="relaychat-client", description="Connect to a relaychat server"
    )
    p.add_argument("--host", default="127.0.0.1", help="Server host")
    p.add_argument("--port", type=int, default=DEFAULT_PORT, help="Server port")
    p.add_argument(
        "--name",
        action="append",
        default=[],
        help="Name to propose (repeatable; prompts on stdin when exhausted)",
    )
    return p


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    candidates = list(args.name)

    def next_name() -> str | None:
        if candidates:
            return candidates.pop(0)
        print("Choose a screen name: ", end="", file=sys.stderr, flush=True)
        line = sys.stdin.readline()
        return line.strip() if line else None

    client = ChatClient(args.host, args.port)
    try:
        client.connect()
        name = client.register(next_name)
    except (OSError, ValueError) as e:
        print(f"relaychat-client: {e}", file=sys.stderr)
        client.close()
        raise SystemExit(1) from e

    print(f"Connected as {name}. Use 'a,b>>text' to address people.", file=sys.stderr)

    def pump() -> None:
        try:
            while True:
                event = client.read_event()
                if event.kind == K_USERLIST:
                    print(f"* online: {', '.join(event.names)}")
                elif event.kind in (K_MESSAGE, K_OTHER):
                    print(event.text)
        except OSError:
            print("* disconnected", file=sys.stderr)

    threading.Thread(target=pump, name="relaychat-client-reader", daemon=True).start()

    try:
        for line in sys.stdin:
            client.send_line(line.rstrip("\r\n"))
    except (KeyboardInterrupt, OSError):
        pass
    finally:
        client.close()


if __name__ == "__main__":
    main()
