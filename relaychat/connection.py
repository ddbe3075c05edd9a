"""Line-oriented wrapper around one accepted stream socket."""

from __future__ import annotations

import enum
import logging
import queue
import socket
import threading
from typing import TYPE_CHECKING

from .codec import decode_line, encode_line
from .constants import MAX_LINE_BYTES

if TYPE_CHECKING:
    from .stats import StatsManager


class TransportClosed(ConnectionError):
    """End-of-stream or I/O failure on a connection's own stream."""


class ConnState(enum.Enum):
    OPEN = "open"
    REGISTERED = "registered"
    ACTIVE = "active"
    CLOSED = "closed"


_CLOSE = object()


class Connection:
    """
    One client stream.

    Reads happen on the owning session's thread. Writes are queued with
    `send_line` and performed by a dedicated writer thread, so callers never
    block on a slow peer. When the queue is full the line is dropped for this
    connection only.
    """

    def __init__(
        self,
        sock: socket.socket,
        *,
        peer: object = None,
        send_queue_max: int = 256,
        max_line_bytes: int = MAX_LINE_BYTES,
        close_timeout_s: float = 1.0,
        stats: StatsManager | None = None,
    ) -> None:
        self.log = logging.getLogger("relaychat.connection")
        self.peer = peer
        self.state = ConnState.OPEN
        self.stats = stats

        self._sock = sock
        self._label = self._make_label()
        self._reader = sock.makefile("rb")
        self._outbound: queue.Queue = queue.Queue(maxsize=max(0, int(send_queue_max)))
        self._close_timeout_s = float(close_timeout_s)
        self._max_line_bytes = int(max_line_bytes)
        self._closed = threading.Event()
        self._broken = False
        self._close_lock = threading.Lock()
        self._writer = threading.Thread(
            target=self._writer_loop,
            name=f"relaychat-writer-{self.label}",
            daemon=True,
        )

    @property
    def label(self) -> str:
        return self._label

    def _make_label(self) -> str:
        if isinstance(self.peer, tuple) and len(self.peer) >= 2:
            return f"{self.peer[0]}:{self.peer[1]}"
        if self.peer:
            return str(self.peer)
        return f"fd{self._sock.fileno()}"

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def start(self) -> None:
        self._writer.start()

    def read_line(self) -> str:
        """Block until one full line arrives.

        Raises TransportClosed on EOF, read errors and lines longer than
        `max_line_bytes`.
        """
        limit = self._max_line_bytes if self._max_line_bytes > 0 else -1
        try:
            raw = self._reader.readline(limit)
        except (OSError, ValueError) as e:
            raise TransportClosed(f"read failed: {e}") from e

        if not raw:
            raise TransportClosed("end of stream")
        if 0 < self._max_line_bytes <= len(raw) and not raw.endswith(b"\n"):
            self.log.warning(
                "Line too long conn=%s limit=%s", self.label, self._max_line_bytes
            )
            raise TransportClosed("line too long")

        if self.stats is not None:
            self.stats.inc("lines_in")
            self.stats.inc("bytes_in", len(raw))
        return decode_line(raw)

    def send_line(self, line: str) -> bool:
        """Queue a line for delivery. Never blocks; False if it was dropped."""
        if self._closed.is_set() or self._broken:
            return False
        try:
            self._outbound.put_nowait(line)
        except queue.Full:
            self.log.warning(
                "Outbound queue full, dropping line conn=%s queued=%s",
                self.label,
                self._outbound.qsize(),
            )
            return False
        return True

    def close(self) -> None:
        """Flush what the writer can within the close timeout, then close."""
        with self._close_lock:
            if self._closed.is_set():
                return
            self._closed.set()
            self.state = ConnState.CLOSED

        if self._writer.is_alive():
            try:
                self._outbound.put(_CLOSE, timeout=self._close_timeout_s)
            except queue.Full:
                pass
            if self._writer is not threading.current_thread():
                self._writer.join(self._close_timeout_s)

        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            self._reader.close()
        except (OSError, ValueError):
            pass
        try:
            self._sock.close()
        except OSError:
            pass

    def _writer_loop(self) -> None:
        while True:
            line = self._outbound.get()
            if line is _CLOSE:
                return
            payload = encode_line(line)
            try:
                self._sock.sendall(payload)
            except OSError as e:
                self._broken = True
                if not self._closed.is_set():
                    self.log.warning(
                        "Send failed conn=%s bytes=%s err=%s",
                        self.label,
                        len(payload),
                        e,
                    )
                    if self.stats is not None:
                        self.stats.inc("delivery_failures")
                return
            if self.stats is not None:
                self.stats.inc("lines_out")
