from __future__ import annotations

import itertools
import logging
import signal
import socket
import threading
import time

from .config import RelayRuntimeConfig
from .connection import Connection
from .registry import Registry
from .router import MessageRouter
from .session import Session
from .stats import StatsManager


class RelayService:
    def __init__(self, config: RelayRuntimeConfig) -> None:
        self.config = config
        self.log = logging.getLogger("relaychat.service")

        self._shutdown = threading.Event()

        self.stats_manager = StatsManager()

        # Name -> sink map; the only state shared between session threads.
        self.registry = Registry(
            name_max_chars=config.name_max_chars, stats=self.stats_manager
        )

        self.router = MessageRouter(self.registry, stats=self.stats_manager)

        self._listener: socket.socket | None = None
        self._accept_thread: threading.Thread | None = None

        # Every open connection, registered or still handshaking, so stop()
        # can close them all.
        self._conns: set[Connection] = set()
        self._conns_lock = threading.Lock()
        self._session_ids = itertools.count(1)

    @property
    def address(self) -> tuple[str, int] | None:
        if self._listener is None:
            return None
        host, port = self._listener.getsockname()[:2]
        return host, port

    def start(self) -> None:
        if self._listener is not None:
            return

        self.stats_manager.set_start_time()

        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            listener.bind((self.config.host, int(self.config.port)))
            listener.listen(max(1, int(self.config.backlog)))
        except OSError:
            listener.close()
            raise
        # Poll so the accept loop notices shutdown.
        listener.settimeout(0.25)
        self._listener = listener

        self._accept_thread = threading.Thread(
            target=self._accept_loop, name="relaychat-accept", daemon=True
        )
        self._accept_thread.start()

        host, port = self.address or ("-", 0)
        self.log.info("Relay listening host=%s port=%s", host, port)
        self.log.info(
            "Policy name_max_chars=%s max_name_attempts=%s send_queue_max=%s",
            self.config.name_max_chars,
            self.config.max_name_attempts,
            self.config.send_queue_max,
        )

    def run_forever(self) -> None:
        if self._listener is None:
            self.start()

        signal.signal(signal.SIGINT, lambda *_: self.stop())
        signal.signal(signal.SIGTERM, lambda *_: self.stop())

        while not self._shutdown.is_set():
            time.sleep(0.25)

    def stop(self) -> None:
        if self._shutdown.is_set():
            return
        self._shutdown.set()

        if self._listener is not None:
            try:
                self._listener.close()
            except OSError:
                pass

        self.registry.clear()
        with self._conns_lock:
            conns = list(self._conns)
            self._conns.clear()

        for conn in conns:
            conn.close()

        if (
            self._accept_thread is not None
            and self._accept_thread is not threading.current_thread()
        ):
            self._accept_thread.join(1.0)

        self.log.info("Relay stopped\n%s", self.stats_manager.format_stats(self.registry))

    def _accept_loop(self) -> None:
        listener = self._listener
        assert listener is not None
        while not self._shutdown.is_set():
            try:
                sock, addr = listener.accept()
            except TimeoutError:
                continue
            except OSError as e:
                if self._shutdown.is_set():
                    break
                self.log.warning("Accept failed err=%s", e)
                continue

            try:
                self._spawn_session(sock, addr)
            except Exception:
                self.log.exception("Failed to start session peer=%s", addr)
                try:
                    sock.close()
                except OSError:
                    pass

    def _spawn_session(self, sock: socket.socket, addr) -> None:
        # Accepted sockets must block; only the listener polls.
        sock.settimeout(None)
        conn = Connection(
            sock,
            peer=addr,
            send_queue_max=self.config.send_queue_max,
            stats=self.stats_manager,
        )
        session = Session(
            conn,
            self.registry,
            self.router,
            max_name_attempts=self.config.max_name_attempts,
            stats=self.stats_manager,
        )

        with self._conns_lock:
            if self._shutdown.is_set():
                conn.close()
                return
            self._conns.add(conn)

        self.stats_manager.inc("connections")
        self.log.info("Connection accepted peer=%s", conn.label)

        conn.start()
        threading.Thread(
            target=self._run_session,
            args=(session,),
            name=f"relaychat-session-{next(self._session_ids)}",
            daemon=True,
        ).start()

    def _run_session(self, session: Session) -> None:
        try:
            session.run()
        finally:
            with self._conns_lock:
                self._conns.discard(session.conn)
