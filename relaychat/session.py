from __future__ import annotations

import enum
import logging
from typing import TYPE_CHECKING

from .connection import ConnState, TransportClosed
from .constants import L_NAMEACCEPTED, L_SUBMITNAME

if TYPE_CHECKING:
    from .connection import Connection
    from .registry import Registry
    from .router import MessageRouter
    from .stats import StatsManager


class SessionState(enum.Enum):
    CONNECTING = "connecting"
    HANDSHAKING = "handshaking"
    ACTIVE = "active"
    CLOSED = "closed"


class Session:
    """
    Per-connection control loop.

    Drives the name handshake against the registry, then hands each line to
    the router. Whatever ends the loop (EOF, read error or an exception while
    routing), `run` unregisters the name and closes the connection exactly
    once.
    """

    def __init__(
        self,
        conn: Connection,
        registry: Registry,
        router: MessageRouter,
        *,
        max_name_attempts: int = 0,
        stats: StatsManager | None = None,
    ) -> None:
        self.conn = conn
        self.registry = registry
        self.router = router
        self.max_name_attempts = int(max_name_attempts)
        self.stats = stats
        self.log = logging.getLogger("relaychat.session")

        self.state = SessionState.CONNECTING
        self.name: str | None = None

    def run(self) -> None:
        try:
            self.state = SessionState.HANDSHAKING
            if self._handshake():
                self._serve()
        except TransportClosed as e:
            self.log.debug("Transport closed conn=%s name=%r: %s", self.conn.label, self.name, e)
        except Exception:
            self.log.exception(
                "Session failed conn=%s name=%r", self.conn.label, self.name
            )
        finally:
            self._close()

    def _handshake(self) -> bool:
        attempts = 0
        while True:
            self.conn.send_line(L_SUBMITNAME)
            proposed = self.conn.read_line().strip()

            if self.registry.try_register(
                proposed, self.conn, welcome=(L_NAMEACCEPTED,)
            ):
                self.name = proposed
                self.conn.state = ConnState.REGISTERED
                self.state = SessionState.ACTIVE
                return True

            attempts += 1
            if self.stats is not None:
                self.stats.inc("name_conflicts")
            self.log.debug(
                "Name rejected conn=%s proposed=%r attempt=%s",
                self.conn.label,
                proposed,
                attempts,
            )

            if self.max_name_attempts > 0 and attempts >= self.max_name_attempts:
                self.log.info(
                    "Giving up on handshake conn=%s attempts=%s",
                    self.conn.label,
                    attempts,
                )
                return False

    def _serve(self) -> None:
        assert self.name is not None
        self.conn.state = ConnState.ACTIVE
        while True:
            line = self.conn.read_line()
            self.router.route(self.name, line)

    def _close(self) -> None:
        if self.state is SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED

        try:
            if self.name is not None:
                self.registry.unregister(self.name, self.conn)
        finally:
            self.conn.close()

        self.log.info("Session closed conn=%s name=%r", self.conn.label, self.name)
