"""Server lifecycle state management."""

import logging
import threading
from enum import Enum

from reactor_http.domain.correlation_id import CorrelationLoggerAdapter

LIFECYCLE_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("reactor_http.lifecycle"), {}
)


class ServerState(Enum):
    """States a server instance moves through; STOPPED is terminal."""

    CREATED = "created"
    STARTED = "started"
    STOPPING = "stopping"
    STOPPED = "stopped"


class ServerLifecycle:
    """Thread-safe state machine guarding start/stop transitions."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = ServerState.CREATED
        self._stopped_event = threading.Event()

    @property
    def state(self) -> ServerState:
        with self._lock:
            return self._state

    def is_running(self) -> bool:
        """Return True between a successful start and the first stop."""
        return self.state is ServerState.STARTED

    def mark_started(self) -> None:
        """Move CREATED -> STARTED; a server is never started twice."""
        with self._lock:
            if self._state is not ServerState.CREATED:
                raise RuntimeError(f"Cannot start a server that is {self._state.value}")
            self._state = ServerState.STARTED
        LIFECYCLE_LOGGER.debug(
            "Server state changed",
            extra={"event": "state_changed", "state": "started"},
        )

    def begin_stopping(self) -> bool:
        """Claim the shutdown; return False when another caller already did.

        A server that was never started goes straight to STOPPED and there is
        nothing for the caller to tear down.
        """
        with self._lock:
            previous = self._state
            if previous in (ServerState.STOPPING, ServerState.STOPPED):
                return False
            if previous is ServerState.CREATED:
                self._state = ServerState.STOPPED
                self._stopped_event.set()
                return False
            self._state = ServerState.STOPPING
        LIFECYCLE_LOGGER.info(
            "Beginning graceful shutdown",
            extra={"event": "server_stopping", "state": "stopping"},
        )
        return True

    def mark_stopped(self) -> None:
        """Enter the terminal STOPPED state."""
        with self._lock:
            self._state = ServerState.STOPPED
        self._stopped_event.set()

    def wait_stopped(self, timeout: float | None = None) -> bool:
        """Block until the server reaches STOPPED or the timeout elapses."""
        return self._stopped_event.wait(timeout)
