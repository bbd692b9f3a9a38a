"""Fixed-size pools of single-threaded asyncio event loops."""

import asyncio
import concurrent.futures
import itertools
import logging
import threading
import time
from typing import Coroutine, Iterator, Protocol

from reactor_http.domain.correlation_id import CorrelationLoggerAdapter

LOOP_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("reactor_http.transport.loop"), {}
)

DRAIN_POLL_SECONDS = 0.05


class Drainable(Protocol):
    """Connection hooks an event loop uses while shutting down."""

    def shutdown(self) -> None:
        """Close after pending writes are flushed."""

    def abort(self) -> None:
        """Close immediately, discarding pending writes."""


class EventLoop:
    """One asyncio loop running forever on its own named thread.

    Connections registered here are only touched from the loop's thread.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._connections: set[Drainable] = set()
        self._shutdown_lock = threading.Lock()
        self._shutdown_requested = False

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def start(self) -> None:
        self._thread.start()

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        try:
            self.loop.run_forever()
        finally:
            try:
                self.loop.run_until_complete(self.loop.shutdown_asyncgens())
            finally:
                self.loop.close()
            LOOP_LOGGER.debug(
                "Event loop terminated",
                extra={"event": "loop_terminated", "loop": self.name},
            )

    def submit(self, coro: Coroutine) -> concurrent.futures.Future:
        """Schedule a coroutine on this loop from any thread."""
        try:
            return asyncio.run_coroutine_threadsafe(coro, self.loop)
        except RuntimeError:
            coro.close()
            raise

    def register(self, connection: Drainable) -> None:
        self._connections.add(connection)

    def unregister(self, connection: Drainable) -> None:
        self._connections.discard(connection)

    async def _drain(self, grace_seconds: float) -> None:
        """Close owned connections, give writes the grace period, then abort."""
        for connection in list(self._connections):
            connection.shutdown()

        deadline = self.loop.time() + grace_seconds
        while self._connections and self.loop.time() < deadline:
            await asyncio.sleep(DRAIN_POLL_SECONDS)

        if self._connections:
            LOOP_LOGGER.warning(
                "Shutdown grace period exceeded",
                extra={
                    "event": "loop_drain_timeout",
                    "loop": self.name,
                    "remaining_connections": len(self._connections),
                },
            )
            for connection in list(self._connections):
                connection.abort()
            await asyncio.sleep(0)

        current = asyncio.current_task()
        pending = [task for task in asyncio.all_tasks() if task is not current]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self.loop.call_soon(self.loop.stop)

    def shutdown_gracefully(self, grace_seconds: float) -> None:
        """Drain and stop the loop; repeated calls are no-ops."""
        with self._shutdown_lock:
            if self._shutdown_requested:
                return
            self._shutdown_requested = True

        if self._thread.ident is None:
            self.loop.close()
            return
        if not self._thread.is_alive():
            return
        try:
            self.submit(self._drain(grace_seconds))
        except RuntimeError:
            LOOP_LOGGER.debug(
                "Event loop already closed",
                extra={"event": "loop_terminated", "loop": self.name},
            )

    def await_termination(self, timeout: float) -> bool:
        """Wait for the loop thread to exit; return False on timeout."""
        if self._thread.ident is None:
            return True
        self._thread.join(timeout=max(0.0, timeout))
        return not self._thread.is_alive()


class EventLoopGroup:
    """Fixed set of event loops handed out round-robin."""

    def __init__(self, size: int, name: str) -> None:
        self.name = name
        self._loops = [EventLoop(f"{name}-{index}") for index in range(max(1, size))]
        self._cycle = itertools.cycle(self._loops)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._loops)

    def __iter__(self) -> Iterator[EventLoop]:
        return iter(self._loops)

    def start(self) -> None:
        for event_loop in self._loops:
            event_loop.start()
        LOOP_LOGGER.debug(
            "Event loop group started",
            extra={"event": "loop_group_started", "loop": self.name},
        )

    def next_loop(self) -> EventLoop:
        """Return the next loop in round-robin order."""
        with self._lock:
            return next(self._cycle)

    def shutdown_gracefully(self, grace_seconds: float) -> None:
        for event_loop in self._loops:
            event_loop.shutdown_gracefully(grace_seconds)

    def await_termination(self, timeout: float) -> bool:
        """Wait for every loop against one shared deadline."""
        deadline = time.monotonic() + timeout
        for event_loop in self._loops:
            remaining = deadline - time.monotonic()
            if not event_loop.await_termination(remaining):
                LOOP_LOGGER.warning(
                    "Event loop did not terminate in time",
                    extra={"event": "loop_drain_timeout", "loop": event_loop.name},
                )
                return False
        return True
