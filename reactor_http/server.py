"""Server facade: binds, serves and shuts down an HTTP handler."""

import concurrent.futures
import logging
import socket
import threading
from typing import Optional

from reactor_http.bootstrap.config import ServerConfig
from reactor_http.bootstrap.socket_factory import BindFailure, create_server_socket
from reactor_http.domain.correlation_id import CorrelationLoggerAdapter
from reactor_http.domain.filters import catch_all
from reactor_http.domain.http_types import HttpHandler
from reactor_http.lifecycle.state import ServerLifecycle, ServerState
from reactor_http.transport.accept_loop import (
    ConnectionInitializer,
    accept_connections,
    connection_initializer,
)
from reactor_http.transport.event_loop_group import EventLoopGroup

SERVER_LOGGER = CorrelationLoggerAdapter(logging.getLogger("reactor_http.server"), {})

LISTENER_CLOSE_TIMEOUT_SECONDS = 5.0
TERMINATION_MARGIN_SECONDS = 2.0


class ReactorServer:
    """Accepts connections on one loop group and serves them on another.

    ``start`` binds and returns immediately; ``block`` waits for the listening
    socket to close; ``stop`` closes it and drains both loop groups.
    """

    def __init__(
        self, handler: HttpHandler, config: Optional[ServerConfig] = None
    ) -> None:
        self._handler = handler
        self.config = config if config is not None else ServerConfig()
        self._lifecycle = ServerLifecycle()
        self._acceptor_group: Optional[EventLoopGroup] = None
        self._io_group: Optional[EventLoopGroup] = None
        self._accept_future = None
        self._accepting = threading.Event()
        self._listener_closed = threading.Event()
        self._port: Optional[int] = None

    @property
    def port(self) -> Optional[int]:
        """Port actually bound, known once ``start`` has returned."""
        return self._port

    @property
    def state(self) -> ServerState:
        return self._lifecycle.state

    def __enter__(self) -> "ReactorServer":
        return self.start()

    def __exit__(self, *exc_info) -> None:
        self.stop()

    def start(self) -> "ReactorServer":
        """Bind the listening socket and begin accepting connections.

        Raises BindFailure when the address cannot be bound; the server is
        then STOPPED and cannot be restarted.
        """
        self._lifecycle.mark_started()
        self._acceptor_group = EventLoopGroup(
            self.config.acceptor_threads, "reactor-acceptor"
        )
        self._io_group = EventLoopGroup(self.config.io_threads, "reactor-io")

        try:
            listen_socket = create_server_socket(self.config)
        except BindFailure:
            self._acceptor_group.shutdown_gracefully(0)
            self._io_group.shutdown_gracefully(0)
            self._listener_closed.set()
            self._lifecycle.mark_stopped()
            raise

        self._port = listen_socket.getsockname()[1]
        self._io_group.start()
        self._acceptor_group.start()

        initializer = connection_initializer(catch_all(self._handler), self.config)
        acceptor = self._acceptor_group.next_loop()
        self._accept_future = acceptor.submit(self._serve(listen_socket, initializer))
        self._accepting.wait(LISTENER_CLOSE_TIMEOUT_SECONDS)

        SERVER_LOGGER.info(
            "Server listening for connections",
            extra={
                "event": "server_listening",
                "host": str(self.config.host),
                "port": self._port,
                "backlog": self.config.backlog,
                "acceptor_threads": len(self._acceptor_group),
                "io_threads": len(self._io_group),
            },
        )
        return self

    async def _serve(
        self, listen_socket: socket.socket, initializer: ConnectionInitializer
    ) -> None:
        self._accepting.set()
        try:
            await accept_connections(
                listen_socket, self._io_group, initializer, self.config.so_keepalive
            )
        except Exception:
            SERVER_LOGGER.error(
                "Accept loop terminated unexpectedly",
                extra={"event": "accept_loop_failed"},
                exc_info=True,
            )
            raise
        finally:
            self._listener_closed.set()

    def block(self) -> None:
        """Wait until the listening socket has been closed.

        Re-raises the error that ended the accept loop, if any; the caller
        still owns the ``stop`` call.
        """
        if self._accept_future is None:
            return
        self._listener_closed.wait()
        try:
            error = self._accept_future.exception(LISTENER_CLOSE_TIMEOUT_SECONDS)
        except concurrent.futures.CancelledError:
            return
        if error is not None:
            raise error

    def stop(self) -> None:
        """Close the listener, then drain I/O loops before acceptor loops.

        Safe to call more than once, from any thread, and before ``start``.
        """
        if not self._lifecycle.begin_stopping():
            return

        grace = self.config.shutdown_grace_seconds
        if self._accept_future is not None:
            self._accept_future.cancel()
        if not self._listener_closed.wait(LISTENER_CLOSE_TIMEOUT_SECONDS):
            SERVER_LOGGER.warning(
                "Listening socket did not close in time",
                extra={"event": "listener_close_timeout"},
            )

        self._io_group.shutdown_gracefully(grace)
        self._acceptor_group.shutdown_gracefully(grace)
        timeout = grace + TERMINATION_MARGIN_SECONDS
        io_done = self._io_group.await_termination(timeout)
        acceptor_done = self._acceptor_group.await_termination(timeout)

        self._lifecycle.mark_stopped()
        SERVER_LOGGER.info(
            "Server shutdown complete",
            extra={
                "event": "server_stopped",
                "state": "stopped" if io_done and acceptor_done else "forced",
            },
        )
