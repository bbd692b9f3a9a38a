"""Connection acceptance on the acceptor loop and hand-off to I/O loops."""

import asyncio
import concurrent.futures
import functools
import logging
import socket
from typing import Callable

from reactor_http.bootstrap.config import ServerConfig
from reactor_http.domain.correlation_id import CorrelationLoggerAdapter
from reactor_http.domain.http_types import HttpHandler
from reactor_http.pipeline.adapter import ProtocolAdapter
from reactor_http.pipeline.codec import HttpFramer
from reactor_http.transport.connection import HttpConnection
from reactor_http.transport.event_loop_group import EventLoop, EventLoopGroup

ACCEPT_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("reactor_http.transport.accept"), {}
)

ACCEPT_ERROR_BACKOFF_SECONDS = 0.1

ConnectionInitializer = Callable[[EventLoop], HttpConnection]


def connection_initializer(
    handler: HttpHandler, config: ServerConfig
) -> ConnectionInitializer:
    """Return a factory that builds the pipeline for each accepted socket."""

    def initialize(event_loop: EventLoop) -> HttpConnection:
        return HttpConnection(
            ProtocolAdapter(handler),
            HttpFramer(max_body_bytes=config.max_body_bytes),
            event_loop,
            idle_timeout=config.idle_timeout_seconds,
        )

    return initialize


def _apply_socket_options(client_socket: socket.socket, so_keepalive: bool) -> None:
    client_socket.setsockopt(
        socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1 if so_keepalive else 0
    )
    client_socket.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
    client_socket.setblocking(False)


def _handoff_done(
    client_socket: socket.socket, client: str, future: concurrent.futures.Future
) -> None:
    if not future.cancelled() and future.exception() is None:
        return
    client_socket.close()
    error = None if future.cancelled() else future.exception()
    ACCEPT_LOGGER.warning(
        "Accepted connection could not be registered",
        extra={
            "event": "handoff_failed",
            "client": client,
            "error_type": type(error).__name__ if error else "CancelledError",
        },
    )


def _hand_off(
    client_socket: socket.socket,
    client_address: tuple,
    io_group: EventLoopGroup,
    initializer: ConnectionInitializer,
    so_keepalive: bool,
) -> None:
    """Register an accepted socket with the next I/O loop."""
    client = f"{client_address[0]}:{client_address[1]}"
    if ACCEPT_LOGGER.logger.isEnabledFor(logging.DEBUG):
        ACCEPT_LOGGER.debug(
            "Client connection accepted",
            extra={"event": "client_accepted", "client": client},
        )

    try:
        _apply_socket_options(client_socket, so_keepalive)
    except OSError as error:
        client_socket.close()
        ACCEPT_LOGGER.warning(
            "Socket options could not be applied",
            extra={
                "event": "handoff_failed",
                "client": client,
                "error_type": type(error).__name__,
            },
        )
        return

    io_loop = io_group.next_loop()
    try:
        future = io_loop.submit(
            io_loop.loop.connect_accepted_socket(
                lambda: initializer(io_loop), sock=client_socket
            )
        )
    except RuntimeError as error:
        client_socket.close()
        ACCEPT_LOGGER.warning(
            "I/O loop unavailable for accepted connection",
            extra={
                "event": "handoff_failed",
                "client": client,
                "loop": io_loop.name,
                "error_type": type(error).__name__,
            },
        )
        return
    future.add_done_callback(functools.partial(_handoff_done, client_socket, client))


async def accept_connections(
    listen_socket: socket.socket,
    io_group: EventLoopGroup,
    initializer: ConnectionInitializer,
    so_keepalive: bool = True,
) -> None:
    """Accept until cancelled, then close the listening socket."""
    loop = asyncio.get_running_loop()
    try:
        while True:
            try:
                client_socket, client_address = await loop.sock_accept(listen_socket)
            except OSError as error:
                ACCEPT_LOGGER.error(
                    "Socket accept failed",
                    extra={"event": "accept_error", "error_type": type(error).__name__},
                )
                await asyncio.sleep(ACCEPT_ERROR_BACKOFF_SECONDS)
                continue
            _hand_off(
                client_socket, client_address, io_group, initializer, so_keepalive
            )
    finally:
        loop.remove_reader(listen_socket)
        listen_socket.close()
        ACCEPT_LOGGER.debug(
            "Listening socket closed", extra={"event": "listener_closed"}
        )
