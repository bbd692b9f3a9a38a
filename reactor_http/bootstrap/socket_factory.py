"""Listening socket creation."""

import logging
import socket

from reactor_http.bootstrap.config import ServerConfig
from reactor_http.domain.correlation_id import CorrelationLoggerAdapter

SOCKET_LOGGER = CorrelationLoggerAdapter(logging.getLogger("reactor_http.socket"), {})


class BindFailure(OSError):
    """Raised when the listening socket cannot be established."""


def create_server_socket(config: ServerConfig) -> socket.socket:
    """Bind a non-blocking listening socket for the configured address.

    SO_REUSEPORT stays off: a port held by another listener raises BindFailure.
    """
    address = (str(config.host), config.port)
    try:
        server_socket = socket.create_server(address, backlog=config.backlog)
    except (OSError, OverflowError) as error:
        SOCKET_LOGGER.critical(
            "Failed to bind listening socket",
            extra={
                "event": "bind_failed",
                "host": address[0],
                "port": config.port,
                "error_type": type(error).__name__,
                "error": str(error),
            },
        )
        raise BindFailure(
            f"Could not bind {address[0]}:{config.port}: {error}"
        ) from error
    server_socket.setblocking(False)
    return server_socket
