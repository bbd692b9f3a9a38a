"""Run the reactor HTTP server with a small demonstration handler."""

import logging
import signal
import sys

from reactor_http.bootstrap.config import config_from_args, parse_cli_args
from reactor_http.bootstrap.logging_setup import configure_logging
from reactor_http.bootstrap.socket_factory import BindFailure
from reactor_http.domain.correlation_id import CorrelationLoggerAdapter
from reactor_http.domain.http_types import Method, Request, Response, Status
from reactor_http.server import ReactorServer

MAIN_LOGGER = CorrelationLoggerAdapter(logging.getLogger("reactor_http.main"), {})
SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


def demo_handler(request: Request) -> Response:
    """Answer ``GET /hello`` with ``hi`` and echo every other request body."""
    if request.method is Method.GET and request.uri == "/hello":
        return Response(Status.OK, (("Content-Type", "text/plain"),), b"hi")
    content_type = request.header_value("content-type") or "application/octet-stream"
    return Response(Status.OK, (("Content-Type", content_type),), request.body)


def main() -> None:
    """Start the server and block until a shutdown signal arrives."""
    args = parse_cli_args(sys.argv[1:])
    configure_logging(args.log_level, args.log_destination)
    config = config_from_args(args)

    MAIN_LOGGER.info(
        "Starting HTTP server",
        extra={
            "event": "server_starting",
            "host": str(config.host),
            "port": config.port,
            "acceptor_threads": config.acceptor_threads,
            "io_threads": config.io_threads,
            "idle_timeout_seconds": config.idle_timeout_seconds,
            "shutdown_grace_seconds": config.shutdown_grace_seconds,
        },
    )
    server = ReactorServer(demo_handler, config)

    def shutdown_handler(signum: int, _frame) -> None:
        MAIN_LOGGER.info(
            "Received shutdown signal",
            extra={"event": "signal_received", "signal": signum},
        )
        server.stop()

    # Loop threads inherit the blocked mask; signals reach the main thread
    # only once the handlers are in place.
    signal.pthread_sigmask(signal.SIG_BLOCK, SHUTDOWN_SIGNALS)
    try:
        server.start()
    except BindFailure:
        sys.exit(1)
    for signum in SHUTDOWN_SIGNALS:
        signal.signal(signum, shutdown_handler)
    signal.pthread_sigmask(signal.SIG_UNBLOCK, SHUTDOWN_SIGNALS)

    try:
        server.block()
    finally:
        server.stop()
    sys.exit(0)


if __name__ == "__main__":
    main()
