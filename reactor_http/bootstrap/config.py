"""Server configuration and CLI argument parsing."""

import argparse
import os
from dataclasses import dataclass

from reactor_http.domain.host import Host


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value is not None else default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on"}


DEFAULT_HOST = os.getenv("REACTOR_HTTP_HOST", "localhost")
DEFAULT_PORT = _env_int("REACTOR_HTTP_PORT", 8000)
DEFAULT_ACCEPTOR_THREADS = _env_int("REACTOR_HTTP_ACCEPTOR_THREADS", 1)
DEFAULT_IO_THREADS = _env_int("REACTOR_HTTP_IO_THREADS", min(4, os.cpu_count() or 1))
DEFAULT_BACKLOG = _env_int("REACTOR_HTTP_BACKLOG", 128)
DEFAULT_SO_KEEPALIVE = _env_bool("REACTOR_HTTP_SO_KEEPALIVE", True)
DEFAULT_IDLE_TIMEOUT = _env_int("REACTOR_HTTP_IDLE_TIMEOUT", 60)
DEFAULT_SHUTDOWN_GRACE_SECONDS = _env_int("REACTOR_HTTP_SHUTDOWN_GRACE_SECONDS", 5)
DEFAULT_MAX_BODY_BYTES = _env_int("REACTOR_HTTP_MAX_BODY_BYTES", 5 * 1024 * 1024)


@dataclass
class ServerConfig:
    """Transport tuning knobs for one server instance."""

    host: Host = Host(DEFAULT_HOST)
    port: int = DEFAULT_PORT
    acceptor_threads: int = DEFAULT_ACCEPTOR_THREADS
    io_threads: int = DEFAULT_IO_THREADS
    backlog: int = DEFAULT_BACKLOG
    so_keepalive: bool = DEFAULT_SO_KEEPALIVE
    idle_timeout_seconds: float = DEFAULT_IDLE_TIMEOUT
    shutdown_grace_seconds: float = DEFAULT_SHUTDOWN_GRACE_SECONDS
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES


def parse_cli_args(argv: list[str]) -> argparse.Namespace:
    """Return parsed CLI arguments for server configuration."""
    parser = argparse.ArgumentParser(
        description="Reactor HTTP server",
        epilog=(
            "Persistent connections are HTTP/1.1 only; HTTP/1.0 requests, even with "
            "Connection: keep-alive, are answered with Connection: close."
        ),
    )
    parser.add_argument("--host", type=Host, default=Host(DEFAULT_HOST))
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    default_log_level = os.getenv("REACTOR_HTTP_LOG_LEVEL", "INFO").upper()
    default_destination = os.getenv("REACTOR_HTTP_LOG_DESTINATION", "stdout")
    parser.add_argument(
        "--log-level",
        default=default_log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
    )
    parser.add_argument(
        "--log-destination",
        default=default_destination,
        help="stdout or a file path",
    )
    parser.add_argument(
        "--acceptor-threads",
        type=int,
        default=DEFAULT_ACCEPTOR_THREADS,
        help="Event loops dedicated to accepting connections",
    )
    parser.add_argument(
        "--io-threads",
        type=int,
        default=DEFAULT_IO_THREADS,
        help="Event loops serving connection reads and writes",
    )
    parser.add_argument(
        "--backlog",
        type=int,
        default=DEFAULT_BACKLOG,
        help="Listen backlog for pending connections",
    )
    parser.add_argument(
        "--so-keepalive",
        action=argparse.BooleanOptionalAction,
        default=DEFAULT_SO_KEEPALIVE,
        help="Enable TCP keepalive probes on accepted sockets",
    )
    parser.add_argument(
        "--idle-timeout",
        type=float,
        default=DEFAULT_IDLE_TIMEOUT,
        help="Seconds a connection may stay silent before it is closed (0 disables)",
    )
    parser.add_argument(
        "--shutdown-grace-seconds",
        type=float,
        default=DEFAULT_SHUTDOWN_GRACE_SECONDS,
        help="Grace period for in-flight writes during shutdown",
    )
    parser.add_argument(
        "--max-body-bytes",
        type=int,
        default=DEFAULT_MAX_BODY_BYTES,
        help="Largest accepted request body (0 for unlimited)",
    )
    return parser.parse_args(argv)


def config_from_args(args: argparse.Namespace) -> ServerConfig:
    """Build the server configuration from parsed CLI arguments."""
    return ServerConfig(
        host=args.host,
        port=args.port,
        acceptor_threads=max(1, args.acceptor_threads),
        io_threads=max(1, args.io_threads),
        backlog=args.backlog,
        so_keepalive=args.so_keepalive,
        idle_timeout_seconds=max(0.0, args.idle_timeout),
        shutdown_grace_seconds=max(0.0, args.shutdown_grace_seconds),
        max_body_bytes=max(0, args.max_body_bytes),
    )
