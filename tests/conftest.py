"""Shared pytest fixtures for integration and unit tests."""

from __future__ import annotations

import subprocess
import sys
from dataclasses import replace
from pathlib import Path
from typing import Callable, Generator, TypedDict

import pytest

from reactor_http.bootstrap.config import ServerConfig
from reactor_http.domain.host import Host
from reactor_http.domain.http_types import HttpHandler
from reactor_http.server import ReactorServer
from tests.utils.http import reserve_port, wait_for_port

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SERVER_ENTRYPOINT = PROJECT_ROOT / "main.py"

TEST_CONFIG = ServerConfig(
    host=Host("127.0.0.1"),
    port=0,
    acceptor_threads=1,
    io_threads=2,
    idle_timeout_seconds=10,
    shutdown_grace_seconds=1,
    max_body_bytes=64 * 1024,
)


class ServerProcessInfo(TypedDict):
    """Metadata describing a running server fixture instance."""

    base_url: str
    host: str
    port: int
    process: subprocess.Popen[str]
    log_file: Path | None


def _launch_server(
    host: str,
    port: int,
    extra_args: list[str] | None = None,
    log_file: Path | None = None,
) -> Generator[ServerProcessInfo, None, None]:
    args = [
        sys.executable,
        str(SERVER_ENTRYPOINT),
        "--host",
        host,
        "--port",
        str(port),
    ]
    if log_file:
        args.extend(["--log-destination", str(log_file)])
    if extra_args:
        args.extend(extra_args)

    with subprocess.Popen(
        args,
        cwd=PROJECT_ROOT,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    ) as process:
        try:
            wait_for_port(host, port)
        except Exception:
            # If startup failed, print stdout/stderr to help debug
            process.terminate()
            stdout, stderr = process.communicate(timeout=5)
            print(f"\nServer stdout:\n{stdout}")
            print(f"\nServer stderr:\n{stderr}")
            raise

        yield {
            "base_url": f"http://{host}:{port}",
            "host": host,
            "port": port,
            "process": process,
            "log_file": log_file,
        }

        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                process.kill()


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Expose the repository root path to tests."""

    return PROJECT_ROOT


@pytest.fixture(name="server_process")
def _server_process(tmp_path: Path) -> Generator[ServerProcessInfo, None, None]:
    """Launch main.py in a background process for integration tests."""

    host = "127.0.0.1"
    port = reserve_port(host)
    log_file = tmp_path / "server.log"
    yield from _launch_server(
        host, port, ["--shutdown-grace-seconds", "2"], log_file=log_file
    )


@pytest.fixture(name="start_server")
def _start_server() -> Generator[Callable[..., ReactorServer], None, None]:
    """Start in-process servers on ephemeral ports; all are stopped on teardown."""

    servers: list[ReactorServer] = []

    def start(handler: HttpHandler, **overrides) -> ReactorServer:
        server = ReactorServer(handler, replace(TEST_CONFIG, **overrides))
        servers.append(server)
        return server.start()

    yield start

    for server in servers:
        server.stop()
