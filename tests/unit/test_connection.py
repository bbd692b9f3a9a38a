"""Unit tests for the per-connection asyncio protocol."""

import logging
from unittest.mock import MagicMock

import pytest

from reactor_http.domain.filters import catch_all
from reactor_http.domain.http_types import Response, Status
from reactor_http.pipeline.adapter import ProtocolAdapter
from reactor_http.pipeline.codec import HttpFramer
from reactor_http.transport.connection import HttpConnection

GET_HELLO = b"GET /hello HTTP/1.1\r\nHost: x\r\n\r\n"


def _hello_handler(request):
    if request.uri == "/hello":
        return Response(Status.OK, body=b"hi")
    return Response(Status.CREATED, body=request.body)


@pytest.fixture(name="event_loop")
def fixture_event_loop():
    """Stand-in for the owning EventLoop."""
    event_loop = MagicMock()
    event_loop.name = "reactor-io-0"
    return event_loop


@pytest.fixture(name="transport")
def fixture_transport():
    transport = MagicMock()
    transport.get_extra_info.return_value = ("127.0.0.1", 50000)
    return transport


def _connect(event_loop, transport, handler=_hello_handler, **kwargs):
    idle_timeout = kwargs.pop("idle_timeout", 30)
    connection = HttpConnection(
        ProtocolAdapter(handler), HttpFramer(**kwargs), event_loop, idle_timeout
    )
    connection.connection_made(transport)
    return connection


def _written(transport) -> bytes:
    return b"".join(call.args[0] for call in transport.write.call_args_list)


def test_connection_made_registers_and_arms_idle_timer(event_loop, transport):
    connection = _connect(event_loop, transport)

    event_loop.register.assert_called_once_with(connection)
    event_loop.loop.call_later.assert_called_once()
    assert event_loop.loop.call_later.call_args.args[0] == 30
    assert connection.client == "127.0.0.1:50000"


def test_idle_timer_disabled_with_zero_timeout(event_loop, transport):
    _connect(event_loop, transport, idle_timeout=0)
    event_loop.loop.call_later.assert_not_called()


def test_keep_alive_request_leaves_connection_open(event_loop, transport):
    connection = _connect(event_loop, transport)

    connection.data_received(GET_HELLO)

    transport.write.assert_called_once()
    data = _written(transport)
    assert data.startswith(b"HTTP/1.1 200 OK\r\n")
    assert b"Connection: keep-alive\r\n" in data
    assert data.endswith(b"\r\n\r\nhi")
    transport.close.assert_not_called()
    assert not connection.is_closing


def test_connection_close_request_closes_after_write(event_loop, transport):
    connection = _connect(event_loop, transport)

    connection.data_received(
        b"GET /hello HTTP/1.1\r\nHost: x\r\nConnection: close\r\n\r\n"
    )

    assert _written(transport).endswith(b"hi")
    transport.close.assert_called_once()
    transport.abort.assert_not_called()
    assert connection.is_closing


def test_pipelined_responses_leave_in_one_write(event_loop, transport):
    connection = _connect(event_loop, transport)

    connection.data_received(GET_HELLO + GET_HELLO)

    transport.write.assert_called_once()
    assert _written(transport).count(b"HTTP/1.1 200 OK") == 2


def test_continue_is_written_before_body_arrives(event_loop, transport):
    connection = _connect(event_loop, transport)

    connection.data_received(
        b"POST /upload HTTP/1.1\r\nHost: x\r\nContent-Length: 4\r\n"
        b"Expect: 100-continue\r\n\r\n"
    )
    assert _written(transport) == b"HTTP/1.1 100 Continue\r\n\r\n"

    connection.data_received(b"data")
    second = transport.write.call_args_list[-1].args[0]
    assert second.startswith(b"HTTP/1.1 201 Created\r\n")
    assert second.endswith(b"data")
    assert _written(transport).count(b"100 Continue") == 1


def test_malformed_request_aborts_connection(event_loop, transport):
    connection = _connect(event_loop, transport)

    connection.data_received(b"garbage without structure\r\n\r\n")

    transport.write.assert_not_called()
    transport.abort.assert_called_once()
    assert connection.is_closing


def test_oversized_body_gets_413_and_close(event_loop, transport, caplog):
    caplog.set_level(logging.WARNING)
    connection = _connect(event_loop, transport, max_body_bytes=4)

    connection.data_received(
        b"POST /upload HTTP/1.1\r\nHost: x\r\nContent-Length: 100\r\n\r\n"
    )

    data = _written(transport)
    assert data.startswith(b"HTTP/1.1 413 Payload Too Large\r\n")
    assert b"Connection: close\r\n" in data
    transport.close.assert_called_once()
    assert any(
        getattr(r, "event", None) == "payload_too_large" for r in caplog.records
    )


def test_unfiltered_handler_failure_aborts_only_this_connection(
    event_loop, transport, caplog
):
    caplog.set_level(logging.ERROR)

    def failing(_request):
        raise RuntimeError("handler bug")

    connection = _connect(event_loop, transport, handler=failing)
    connection.data_received(GET_HELLO)

    transport.abort.assert_called_once()
    transport.write.assert_not_called()
    assert any(
        getattr(r, "event", None) == "connection_failure" for r in caplog.records
    )


def test_filtered_handler_failure_answers_500(event_loop, transport):
    def failing(_request):
        raise RuntimeError("handler bug")

    connection = _connect(event_loop, transport, handler=catch_all(failing))
    connection.data_received(GET_HELLO)

    assert _written(transport).startswith(b"HTTP/1.1 500 Internal Server Error\r\n")
    transport.abort.assert_not_called()


def test_idle_timeout_closes_gracefully(event_loop, transport, caplog):
    caplog.set_level(logging.INFO)
    connection = _connect(event_loop, transport)

    callback = event_loop.loop.call_later.call_args.args[1]
    callback()

    transport.close.assert_called_once()
    assert any(getattr(r, "event", None) == "idle_timeout" for r in caplog.records)


def test_each_read_restarts_idle_timer(event_loop, transport):
    connection = _connect(event_loop, transport)
    first_handle = event_loop.loop.call_later.return_value

    connection.data_received(GET_HELLO)

    first_handle.cancel.assert_called()
    assert event_loop.loop.call_later.call_count >= 2


def test_shutdown_is_idempotent(event_loop, transport):
    connection = _connect(event_loop, transport)

    connection.shutdown()
    connection.shutdown()

    transport.close.assert_called_once()


def test_data_after_close_is_ignored(event_loop, transport):
    connection = _connect(event_loop, transport)
    connection.shutdown()

    connection.data_received(GET_HELLO)

    transport.write.assert_not_called()


def test_eof_lets_transport_close(event_loop, transport):
    connection = _connect(event_loop, transport)
    assert connection.eof_received() is False


def test_connection_lost_unregisters_and_cancels_timer(event_loop, transport):
    connection = _connect(event_loop, transport)
    handle = event_loop.loop.call_later.return_value

    connection.connection_lost(None)

    event_loop.unregister.assert_called_once_with(connection)
    handle.cancel.assert_called()
    assert connection.is_closing
