"""asyncio protocol binding one accepted socket to its framer and adapter."""

import asyncio
import logging
import uuid
from typing import Optional

import h11

from reactor_http.domain.correlation_id import CorrelationLoggerAdapter
from reactor_http.domain.http_types import Response, Status
from reactor_http.pipeline.adapter import ProtocolAdapter
from reactor_http.pipeline.codec import (
    HttpFramer,
    OutboundMessage,
    RequestEntityTooLarge,
    TransportFailure,
    encode_response,
)
from reactor_http.transport.event_loop_group import EventLoop

CONNECTION_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("reactor_http.transport.connection"), {}
)


def _format_peer(peername: object) -> str:
    if isinstance(peername, tuple) and len(peername) >= 2:
        return f"{peername[0]}:{peername[1]}"
    return "-"


class HttpConnection(asyncio.Protocol):  # pylint: disable=too-many-instance-attributes
    """Channel for one client connection, owned by a single I/O loop.

    Writes are buffered until ``flush``; the adapter flushes once per batch of
    reads so pipelined responses leave in a single transport write.
    """

    def __init__(
        self,
        adapter: ProtocolAdapter,
        framer: HttpFramer,
        event_loop: EventLoop,
        idle_timeout: float = 0,
    ) -> None:
        self._adapter = adapter
        self._framer = framer
        self._event_loop = event_loop
        self._idle_timeout = idle_timeout
        self._transport: Optional[asyncio.Transport] = None
        self._pending: list[bytes] = []
        self._close_after_flush = False
        self._closing = False
        self._idle_handle: Optional[asyncio.TimerHandle] = None
        self.connection_id = uuid.uuid4().hex[:12]
        self.client = "-"

    @property
    def is_closing(self) -> bool:
        return self._closing

    def _log_extra(self, event: str) -> dict:
        return {
            "event": event,
            "client": self.client,
            "connection_id": self.connection_id,
            "loop": self._event_loop.name,
        }

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self._transport = transport
        self.client = _format_peer(transport.get_extra_info("peername"))
        self._event_loop.register(self)
        if CONNECTION_LOGGER.logger.isEnabledFor(logging.DEBUG):
            CONNECTION_LOGGER.debug(
                "Connection opened", extra=self._log_extra("connection_opened")
            )
        self._arm_idle_timer()

    def data_received(self, data: bytes) -> None:
        if self._closing:
            return
        self._arm_idle_timer()
        try:
            self._framer.receive(data)
            for frame in self._framer.frames():
                self._adapter.channel_read(self, frame)
                if self._closing or self._close_after_flush:
                    break
        except RequestEntityTooLarge as error:
            self._reject_oversized(error)
        except (TransportFailure, h11.LocalProtocolError) as error:
            self._adapter.exception_caught(self, error)
        except Exception as error:  # pylint: disable=broad-exception-caught
            CONNECTION_LOGGER.error(
                "Unexpected failure while serving connection",
                extra=self._log_extra("connection_failure"),
                exc_info=True,
            )
            self._adapter.exception_caught(self, error)
        if not self._closing:
            self._adapter.channel_read_complete(self)

    def eof_received(self) -> bool:
        if CONNECTION_LOGGER.logger.isEnabledFor(logging.DEBUG):
            CONNECTION_LOGGER.debug(
                "Peer finished sending", extra=self._log_extra("peer_eof")
            )
        self.flush()
        return False

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self._closing = True
        self._cancel_idle_timer()
        self._pending.clear()
        self._event_loop.unregister(self)
        extra = self._log_extra("connection_closed")
        if exc is not None:
            extra["error_type"] = type(exc).__name__
            extra["error"] = str(exc)
        if CONNECTION_LOGGER.logger.isEnabledFor(logging.DEBUG):
            CONNECTION_LOGGER.debug("Connection closed", extra=extra)

    def write(self, message: OutboundMessage) -> None:
        """Frame a message and queue its bytes until the next flush."""
        if self._closing:
            return
        data = self._framer.send(message)
        if data:
            self._pending.append(data)

    def write_and_close(self, message: OutboundMessage) -> None:
        """Queue a message; the connection closes once it has been flushed."""
        self.write(message)
        self._close_after_flush = True

    def flush(self) -> None:
        """Hand queued bytes to the transport in one write."""
        transport = self._transport
        if transport is None or self._closing:
            self._pending.clear()
            return
        if self._pending:
            transport.write(b"".join(self._pending))
            self._pending.clear()
            self._arm_idle_timer()
        if self._close_after_flush or self._framer.must_close:
            self.shutdown()

    def close(self) -> None:
        """Drop the connection without writing anything further."""
        self.abort()

    def shutdown(self) -> None:
        """Close after the transport has drained what it already holds."""
        if self._closing:
            return
        self._closing = True
        self._cancel_idle_timer()
        if self._transport is not None:
            if self._pending:
                self._transport.write(b"".join(self._pending))
                self._pending.clear()
            self._transport.close()

    def abort(self) -> None:
        if self._transport is None:
            return
        self._closing = True
        self._cancel_idle_timer()
        self._pending.clear()
        self._transport.abort()

    def _reject_oversized(self, error: RequestEntityTooLarge) -> None:
        extra = self._log_extra("payload_too_large")
        extra["bytes_in"] = error.size
        CONNECTION_LOGGER.warning("Request body rejected", extra=extra)
        wire = encode_response(Response(Status.PAYLOAD_TOO_LARGE))
        try:
            self.write_and_close(wire.with_header("Connection", "close"))
        except h11.LocalProtocolError as send_error:
            self._adapter.exception_caught(self, send_error)

    def _arm_idle_timer(self) -> None:
        if self._idle_timeout <= 0 or self._closing:
            return
        self._cancel_idle_timer()
        self._idle_handle = self._event_loop.loop.call_later(
            self._idle_timeout, self._on_idle_timeout
        )

    def _cancel_idle_timer(self) -> None:
        if self._idle_handle is not None:
            self._idle_handle.cancel()
            self._idle_handle = None

    def _on_idle_timeout(self) -> None:
        self._idle_handle = None
        CONNECTION_LOGGER.info(
            "Closing idle connection", extra=self._log_extra("idle_timeout")
        )
        self.shutdown()
