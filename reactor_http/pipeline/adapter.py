"""Per-connection translation between wire frames and the handler model."""

import logging
import time
from typing import Protocol

from reactor_http.domain.correlation_id import (
    CorrelationLoggerAdapter,
    clear_correlation_id,
    resolve_correlation_id,
    set_correlation_id,
)
from reactor_http.domain.http_types import (
    HttpHandler,
    Method,
    Request,
    Response,
    Status,
    UnsupportedMethod,
)
from reactor_http.pipeline.codec import (
    CONTINUE,
    Complete,
    HeadersOnly,
    InboundFrame,
    OutboundMessage,
    RequestHead,
    Unrecognized,
    WireResponse,
    encode_response,
)

ADAPTER_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("reactor_http.pipeline.adapter"), {}
)

ALLOWED_METHODS = ", ".join(method.value for method in Method)


class ChannelContext(Protocol):
    """Write side of a connection as seen by the adapter."""

    def write(self, message: OutboundMessage) -> None:
        ...

    def write_and_close(self, message: OutboundMessage) -> None:
        ...

    def flush(self) -> None:
        ...

    def close(self) -> None:
        ...


def to_request(frame: Complete) -> Request:
    """Build the handler request from a complete inbound frame."""
    head = frame.head
    return Request(
        method=Method.parse(head.method),
        uri=head.target,
        headers=head.headers,
        body=frame.body,
    )


def method_not_allowed_response() -> Response:
    """Produce a 405 response enumerating the supported HTTP methods."""
    return Response(Status.METHOD_NOT_ALLOWED, (("Allow", ALLOWED_METHODS),))


class ProtocolAdapter:
    """Decodes complete frames, invokes the handler and writes the answer.

    One instance is bound to one connection for its whole life. The handler
    runs synchronously on the connection's I/O loop thread.
    """

    def __init__(self, handler: HttpHandler) -> None:
        self._handler = handler

    def channel_read(self, ctx: ChannelContext, frame: InboundFrame) -> None:
        """Act on one inbound frame."""
        match frame:
            case HeadersOnly(head=head):
                if head.expect_continue:
                    self._send_continue(ctx, head)
                    ctx.flush()
            case Complete(head=head):
                incoming_id = head.header_value("x-request-id")
                set_correlation_id(resolve_correlation_id(incoming_id))
                try:
                    self._exchange(ctx, frame)
                finally:
                    clear_correlation_id()
            case Unrecognized(event=event):
                if ADAPTER_LOGGER.logger.isEnabledFor(logging.DEBUG):
                    ADAPTER_LOGGER.debug(
                        "Ignoring unrecognized frame",
                        extra={
                            "event": "frame_ignored",
                            "frame_type": type(event).__name__,
                        },
                    )

    def channel_read_complete(self, ctx: ChannelContext) -> None:
        """Flush whatever the last batch of reads produced."""
        ctx.flush()

    def exception_caught(self, ctx: ChannelContext, error: BaseException) -> None:
        """Drop the connection; nothing more is written to it."""
        ADAPTER_LOGGER.warning(
            "Closing connection after transport failure",
            extra={
                "event": "connection_error",
                "error_type": type(error).__name__,
                "error": str(error),
            },
        )
        ctx.close()

    def _send_continue(self, ctx: ChannelContext, head: RequestHead) -> None:
        ctx.write(CONTINUE)
        if ADAPTER_LOGGER.logger.isEnabledFor(logging.DEBUG):
            ADAPTER_LOGGER.debug(
                "Interim response written",
                extra={
                    "event": "continue_sent",
                    "method": head.method,
                    "uri": head.target,
                },
            )

    def _exchange(self, ctx: ChannelContext, frame: Complete) -> None:
        head = frame.head
        started = time.perf_counter()
        if head.expect_continue:
            self._send_continue(ctx, head)

        try:
            request = to_request(frame)
        except UnsupportedMethod as error:
            ADAPTER_LOGGER.warning(
                "Unsupported method rejected",
                extra={
                    "event": "unsupported_method",
                    "method": error.name,
                    "uri": head.target,
                },
            )
            response = method_not_allowed_response()
        else:
            response = self._handler(request)

        wire = encode_response(response)
        if head.keep_alive:
            ctx.write(wire.with_header("Connection", "keep-alive"))
        else:
            ctx.write_and_close(wire)
        self._log_exchange(frame, wire, started)

    @staticmethod
    def _log_exchange(frame: Complete, wire: WireResponse, started: float) -> None:
        ADAPTER_LOGGER.info(
            "Request complete",
            extra={
                "event": "request_complete",
                "method": frame.head.method,
                "uri": frame.head.target,
                "status_code": wire.status_code,
                "bytes_in": len(frame.body),
                "bytes_out": len(wire.body),
                "keep_alive": frame.head.keep_alive,
                "duration_ms": round((time.perf_counter() - started) * 1000, 3),
            },
        )
