"""HTTP/1.1 framing stage sitting between a socket and the protocol adapter.

Inbound bytes are decoded by an ``h11`` server connection into explicit frame
variants; outbound interim and final responses are serialised through the
same connection so h11 keeps track of persistence and pipelining.
"""

import logging
from dataclasses import dataclass, replace
from typing import Iterable, Iterator, Optional, Union

import h11

from reactor_http.domain.correlation_id import CorrelationLoggerAdapter
from reactor_http.domain.http_types import Headers, Response

CODEC_LOGGER = CorrelationLoggerAdapter(logging.getLogger("reactor_http.codec"), {})

DEFAULT_MAX_HEADER_BYTES = 16 * 1024
NO_BODY_STATUSES = frozenset({204, 304})
FRAMING_HEADERS = frozenset({"content-length", "transfer-encoding"})


class TransportFailure(Exception):
    """Raised when connection bytes cannot be framed as HTTP/1.1."""


class RequestEntityTooLarge(Exception):
    """Raised when a request body exceeds the configured limit."""

    def __init__(self, limit: int, size: int) -> None:
        super().__init__(f"Request body of {size} bytes exceeds limit of {limit}")
        self.limit = limit
        self.size = size


def _comma_tokens(values: Iterable[str]) -> set[str]:
    tokens = set()
    for value in values:
        for token in value.split(","):
            token = token.strip().lower()
            if token:
                tokens.add(token)
    return tokens


def _values(headers: Headers, name: str) -> list[str]:
    wanted = name.lower()
    return [value for key, value in headers if key.lower() == wanted]


def is_keep_alive(http_version: str, headers: Headers) -> bool:
    """Return True when the request asks for a persistent connection.

    HTTP/1.0 keep-alive is not honoured; h11 always closes those exchanges.
    """
    if http_version != "1.1":
        return False
    return "close" not in _comma_tokens(_values(headers, "connection"))


def is_continue_expected(http_version: str, headers: Headers) -> bool:
    """Return True when the client waits for 100 Continue before its body."""
    if http_version != "1.1":
        return False
    return "100-continue" in _comma_tokens(_values(headers, "expect"))


@dataclass(frozen=True)
class RequestHead:
    """Request line and headers exactly as they arrived."""

    method: str
    target: str
    http_version: str
    headers: Headers
    keep_alive: bool
    expect_continue: bool

    def header_value(self, name: str) -> Optional[str]:
        values = _values(self.headers, name)
        return values[0] if values else None


@dataclass(frozen=True)
class HeadersOnly:
    """Request head parsed; the body (if any) has not been fully read yet."""

    head: RequestHead


@dataclass(frozen=True)
class Complete:
    """Request head plus the fully assembled body."""

    head: RequestHead
    body: bytes = b""


@dataclass(frozen=True)
class Unrecognized:
    """Engine event with no meaning to the adapter."""

    event: object


InboundFrame = Union[HeadersOnly, Complete, Unrecognized]


@dataclass(frozen=True)
class InterimResponse:
    """1xx response written ahead of the final one."""

    status_code: int
    reason: str


CONTINUE = InterimResponse(100, "Continue")


@dataclass(frozen=True)
class WireResponse:
    """Final response ready to be serialised onto the socket."""

    status_code: int
    reason: str
    headers: Headers
    body: bytes

    def header_value(self, name: str) -> Optional[str]:
        values = _values(self.headers, name)
        return values[0] if values else None

    def with_header(self, name: str, value: str) -> "WireResponse":
        """Return a copy where ``name`` carries exactly ``value``."""
        wanted = name.lower()
        kept = tuple((k, v) for k, v in self.headers if k.lower() != wanted)
        return replace(self, headers=kept + ((name, value),))


OutboundMessage = Union[InterimResponse, WireResponse]


def encode_response(response: Response) -> WireResponse:
    """Translate a handler response into its wire form.

    Content-Length always reflects the actual body; caller supplied framing
    headers are dropped since there is no chunked path.
    """
    headers = tuple(
        (name, value)
        for name, value in response.headers
        if name.lower() not in FRAMING_HEADERS
    )
    body = response.body
    return WireResponse(
        status_code=response.status.code,
        reason=response.status.description,
        headers=headers + (("Content-Length", str(len(body))),),
        body=body,
    )


def _request_head(event: h11.Request) -> RequestHead:
    headers = tuple(
        (name.decode("latin-1"), value.decode("latin-1"))
        for name, value in event.headers.raw_items()
    )
    http_version = event.http_version.decode("ascii")
    return RequestHead(
        method=event.method.decode("ascii"),
        target=event.target.decode("ascii"),
        http_version=http_version,
        headers=headers,
        keep_alive=is_keep_alive(http_version, headers),
        expect_continue=is_continue_expected(http_version, headers),
    )


class HttpFramer:
    """Server side HTTP/1.1 codec for a single connection."""

    def __init__(
        self,
        max_body_bytes: int = 0,
        max_header_bytes: int = DEFAULT_MAX_HEADER_BYTES,
    ) -> None:
        self._conn = h11.Connection(
            h11.SERVER, max_incomplete_event_size=max_header_bytes
        )
        self._max_body_bytes = max(0, max_body_bytes)
        self._head: Optional[RequestHead] = None
        self._body = bytearray()
        self._continue_sent = False
        self.peer_closed = False

    @property
    def current_head(self) -> Optional[RequestHead]:
        return self._head

    @property
    def must_close(self) -> bool:
        """True once h11 will not accept another request on this connection."""
        return self._conn.our_state in (h11.MUST_CLOSE, h11.CLOSED, h11.ERROR)

    def receive(self, data: bytes) -> None:
        """Feed raw socket bytes; ``b""`` marks the peer's end of stream."""
        try:
            self._conn.receive_data(data)
        except (h11.RemoteProtocolError, RuntimeError) as error:
            raise TransportFailure(str(error)) from error

    def frames(self) -> Iterator[InboundFrame]:
        """Yield every frame decodable from the bytes received so far.

        Callers must answer a Complete frame before resuming iteration; the
        next pipelined request is only decoded once the response is sent.
        """
        while True:
            try:
                event = self._conn.next_event()
            except h11.RemoteProtocolError as error:
                raise TransportFailure(str(error)) from error

            match event:
                case h11.Request():
                    head = _request_head(event)
                    self._head = head
                    self._body = bytearray()
                    self._check_declared_length(head)
                    yield HeadersOnly(head)
                case h11.Data():
                    self._body.extend(event.data)
                    self._check_body_length(len(self._body))
                case h11.EndOfMessage():
                    yield Complete(self._head, bytes(self._body))
                    self._body = bytearray()
                case h11.ConnectionClosed():
                    self.peer_closed = True
                    return
                case _ if event is h11.NEED_DATA or event is h11.PAUSED:
                    return
                case _:
                    yield Unrecognized(event)

    def send(self, message: OutboundMessage) -> bytes:
        """Serialise an outbound message and return the bytes to write."""
        match message:
            case InterimResponse():
                return self._send_interim(message)
            case WireResponse():
                return self._send_response(message)
        raise TypeError(f"Cannot frame outbound message {message!r}")

    def _send_interim(self, interim: InterimResponse) -> bytes:
        if self._conn.our_state is not h11.SEND_RESPONSE:
            return b""
        if interim.status_code == 100:
            if self._continue_sent:
                return b""
            self._continue_sent = True
        return self._conn.send(
            h11.InformationalResponse(
                status_code=interim.status_code,
                headers=[],
                reason=interim.reason.encode("latin-1"),
            )
        )

    def _send_response(self, response: WireResponse) -> bytes:
        request_method = self._head.method if self._head is not None else None
        chunks = [
            self._conn.send(
                h11.Response(
                    status_code=response.status_code,
                    headers=[
                        (name.encode("latin-1"), value.encode("latin-1"))
                        for name, value in response.headers
                    ],
                    reason=response.reason.encode("latin-1"),
                )
            )
        ]
        body_allowed = (
            request_method != "HEAD" and response.status_code not in NO_BODY_STATUSES
        )
        if response.body and body_allowed:
            chunks.append(self._conn.send(h11.Data(data=response.body)))
        chunks.append(self._conn.send(h11.EndOfMessage()))
        self._finish_cycle()
        return b"".join(chunk for chunk in chunks if chunk)

    def _finish_cycle(self) -> None:
        if self._conn.our_state is h11.DONE and self._conn.their_state is h11.DONE:
            self._conn.start_next_cycle()
            self._head = None
            self._continue_sent = False

    def _check_declared_length(self, head: RequestHead) -> None:
        declared = head.header_value("content-length")
        if declared is not None:
            self._check_body_length(int(declared))

    def _check_body_length(self, size: int) -> None:
        if self._max_body_bytes and size > self._max_body_bytes:
            if CODEC_LOGGER.logger.isEnabledFor(logging.DEBUG):
                CODEC_LOGGER.debug(
                    "Request body over limit",
                    extra={"event": "body_size_exceeded", "bytes_in": size},
                )
            raise RequestEntityTooLarge(self._max_body_bytes, size)
