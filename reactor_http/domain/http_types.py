"""Immutable request/response model served by the adapter."""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional, Union

Header = tuple[str, str]
Headers = tuple[Header, ...]


class UnsupportedMethod(ValueError):
    """Raised when a wire method name has no Method counterpart."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unsupported HTTP method: {name!r}")
        self.name = name


class Method(Enum):
    """HTTP methods understood by handlers."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    OPTIONS = "OPTIONS"
    TRACE = "TRACE"
    PATCH = "PATCH"
    PURGE = "PURGE"
    HEAD = "HEAD"

    @classmethod
    def parse(cls, name: str) -> "Method":
        """Map an exact (case-sensitive) wire method name to a member."""
        try:
            return cls(name)
        except ValueError:
            raise UnsupportedMethod(name) from None


@dataclass(frozen=True)
class Status:
    """Numeric status code paired with its reason phrase."""

    code: int
    description: str

    def __str__(self) -> str:
        return f"{self.code} {self.description}"

    @property
    def successful(self) -> bool:
        return 200 <= self.code < 300


Status.CONTINUE = Status(100, "Continue")
Status.OK = Status(200, "OK")
Status.CREATED = Status(201, "Created")
Status.ACCEPTED = Status(202, "Accepted")
Status.NO_CONTENT = Status(204, "No Content")
Status.NOT_MODIFIED = Status(304, "Not Modified")
Status.BAD_REQUEST = Status(400, "Bad Request")
Status.NOT_FOUND = Status(404, "Not Found")
Status.METHOD_NOT_ALLOWED = Status(405, "Method Not Allowed")
Status.PAYLOAD_TOO_LARGE = Status(413, "Payload Too Large")
Status.INTERNAL_SERVER_ERROR = Status(500, "Internal Server Error")
Status.SERVICE_UNAVAILABLE = Status(503, "Service Unavailable")


def _as_bytes(body: Union[bytes, bytearray, memoryview, str]) -> bytes:
    if isinstance(body, str):
        return body.encode("utf-8")
    return bytes(body)


def _values(headers: Headers, name: str) -> list[str]:
    wanted = name.lower()
    return [value for key, value in headers if key.lower() == wanted]


def _without(headers: Headers, name: str) -> Headers:
    wanted = name.lower()
    return tuple((key, value) for key, value in headers if key.lower() != wanted)


def _normalise(message) -> None:
    # Frozen dataclasses: coerce list headers and str/bytearray bodies in place.
    object.__setattr__(
        message, "headers", tuple((str(k), str(v)) for k, v in message.headers)
    )
    object.__setattr__(message, "body", _as_bytes(message.body))


class _HttpMessage:
    """Header and body helpers shared by Request and Response."""

    headers: Headers
    body: bytes

    def header_value(self, name: str) -> Optional[str]:
        """Return the first value for a header name, ignoring case."""
        values = _values(self.headers, name)
        return values[0] if values else None

    def header_values(self, name: str) -> list[str]:
        """Return every value for a header name in arrival order."""
        return _values(self.headers, name)

    def header(self, name: str, value: str):
        """Return a copy with the header appended after existing ones."""
        return replace(self, headers=self.headers + ((name, value),))

    def replace_header(self, name: str, value: str):
        """Return a copy where the header has exactly one value."""
        return replace(self, headers=_without(self.headers, name) + ((name, value),))

    def remove_header(self, name: str):
        return replace(self, headers=_without(self.headers, name))

    def with_body(self, body: Union[bytes, bytearray, memoryview, str]):
        """Return a copy carrying a new body; text is encoded as UTF-8."""
        return replace(self, body=_as_bytes(body))

    def body_text(self, encoding: str = "utf-8") -> str:
        return self.body.decode(encoding)


@dataclass(frozen=True)
class Request(_HttpMessage):
    """Inbound HTTP request as seen by handlers."""

    method: Method
    uri: str
    headers: Headers = ()
    body: bytes = b""

    def __post_init__(self) -> None:
        _normalise(self)


@dataclass(frozen=True)
class Response(_HttpMessage):
    """HTTP response produced by handlers."""

    status: Status
    headers: Headers = ()
    body: bytes = b""

    def __post_init__(self) -> None:
        _normalise(self)


HttpHandler = Callable[[Request], Response]
