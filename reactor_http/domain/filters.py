"""Handler filters applied before traffic reaches user code."""

import logging

from reactor_http.domain.correlation_id import CorrelationLoggerAdapter
from reactor_http.domain.http_types import HttpHandler, Request, Response, Status

FILTER_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("reactor_http.domain.filters"), {}
)


def catch_all(handler: HttpHandler) -> HttpHandler:
    """Wrap a handler so any raised exception becomes a 500 response."""

    def safe_handler(request: Request) -> Response:
        try:
            return handler(request)
        except Exception as error:  # pylint: disable=broad-except
            FILTER_LOGGER.error(
                "Handler raised an unhandled exception",
                extra={
                    "event": "handler_error",
                    "method": request.method.value,
                    "uri": request.uri,
                    "error_type": type(error).__name__,
                },
                exc_info=True,
            )
            return Response(Status.INTERNAL_SERVER_ERROR)

    safe_handler.__wrapped__ = handler
    return safe_handler
