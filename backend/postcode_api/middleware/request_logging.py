"""
Request logging stage.

Writes one structured record per request with method, path, status,
duration, correlation id and client id. Failures propagating from routing
are recorded with the status the error normalizer will assign and are then
re-raised untouched. Abandoned requests are not recorded.
"""

import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import ClientDisconnect, Request
from starlette.responses import Response

from postcode_api.core.context import RequestContext, get_request_context
from postcode_api.core.errors import classify
from postcode_api.core.logging import emit, get_logger

logger = get_logger(__name__)


def _log_completion(context: RequestContext, status_code: int, start_time: float) -> None:
    emit(
        logger,
        "info",
        "Request completed",
        method=context.method,
        path=context.path,
        status_code=status_code,
        duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
        correlation_id=context.correlation_id,
        client_id=context.client_id,
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log request completion with timing."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        context = get_request_context(request)
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except ClientDisconnect:
            raise
        except Exception as exc:
            _log_completion(context, classify(exc).status, start_time)
            raise

        _log_completion(context, response.status_code, start_time)
        return response
