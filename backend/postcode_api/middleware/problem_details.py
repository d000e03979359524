"""
Error normalization stage.

Failures become problem responses in one of two places, both delegating to
normalize_failure() so there is exactly one translation and exactly one log
record per failure:

- the registered exception handlers, for ServiceError and framework
  failures; they run inside the cross-origin stage, so these responses
  carry CORS headers;
- the outermost pipeline stage, which assigns the request's correlation id
  and turns anything else escaping downstream into a 500 problem response.
"""

from typing import Mapping, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import ClientDisconnect
from starlette.responses import Response

from postcode_api.core.context import (
    CORRELATION_HEADER,
    RequestContext,
    get_request_context,
)
from postcode_api.core.errors import (
    DomainValidationError,
    FailureKind,
    ServiceError,
    classify,
    failure_from_status,
)
from postcode_api.core.logging import clear_context, emit, get_logger, set_correlation_id
from postcode_api.schemas.problem import PROBLEM_MEDIA_TYPE, ProblemResponse

logger = get_logger(__name__)

# Non-standard status for a request whose caller went away; never delivered.
CLIENT_CLOSED_REQUEST = 499


def normalize_failure(
    request: Request,
    failure: BaseException,
    headers: Optional[Mapping[str, str]] = None,
) -> JSONResponse:
    """
    Log a failure once and build its problem response.

    Args:
        request: Request that failed
        failure: Exception raised while handling it
        headers: Extra response headers supplied by the framework (Allow, Retry-After)

    Returns:
        JSON problem response with the classified status
    """
    context = get_request_context(request)
    classification = classify(failure)

    problem = ProblemResponse(
        type=classification.type,
        title=classification.title,
        status=classification.status,
        detail=classification.detail,
        instance=context.path,
        correlation_id=context.correlation_id,
    )

    internal = classification.kind is FailureKind.INTERNAL
    emit(
        logger,
        "error" if internal else "warning",
        "Request failed",
        method=context.method,
        path=context.path,
        status_code=classification.status,
        failure_kind=classification.kind.value,
        error_type=type(failure).__name__,
        error_code=getattr(failure, "code", None),
        correlation_id=context.correlation_id,
        client_id=context.client_id,
        exc_info=failure if internal else None,
    )

    response_headers = dict(headers or {})
    response_headers[CORRELATION_HEADER] = context.correlation_id
    if classification.kind is FailureKind.UNAUTHENTICATED:
        response_headers["WWW-Authenticate"] = "Bearer"

    return JSONResponse(
        status_code=classification.status,
        content=problem.to_body(),
        media_type=PROBLEM_MEDIA_TYPE,
        headers=response_headers,
    )


def _summarize_validation_errors(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(loc) for loc in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg', 'invalid value')}")
    return "; ".join(parts) or "Request validation failed"


def register_exception_handlers(app: FastAPI) -> None:
    """Route service and framework failures through normalize_failure()."""

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        failure = DomainValidationError(
            _summarize_validation_errors(exc),
            code="REQUEST_VALIDATION_FAILED",
        )
        return normalize_failure(request, failure)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        return normalize_failure(
            request,
            failure_from_status(exc.status_code, str(exc.detail)),
            headers=exc.headers,
        )

    @app.exception_handler(ServiceError)
    async def service_exception_handler(
        request: Request, exc: ServiceError
    ) -> JSONResponse:
        return normalize_failure(request, exc)


class ProblemDetailsMiddleware(BaseHTTPMiddleware):
    """Last-resort failure boundary around the entire downstream pipeline."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        context = RequestContext.from_request(request)
        request.state.context = context
        set_correlation_id(context.correlation_id)

        try:
            response = await call_next(request)
        except ClientDisconnect:
            # Abandoned request: nothing is logged and nothing reaches the caller
            return Response(status_code=CLIENT_CLOSED_REQUEST)
        except Exception as exc:
            response = normalize_failure(request, exc)
        finally:
            clear_context()

        response.headers[CORRELATION_HEADER] = context.correlation_id
        return response
