"""
Failure taxonomy and classification policy.

Every failure the service produces on purpose is a ServiceError tagged with a
FailureKind. Classification is a table lookup over that tag: anything without
a recognised tag is an internal failure, and only the client-fault kind ever
exposes its message to the caller.
"""

from dataclasses import dataclass
from enum import Enum
from http import HTTPStatus
from typing import Any, ClassVar, Optional

from fastapi import status

INTERNAL_ERROR_TITLE = "An unexpected error occurred"


class FailureKind(str, Enum):
    """Closed set of failure classifications."""

    CLIENT_FAULT = "client_fault"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    INTERNAL = "internal"


@dataclass(frozen=True)
class Classification:
    """Outcome of classifying a failure."""

    kind: FailureKind
    status: int
    title: str
    type: str
    detail: Optional[str] = None


@dataclass(frozen=True)
class _Policy:
    status: int
    title: str
    type: str
    exposes_detail: bool


_POLICIES: dict[FailureKind, _Policy] = {
    FailureKind.CLIENT_FAULT: _Policy(
        status.HTTP_400_BAD_REQUEST,
        "Bad Request",
        "https://tools.ietf.org/html/rfc9110#section-15.5.1",
        True,
    ),
    FailureKind.UNAUTHENTICATED: _Policy(
        status.HTTP_401_UNAUTHORIZED,
        "Unauthorized",
        "https://tools.ietf.org/html/rfc9110#section-15.5.2",
        False,
    ),
    FailureKind.FORBIDDEN: _Policy(
        status.HTTP_403_FORBIDDEN,
        "Forbidden",
        "https://tools.ietf.org/html/rfc9110#section-15.5.4",
        False,
    ),
    FailureKind.NOT_FOUND: _Policy(
        status.HTTP_404_NOT_FOUND,
        "Not Found",
        "https://tools.ietf.org/html/rfc9110#section-15.5.5",
        False,
    ),
    FailureKind.INTERNAL: _Policy(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        INTERNAL_ERROR_TITLE,
        "https://tools.ietf.org/html/rfc9110#section-15.6.1",
        False,
    ),
}


class ServiceError(Exception):
    """
    Base exception for failures raised deliberately by the service.

    Args:
        message: Human-readable message
        code: Stable machine-readable error code
        **context: Additional structured context for logging
    """

    kind: ClassVar[FailureKind] = FailureKind.INTERNAL
    # Client faults raised by the framework keep their own 4xx status
    status_code: Optional[int] = None

    def __init__(self, message: str, code: str = "SERVICE_ERROR", **context: Any):
        super().__init__(message)
        self.message = message
        self.code = code
        self.context = context


class DomainValidationError(ServiceError):
    """Client or domain validation failure; its message is shown to the caller."""

    kind = FailureKind.CLIENT_FAULT


class AuthenticationError(ServiceError):
    """Missing, invalid or expired credentials."""

    kind = FailureKind.UNAUTHENTICATED


class AuthorizationError(ServiceError):
    """Authenticated caller lacks the required scopes or claims."""

    kind = FailureKind.FORBIDDEN


class ResourceNotFoundError(ServiceError):
    """A fixed resource of the service is not available."""

    kind = FailureKind.NOT_FOUND


def failure_kind(failure: BaseException) -> FailureKind:
    """Read the classification tag of a failure, defaulting to internal."""
    kind = getattr(failure, "kind", FailureKind.INTERNAL)
    if isinstance(kind, FailureKind):
        return kind
    return FailureKind.INTERNAL


def classify(failure: BaseException) -> Classification:
    """
    Classify a failure into status, title and optional detail.

    A client fault carrying its own 4xx status keeps that status, with the
    standard reason phrase as title and ``about:blank`` as type.

    Args:
        failure: Any exception instance

    Returns:
        Classification with detail populated only for client faults
    """
    kind = failure_kind(failure)
    policy = _POLICIES[kind]
    detail = str(failure) if policy.exposes_detail else None

    status_code, title, problem_type = policy.status, policy.title, policy.type
    override = getattr(failure, "status_code", None)
    if (
        kind is FailureKind.CLIENT_FAULT
        and isinstance(override, int)
        and 400 <= override < 500
        and override != policy.status
    ):
        status_code = override
        title = _reason_phrase(override, policy.title)
        problem_type = "about:blank"

    return Classification(
        kind=kind,
        status=status_code,
        title=title,
        type=problem_type,
        detail=detail,
    )


def _reason_phrase(status_code: int, default: str) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return default


_STATUS_KINDS: dict[int, FailureKind] = {
    status.HTTP_401_UNAUTHORIZED: FailureKind.UNAUTHENTICATED,
    status.HTTP_403_FORBIDDEN: FailureKind.FORBIDDEN,
    status.HTTP_404_NOT_FOUND: FailureKind.NOT_FOUND,
}

_KIND_ERRORS: dict[FailureKind, type[ServiceError]] = {
    FailureKind.CLIENT_FAULT: DomainValidationError,
    FailureKind.UNAUTHENTICATED: AuthenticationError,
    FailureKind.FORBIDDEN: AuthorizationError,
    FailureKind.NOT_FOUND: ResourceNotFoundError,
    FailureKind.INTERNAL: ServiceError,
}


def failure_from_status(status_code: int, message: str) -> ServiceError:
    """
    Translate a framework HTTP status into a tagged failure.

    401, 403 and 404 map to their own kinds. Other 4xx statuses stay client
    faults and keep their status code; everything else is internal.

    Args:
        status_code: HTTP status raised by the framework
        message: Framework-provided message

    Returns:
        ServiceError subclass matching the status
    """
    kind = _STATUS_KINDS.get(status_code)
    if kind is None:
        kind = FailureKind.CLIENT_FAULT if 400 <= status_code < 500 else FailureKind.INTERNAL
    failure = _KIND_ERRORS[kind](message, code=f"HTTP_{status_code}")
    if kind is FailureKind.CLIENT_FAULT:
        failure.status_code = status_code
    return failure
