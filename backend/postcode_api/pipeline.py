"""
Request pipeline assembly.

The cross-cutting stages run in the order returned by build_pipeline(),
outermost first:

1. problem_details   - correlation id and failure boundary for everything below
2. forwarded_headers - proxied transport mode only
3. cors              - only when an origin allow-list is configured
4. authentication    - resolves the principal from a bearer token
5. request_logging   - one record per request

Routing, per-route authorization and the handlers run inside the last
stage. Each stage declares whether it may answer a request on its own and
whether it converts downstream failures into responses.
"""

from dataclasses import dataclass
from typing import Sequence

from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware

from postcode_api.core.config import Settings, TransportMode
from postcode_api.core.context import CORRELATION_HEADER
from postcode_api.core.security import TokenValidator
from postcode_api.middleware.authentication import AuthenticationMiddleware
from postcode_api.middleware.forwarded_headers import ForwardedHeadersMiddleware
from postcode_api.middleware.problem_details import ProblemDetailsMiddleware
from postcode_api.middleware.request_logging import RequestLoggingMiddleware

AUTHENTICATION_STAGE = "authentication"


@dataclass(frozen=True)
class PipelineStage:
    """One cross-cutting stage and its contract."""

    name: str
    middleware: Middleware
    may_short_circuit: bool = False
    failure_boundary: bool = False


def validate_pipeline(stages: Sequence[PipelineStage]) -> None:
    """
    Check the ordering contract of a pipeline.

    The single failure boundary must be the outermost stage, and any stage
    that may answer a request on its own must run before authentication so
    such answers never consult the identity authority.

    Args:
        stages: Stages ordered outermost first

    Raises:
        ValueError: If the ordering contract is violated
    """
    boundaries = [index for index, stage in enumerate(stages) if stage.failure_boundary]
    if boundaries != [0]:
        raise ValueError("Exactly one failure boundary is required, as the outermost stage")

    names = [stage.name for stage in stages]
    if AUTHENTICATION_STAGE in names:
        late = [
            stage.name
            for stage in stages[names.index(AUTHENTICATION_STAGE):]
            if stage.may_short_circuit
        ]
    else:
        late = []
    if late:
        raise ValueError(f"Short-circuiting stages must precede authentication: {late}")


def build_pipeline(
    settings: Settings, validator: TokenValidator
) -> tuple[PipelineStage, ...]:
    """
    Build the ordered pipeline stages for the given settings.

    Args:
        settings: Frozen application settings
        validator: Token validator used by the authentication stage

    Returns:
        Stages ordered outermost first
    """
    stages = [
        PipelineStage(
            name="problem_details",
            middleware=Middleware(ProblemDetailsMiddleware),
            failure_boundary=True,
        ),
    ]

    if settings.transport_mode is TransportMode.PROXIED:
        stages.append(
            PipelineStage(
                name="forwarded_headers",
                middleware=Middleware(
                    ForwardedHeadersMiddleware,
                    trusted_networks=settings.trusted_networks,
                ),
            )
        )

    if settings.allowed_origins:
        stages.append(
            PipelineStage(
                name="cors",
                middleware=Middleware(
                    CORSMiddleware,
                    allow_origins=list(settings.allowed_origins),
                    allow_credentials=False,
                    allow_methods=["*"],
                    allow_headers=["*"],
                    expose_headers=[CORRELATION_HEADER],
                ),
                may_short_circuit=True,
            )
        )

    stages.append(
        PipelineStage(
            name=AUTHENTICATION_STAGE,
            middleware=Middleware(AuthenticationMiddleware, validator=validator),
        )
    )
    stages.append(
        PipelineStage(
            name="request_logging",
            middleware=Middleware(RequestLoggingMiddleware),
        )
    )
    validate_pipeline(stages)
    return tuple(stages)
