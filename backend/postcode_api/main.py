"""
FastAPI application entry point.

This module assembles the application: the ordered request pipeline, the
liveness endpoint, the versioned API routers guarded by authentication and
authorization, the per-version documentation, and the fallback redirect.
It also provides the console entry point that serves the app with uvicorn.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import uvicorn
from fastapi import FastAPI

from postcode_api.api.deps import base_authorization_dependencies, build_oauth2_scheme
from postcode_api.api.docs import build_documentation, register_documentation
from postcode_api.api.fallback import register_fallback
from postcode_api.api.health import router as health_router
from postcode_api.api.versions import API_VERSIONS
from postcode_api.core.config import Settings, get_settings
from postcode_api.core.logging import configure_logging, get_logger
from postcode_api.core.security import TokenValidator
from postcode_api.middleware.problem_details import register_exception_handlers
from postcode_api.pipeline import build_pipeline
from postcode_api.services.postal_codes.service import (
    InMemoryPostalCodeLogic,
    PostalCodeLogic,
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan context manager for startup and shutdown events.

    Args:
        app: FastAPI application instance

    Yields:
        None during application runtime
    """
    settings: Settings = app.state.settings

    logger.info(
        "Application started",
        environment=settings.environment,
        version=settings.app_version,
        transport_mode=settings.transport_mode.value,
        documentation_enabled=app.state.documentation.enabled,
        pipeline=[stage.name for stage in app.state.pipeline],
    )

    yield

    logger.info("Application shutting down")
    await app.state.token_validator.aclose()


def create_app(
    settings: Optional[Settings] = None,
    *,
    token_validator: Optional[TokenValidator] = None,
    postal_code_logic: Optional[PostalCodeLogic] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Frozen settings; loaded from the environment when omitted
        token_validator: Validator for bearer tokens; built from settings when omitted
        postal_code_logic: Business logic provider; in-memory when omitted

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()
    token_validator = token_validator or TokenValidator.from_settings(settings)
    pipeline = build_pipeline(settings, token_validator)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Postal code lookup API",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
        debug=settings.debug,
        middleware=[stage.middleware for stage in pipeline],
    )
    app.state.settings = settings
    app.state.pipeline = pipeline
    app.state.token_validator = token_validator
    app.state.postal_code_logic = postal_code_logic or InMemoryPostalCodeLogic()

    register_exception_handlers(app)

    app.include_router(health_router)

    oauth2_scheme = build_oauth2_scheme(settings)
    for version in API_VERSIONS:
        app.include_router(
            version.router,
            prefix=version.prefix,
            dependencies=base_authorization_dependencies(
                oauth2_scheme, settings.required_scopes
            ),
        )

    documentation = build_documentation(app, settings, API_VERSIONS)
    app.state.documentation = documentation
    register_documentation(app, documentation)

    register_fallback(app)

    return app


def run() -> None:
    """
    Serve the application with uvicorn.

    uvicorn's own proxy header handling is disabled; forwarded headers are
    trusted only through the pipeline's forwarded-headers stage.
    """
    settings = get_settings()
    configure_logging(settings)
    logger.info("Starting up")

    try:
        app = create_app(settings)
        uvicorn.run(
            app,
            host=settings.host,
            port=settings.port,
            proxy_headers=False,
            log_config=None,
        )
    except Exception:
        logger.critical("Unhandled exception", exc_info=True)
        raise
    finally:
        logger.info("Shut down complete")


if __name__ == "__main__":
    run()
