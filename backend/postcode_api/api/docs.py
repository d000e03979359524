"""
API documentation publisher.

Builds one OpenAPI descriptor per published API version when the
application starts and serves them, together with a Swagger UI explorer,
under /swagger. The explorer obtains tokens from the same identity
authority the API trusts, using the authorization code flow with PKCE and
the API's audience, and never embeds a client secret.

Documentation is only published in development. Whether it is published,
and what it contains, is decided once at startup.
"""

import json
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional

from fastapi import FastAPI
from fastapi.openapi.docs import get_swagger_ui_html, get_swagger_ui_oauth2_redirect_html
from fastapi.openapi.utils import get_openapi
from starlette.responses import Response
from starlette.routing import BaseRoute

from postcode_api.api.versions import ApiVersion
from postcode_api.core.config import Settings
from postcode_api.core.errors import ResourceNotFoundError
from postcode_api.core.logging import get_logger, log_performance

logger = get_logger(__name__)

DOCS_PREFIX = "/swagger"
OAUTH2_REDIRECT_PATH = f"{DOCS_PREFIX}/oauth2-redirect.html"


@dataclass(frozen=True)
class ApiVersionDescriptor:
    """Machine-readable description of one API version."""

    version: str
    title: str
    document: Mapping[str, Any]
    body: bytes

    @property
    def url(self) -> str:
        return f"{DOCS_PREFIX}/{self.version}/swagger.json"


@dataclass(frozen=True)
class DocumentationCatalog:
    """Documentation state fixed at startup."""

    enabled: bool
    descriptors: Mapping[str, ApiVersionDescriptor] = field(
        default_factory=lambda: MappingProxyType({})
    )
    explorer_html: Optional[bytes] = None


def build_version_descriptor(
    version: ApiVersion, routes: Iterable[BaseRoute], settings: Settings
) -> ApiVersionDescriptor:
    """
    Generate the OpenAPI document for one API version.

    The document is generated from the full route table, so routers
    included under a prefix are resolved by the framework, and then
    narrowed to the paths under the version's prefix. The security scheme
    and per-operation requirements come from the routes' credential
    dependency.

    Args:
        version: Published API version
        routes: All application routes
        settings: Application settings

    Returns:
        Immutable descriptor holding the document and its serialized body
    """
    title = f"{settings.app_name} {version.name.upper()}"
    document = get_openapi(
        title=title,
        version=version.name,
        description=f"{settings.app_name} {version.name} (build {settings.app_version})",
        routes=list(routes),
    )
    document["paths"] = {
        path: operations
        for path, operations in document.get("paths", {}).items()
        if path.startswith(version.prefix + "/")
    }

    return ApiVersionDescriptor(
        version=version.name,
        title=title,
        document=MappingProxyType(document),
        body=json.dumps(document).encode("utf-8"),
    )


def render_explorer(
    settings: Settings, descriptors: Mapping[str, ApiVersionDescriptor]
) -> bytes:
    """Render the Swagger UI page listing every version descriptor."""
    ordered = list(descriptors.values())
    html = get_swagger_ui_html(
        openapi_url=ordered[0].url,
        title=f"{settings.app_name} Documentation",
        oauth2_redirect_url=OAUTH2_REDIRECT_PATH,
        init_oauth={
            "clientId": settings.authentication_swagger_client_id,
            "appName": settings.app_name,
            "usePkceWithAuthorizationCodeGrant": True,
            "scopes": " ".join(settings.required_scopes),
            "additionalQueryStringParams": {
                "audience": settings.authentication_api_name,
            },
        },
        swagger_ui_parameters={
            "urls": [
                {"url": descriptor.url, "name": descriptor.title}
                for descriptor in ordered
            ],
            "persistAuthorization": True,
        },
    )
    return bytes(html.body)


def build_documentation(
    app: FastAPI, settings: Settings, versions: Iterable[ApiVersion]
) -> DocumentationCatalog:
    """
    Build the documentation catalog from the application's registered routes.

    Args:
        app: Application with all versioned routers already included
        settings: Application settings
        versions: Published API versions

    Returns:
        DocumentationCatalog; disabled outside development
    """
    if not settings.documentation_enabled:
        logger.info("API documentation disabled", environment=settings.environment)
        return DocumentationCatalog(enabled=False)

    versions = tuple(versions)
    with log_performance(logger, "documentation_build", versions=len(versions)):
        descriptors = {
            version.name: build_version_descriptor(version, app.routes, settings)
            for version in versions
        }
        explorer_html = render_explorer(settings, descriptors)

    return DocumentationCatalog(
        enabled=True,
        descriptors=MappingProxyType(descriptors),
        explorer_html=explorer_html,
    )


def register_documentation(app: FastAPI, catalog: DocumentationCatalog) -> None:
    """
    Register the /swagger routes for a documentation catalog.

    When documentation is disabled every /swagger path answers 404 so the
    unmatched-route redirect cannot loop.
    """
    if not catalog.enabled:

        async def documentation_unavailable() -> Response:
            raise ResourceNotFoundError(
                "API documentation is not published in this environment",
                code="DOCUMENTATION_DISABLED",
            )

        async def documentation_path_unavailable(path: str) -> Response:
            return await documentation_unavailable()

        app.add_api_route(DOCS_PREFIX, documentation_unavailable, include_in_schema=False)
        app.add_api_route(
            DOCS_PREFIX + "/{path:path}",
            documentation_path_unavailable,
            include_in_schema=False,
        )
        return

    async def explorer() -> Response:
        return Response(content=catalog.explorer_html, media_type="text/html")

    async def oauth2_redirect() -> Response:
        return get_swagger_ui_oauth2_redirect_html()

    async def version_descriptor(version: str) -> Response:
        descriptor = catalog.descriptors.get(version)
        if descriptor is None:
            raise ResourceNotFoundError(
                f"No API descriptor for version '{version}'",
                code="DESCRIPTOR_NOT_FOUND",
            )
        return Response(content=descriptor.body, media_type="application/json")

    app.add_api_route(DOCS_PREFIX, explorer, include_in_schema=False)
    app.add_api_route(DOCS_PREFIX + "/index.html", explorer, include_in_schema=False)
    app.add_api_route(OAUTH2_REDIRECT_PATH, oauth2_redirect, include_in_schema=False)
    app.add_api_route(
        DOCS_PREFIX + "/{version}/swagger.json",
        version_descriptor,
        include_in_schema=False,
    )
