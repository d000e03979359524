"""
Unmatched-route fallback.

Any request that matches no other route is redirected to the documentation
explorer, so the service always answers with content or documentation.
Registered last; it matches every path and method.
"""

from fastapi import FastAPI, status
from fastapi.responses import RedirectResponse

from postcode_api.api.docs import DOCS_PREFIX

FALLBACK_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


async def redirect_to_documentation(full_path: str) -> RedirectResponse:
    return RedirectResponse(url=DOCS_PREFIX, status_code=status.HTTP_302_FOUND)


def register_fallback(app: FastAPI) -> None:
    app.add_api_route(
        "/{full_path:path}",
        redirect_to_documentation,
        methods=FALLBACK_METHODS,
        include_in_schema=False,
    )
