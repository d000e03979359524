"""
Forwarded header trust stage.

Installed only in proxied transport mode. X-Forwarded-For and
X-Forwarded-Proto are applied to the request only when the immediate peer
belongs to one of the operator-configured trusted networks. The trusted list
starts empty, so an unconfigured deployment trusts no proxy at all.
"""

from ipaddress import ip_address
from typing import Iterable, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from postcode_api.core.config import TrustedNetwork
from postcode_api.core.logging import get_logger

logger = get_logger(__name__)

FORWARDED_FOR = "x-forwarded-for"
FORWARDED_PROTO = "x-forwarded-proto"

_ALLOWED_SCHEMES = frozenset({"http", "https"})


def _last_value(header: Optional[str]) -> Optional[str]:
    # One proxy hop is processed: the right-most entry was written by the
    # trusted peer, anything to its left came from further upstream.
    if not header:
        return None
    values = [value.strip() for value in header.split(",") if value.strip()]
    return values[-1] if values else None


class ForwardedHeadersMiddleware(BaseHTTPMiddleware):
    """
    Apply forwarded client address and scheme from trusted proxies only.

    Args:
        app: Downstream ASGI application
        trusted_networks: Networks whose forwarded headers are honored
    """

    def __init__(self, app: ASGIApp, trusted_networks: Iterable[TrustedNetwork] = ()):
        super().__init__(app)
        self.trusted_networks = tuple(trusted_networks)

    def is_trusted(self, peer: Optional[str]) -> bool:
        if not peer or not self.trusted_networks:
            return False
        try:
            address = ip_address(peer)
        except ValueError:
            return False
        return any(address in network for network in self.trusted_networks)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        peer = request.client.host if request.client else None
        if self.is_trusted(peer):
            self._apply(request)
        return await call_next(request)

    def _apply(self, request: Request) -> None:
        scope = request.scope

        proto = _last_value(request.headers.get(FORWARDED_PROTO))
        if proto and proto.lower() in _ALLOWED_SCHEMES:
            scope["scheme"] = proto.lower()

        forwarded_for = _last_value(request.headers.get(FORWARDED_FOR))
        if forwarded_for:
            try:
                client_host = str(ip_address(forwarded_for))
            except ValueError:
                logger.debug("Ignoring malformed X-Forwarded-For", value=forwarded_for)
            else:
                port = scope["client"][1] if scope.get("client") else 0
                scope["client"] = (client_host, port)
