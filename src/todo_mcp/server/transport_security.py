"""DNS rebinding protection for the Streamable HTTP endpoint.

A browser tricked into resolving an attacker's domain to 127.0.0.1 still sends
the attacker's name in the Host header, so only requests addressed to a known
host name are let through. Allowed values may use two wildcard forms:

- ``name:*`` accepts ``name`` on any port
- ``*.name`` accepts ``name`` and every subdomain; append ``:*`` to allow any port too
"""

import logging
from http import HTTPStatus

from pydantic import BaseModel, Field
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

ANY_PORT = ":*"
SUBDOMAIN_WILDCARD = "*."


def default_allowed_hosts(port: int) -> list[str]:
    """Loopback names accepted out of the box, with and without the service port."""
    return ["127.0.0.1", f"127.0.0.1:{port}", "localhost", f"localhost:{port}"]


class TransportSecuritySettings(BaseModel):
    """Settings for transport security features.

    These settings help protect against DNS rebinding attacks by validating incoming request headers.
    """

    enable_dns_rebinding_protection: bool = True
    """Enable DNS rebinding protection (recommended for production)."""

    allowed_hosts: list[str] = Field(default_factory=list)
    """Host header values to accept, e.g. ``localhost:4000``, ``example.com:*`` or ``*.mysite.com``."""

    allowed_origins: list[str] = Field(default_factory=list)
    """Origin header values to accept, e.g. ``http://localhost:*``.

    An empty list leaves the Origin header unchecked.
    """


def _strip_port(host: str) -> str:
    """Hostname part of a Host header, keeping IPv6 brackets."""
    if host.startswith("["):
        end = host.find("]")
        return host[: end + 1] if end != -1 else host
    return host.split(":", 1)[0]


def host_matches(host: str, pattern: str) -> bool:
    any_port = pattern.endswith(ANY_PORT)
    base = pattern[: -len(ANY_PORT)] if any_port else pattern

    if base.startswith(SUBDOMAIN_WILDCARD):
        domain = base[len(SUBDOMAIN_WILDCARD) :]
        hostname = _strip_port(host)
        return bool(domain) and (hostname == domain or hostname.endswith("." + domain))

    if any_port:
        return host == base or host.startswith(base + ":")
    return host == pattern


def origin_matches(origin: str, pattern: str) -> bool:
    if pattern.endswith(ANY_PORT):
        base = pattern[: -len(ANY_PORT)]
        return origin == base or origin.startswith(base + ":")
    return origin == pattern


class TransportSecurityMiddleware:
    """Checks run on every request before the session is looked up."""

    def __init__(self, settings: TransportSecuritySettings | None = None):
        # Without explicit settings only the Content-Type check applies
        self.settings = settings or TransportSecuritySettings(enable_dns_rebinding_protection=False)

    def _validate_host(self, host: str | None) -> bool:
        if not host:
            logger.warning("Missing Host header in request")
            return False
        if any(host_matches(host, pattern) for pattern in self.settings.allowed_hosts):
            return True
        logger.warning(f"Invalid Host header: {host}")
        return False

    def _validate_origin(self, origin: str | None) -> bool:
        # Same-origin and non-browser requests carry no Origin
        if not origin or not self.settings.allowed_origins:
            return True
        if any(origin_matches(origin, pattern) for pattern in self.settings.allowed_origins):
            return True
        logger.warning(f"Invalid Origin header: {origin}")
        return False

    @staticmethod
    def _is_json(content_type: str | None) -> bool:
        return content_type is not None and content_type.lower().startswith("application/json")

    async def validate_request(self, request: Request, is_post: bool = False) -> Response | None:
        """Return an error Response for a rejected request, or None to let it through."""
        if is_post and not self._is_json(request.headers.get("content-type")):
            return Response("Invalid Content-Type header", status_code=HTTPStatus.BAD_REQUEST)

        if not self.settings.enable_dns_rebinding_protection:
            return None

        if not self._validate_host(request.headers.get("host")):
            return Response("Invalid Host header", status_code=HTTPStatus.MISDIRECTED_REQUEST)

        if not self._validate_origin(request.headers.get("origin")):
            return Response("Invalid Origin header", status_code=HTTPStatus.FORBIDDEN)

        return None
