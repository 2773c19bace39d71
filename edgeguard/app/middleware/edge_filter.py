"""Edge admission middleware.

Builds a ClientRequest from the incoming HTTP request, runs it through the
pipeline and either answers with a plain-text deny or lets the request
continue to the application.
"""

import hashlib
from typing import Iterable, Optional

from fastapi import Request, Response
from fastapi.responses import PlainTextResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from edgeguard.app.services.models import ClientRequest
from edgeguard.app.services.pipeline import EdgeFilterPipeline

DEFAULT_CLIENT_IP = "127.0.0.1"


def get_client_ip(request: Request, trust_forwarded_for: bool = False) -> str:
    """Client address used for rate limiting.

    The first X-Forwarded-For hop is used only when ``trust_forwarded_for``
    is set; clients can write that header themselves. Otherwise the socket
    peer, falling back to loopback.
    """
    forwarded = request.headers.get("X-Forwarded-For") if trust_forwarded_for else None
    if forwarded:
        client_ip = forwarded.split(",")[0].strip()
        if client_ip:
            return client_ip
    if request.client and request.client.host:
        return request.client.host
    return DEFAULT_CLIENT_IP


def make_client_key(client_ip: str, prefix: str = "ratelimit") -> str:
    """Rate limit key for an address.

    The address is hashed so raw IPs never end up in the store or the logs.
    """
    ip_hash = hashlib.sha256(client_ip.encode()).hexdigest()[:32]
    return f"{prefix}:ip:{ip_hash}"


def get_country(request: Request, header_names: Iterable[str]) -> Optional[str]:
    """Origin country from the first geo header the edge provides."""
    for name in header_names:
        value = request.headers.get(name, "").strip()
        if value:
            return value.upper()
    return None


class EdgeFilterMiddleware(BaseHTTPMiddleware):
    """Middleware that admits or rejects every request before it reaches a route.

    Paths under one of ``excluded_prefixes`` skip the filter entirely.
    """

    def __init__(
        self,
        app,
        pipeline: EdgeFilterPipeline,
        country_headers: Iterable[str] = ("x-vercel-ip-country", "cf-ipcountry"),
        excluded_prefixes: Iterable[str] = (),
        key_prefix: str = "ratelimit",
        trust_forwarded_for: bool = False,
    ):
        super().__init__(app)
        self.trust_forwarded_for = trust_forwarded_for
        self.pipeline = pipeline
        self.country_headers = tuple(country_headers)
        self.excluded_prefixes = tuple(excluded_prefixes)
        self.key_prefix = key_prefix

    def _is_excluded(self, path: str) -> bool:
        return any(path.startswith(prefix) for prefix in self.excluded_prefixes)

    def build_client_request(self, request: Request) -> ClientRequest:
        return ClientRequest(
            client_key=make_client_key(
                get_client_ip(request, self.trust_forwarded_for), self.key_prefix
            ),
            identity=request.headers.get("User-Agent", ""),
            country=get_country(request, self.country_headers),
            path=request.url.path,
        )

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Run the admission checks, then hand the request on."""
        if self._is_excluded(request.url.path):
            return await call_next(request)

        decision = await self.pipeline.evaluate(self.build_client_request(request))
        if not decision.allowed:
            return PlainTextResponse(
                decision.message,
                status_code=decision.status_code,
                headers=decision.headers,
            )

        response = await call_next(request)
        for name, value in decision.headers.items():
            response.headers[name] = value
        return response
