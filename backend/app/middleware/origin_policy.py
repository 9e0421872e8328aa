from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from app.auth.identity import Identity
from app.auth.provider import ProviderTokenExpiredError, ProviderVerificationError, resolve_principal
from app.core.config import Settings

logger = logging.getLogger(__name__)

PrincipalResolver = Callable[[Request], Identity]

DEFAULT_ALLOWED_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS")
DEFAULT_ALLOWED_HEADERS = ("Content-Type", "Authorization", "X-Request-Id")


def match_route(pattern: str, path: str) -> bool:
    """Exact match, or prefix match when the pattern ends with ``*``."""
    if pattern.endswith("*"):
        return path.startswith(pattern[:-1])
    return path == pattern


@dataclass(frozen=True)
class OriginPolicy:
    """
    Process-wide, read-only cross-origin and route-access policy.

    Attributes:
        allowed_origins: Exact origins allowed to read responses. The first entry
                         is the default echoed for unrecognized origins.
        public_routes: Route patterns that do not require a principal.
        self_authenticated_prefixes: Path prefixes whose handlers check the
                                     principal themselves. Empty in prod.
    """

    allowed_origins: tuple[str, ...]
    public_routes: tuple[str, ...]
    self_authenticated_prefixes: tuple[str, ...] = ()
    allowed_methods: tuple[str, ...] = DEFAULT_ALLOWED_METHODS
    allowed_headers: tuple[str, ...] = DEFAULT_ALLOWED_HEADERS
    max_age: int = 86400

    @classmethod
    def from_settings(cls, settings: Settings) -> OriginPolicy:
        # The only place the environment decides route access.
        self_authenticated = () if settings.is_prod else tuple(settings.SELF_AUTHENTICATED_PREFIXES)
        return cls(
            allowed_origins=tuple(settings.CORS_ORIGINS),
            public_routes=tuple(settings.PUBLIC_ROUTES),
            self_authenticated_prefixes=self_authenticated,
            max_age=settings.CORS_MAX_AGE_SECONDS,
        )

    def is_public(self, path: str) -> bool:
        normalized = path.rstrip("/") or "/"
        if any(match_route(pattern, normalized) for pattern in self.public_routes):
            return True
        return any(
            normalized == prefix.rstrip("/") or normalized.startswith(prefix.rstrip("/") + "/")
            for prefix in self.self_authenticated_prefixes
        )

    def resolve_origin(self, origin: str | None) -> str:
        """Echo the request origin if allow-listed (exact match only), else the default origin."""
        if origin and origin in self.allowed_origins:
            return origin
        return self.allowed_origins[0] if self.allowed_origins else ""

    def cors_headers(self, origin: str | None) -> dict[str, str]:
        return {
            "Access-Control-Allow-Origin": self.resolve_origin(origin),
            "Access-Control-Allow-Credentials": "true",
            "Vary": "Origin",
        }

    def preflight_headers(self, origin: str | None) -> dict[str, str]:
        headers = self.cors_headers(origin)
        headers["Access-Control-Allow-Methods"] = ", ".join(self.allowed_methods)
        headers["Access-Control-Allow-Headers"] = ", ".join(self.allowed_headers)
        headers["Access-Control-Max-Age"] = str(self.max_age)
        return headers

    def apply(self, response: Response, origin: str | None) -> Response:
        for key, value in self.cors_headers(origin).items():
            response.headers[key] = value
        return response


def _unauthorized(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={"error": "UNAUTHORIZED", "message": message},
    )


def register_origin_policy_middleware(app: FastAPI, policy: OriginPolicy) -> None:
    app.state.origin_policy = policy
    if not hasattr(app.state, "principal_resolver"):
        app.state.principal_resolver = resolve_principal

    @app.middleware("http")
    async def origin_policy_middleware(request: Request, call_next):
        """
        Classify the route, resolve the principal, and attach CORS headers to every response.

        Preflight requests are answered here and never reach a handler.
        Protected routes without a principal get a 401 that still carries CORS headers.
        """
        origin = request.headers.get("origin")
        request.state.identity = Identity.unauthenticated()

        if request.method.upper() == "OPTIONS":
            return Response(status_code=204, headers=policy.preflight_headers(origin))

        resolver: PrincipalResolver = request.app.state.principal_resolver
        public = policy.is_public(request.url.path)

        try:
            identity = resolver(request)
        except ProviderTokenExpiredError:
            logger.info("Session token expired for %s", request.url.path)
            if not public:
                return policy.apply(_unauthorized("Session has expired"), origin)
            identity = Identity.unauthenticated()
        except ProviderVerificationError as exc:
            logger.warning("Session verification failed for %s: %s", request.url.path, exc)
            if not public:
                return policy.apply(_unauthorized("Authentication required"), origin)
            identity = Identity.unauthenticated()

        if not public and not identity.is_authenticated:
            return policy.apply(_unauthorized("Authentication required"), origin)

        request.state.identity = identity

        try:
            response = await call_next(request)
        except Exception:
            logger.exception("Unhandled error for %s %s", request.method, request.url.path)
            response = JSONResponse(
                status_code=500,
                content={"error": "INTERNAL_ERROR", "message": "Internal server error"},
            )
        return policy.apply(response, origin)
