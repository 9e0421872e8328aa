# app/auth/provider.py
"""
Identity provider session verification.

This is the "current authenticated principal" boundary. Responsibilities:
- Lazy JWKS fetching (no network calls on import)
- In-memory JWKS caching with configurable TTL
- Clear typed exceptions for verification failures
- Reading the session token from the Authorization header or session cookie
"""
from __future__ import annotations

import json
import logging
import ssl
import threading
import time
from typing import Any
from urllib.request import urlopen

import certifi
from fastapi import Request
from jose import JWTError, jwk, jwt

from app.auth.identity import Identity
from app.core.config import settings


logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ProviderVerificationError(Exception):
    """Base exception for session token verification failures."""

    pass


class ProviderNotConfiguredError(ProviderVerificationError):
    """Raised when the identity provider settings are not configured."""

    pass


class ProviderJWKSFetchError(ProviderVerificationError):
    """Raised when JWKS cannot be fetched from the identity provider."""

    pass


class ProviderTokenExpiredError(ProviderVerificationError):
    """Raised when the session token has expired."""

    pass


class ProviderInvalidTokenError(ProviderVerificationError):
    """Raised for signature, issuer and other token validation failures."""

    pass


class ProviderUnauthorizedPartyError(ProviderVerificationError):
    """Raised when the token's authorized party is not an accepted origin."""

    pass


# ---------------------------------------------------------------------------
# JWKS Cache
# ---------------------------------------------------------------------------


class _JWKSCache:
    """
    Thread-safe in-memory cache for the provider JWKS.

    The cache is populated lazily on first verification attempt.
    TTL is controlled by IDP_JWKS_CACHE_SECONDS.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._keys: dict[str, Any] | None = None
        self._fetched_at: float = 0.0

    def get_signing_key(self, kid: str) -> Any:
        with self._lock:
            now = time.time()
            ttl = settings.IDP_JWKS_CACHE_SECONDS

            if self._keys is None or (now - self._fetched_at) > ttl:
                self._refresh_keys()

            if kid not in self._keys:
                # Key not found; maybe keys rotated. Try one refresh.
                self._refresh_keys()

            if kid not in self._keys:
                raise ProviderInvalidTokenError(f"Signing key not found for kid: {kid}")

            return self._keys[kid]

    def _refresh_keys(self) -> None:
        jwks_url = settings.idp_jwks_url
        if not jwks_url:
            raise ProviderNotConfiguredError("Identity provider JWKS URL not configured")

        try:
            logger.info("Fetching identity provider JWKS from %s", jwks_url)
            context = ssl.create_default_context(cafile=certifi.where())
            with urlopen(jwks_url, timeout=10, context=context) as resp:
                data = json.loads(resp.read().decode("utf-8"))
        except Exception as e:
            logger.error("Failed to fetch identity provider JWKS: %s", e)
            raise ProviderJWKSFetchError(f"Failed to fetch JWKS: {e}") from e

        keys_list = data.get("keys", [])
        if not keys_list:
            raise ProviderJWKSFetchError("JWKS response contains no keys")

        self._keys = {}
        for key_data in keys_list:
            kid = key_data.get("kid")
            if kid:
                try:
                    self._keys[kid] = jwk.construct(key_data)
                except Exception as e:
                    logger.warning("Failed to construct key for kid=%s: %s", kid, e)

        self._fetched_at = time.time()
        logger.info("Cached %d identity provider signing keys", len(self._keys))

    def clear(self) -> None:
        """Clear the cache (useful for testing)."""
        with self._lock:
            self._keys = None
            self._fetched_at = 0.0


_jwks_cache = _JWKSCache()


def clear_jwks_cache() -> None:
    """Clear the JWKS cache. Exposed for testing."""
    _jwks_cache.clear()


# ---------------------------------------------------------------------------
# Token Verification
# ---------------------------------------------------------------------------


def verify_session_token(token: str) -> dict[str, Any]:
    """
    Verify an identity provider session token.

    Validates:
    - Signature via JWKS (RS256)
    - exp / iat / nbf claims
    - Issuer matches IDP_ISSUER
    - ``azp`` is one of IDP_AUTHORIZED_PARTIES, when that list is configured

    Returns:
        The decoded token claims as a dict

    Raises:
        ProviderNotConfiguredError, ProviderTokenExpiredError,
        ProviderInvalidTokenError, ProviderUnauthorizedPartyError
    """
    issuer = settings.IDP_ISSUER
    if not issuer:
        raise ProviderNotConfiguredError("Identity provider not configured (IDP_ISSUER required)")

    try:
        unverified_header = jwt.get_unverified_header(token)
    except JWTError as e:
        raise ProviderInvalidTokenError(f"Invalid token header: {e}") from e

    kid = unverified_header.get("kid")
    if not kid:
        raise ProviderInvalidTokenError("Token header missing 'kid' claim")

    signing_key = _jwks_cache.get_signing_key(kid)

    try:
        claims = jwt.decode(
            token,
            signing_key,
            algorithms=["RS256"],
            issuer=issuer,
            options={"verify_aud": False},
        )
    except jwt.ExpiredSignatureError as e:
        raise ProviderTokenExpiredError("Token has expired") from e
    except jwt.JWTClaimsError as e:
        raise ProviderInvalidTokenError(f"Claims validation failed: {e}") from e
    except JWTError as e:
        raise ProviderInvalidTokenError(f"Signature verification failed: {e}") from e

    if not claims.get("sub"):
        raise ProviderInvalidTokenError("Token missing subject")

    parties = settings.IDP_AUTHORIZED_PARTIES
    azp = claims.get("azp")
    if parties and azp and azp not in parties:
        raise ProviderUnauthorizedPartyError(f"Unexpected authorized party: {azp}")

    return claims


# ---------------------------------------------------------------------------
# Principal lookup
# ---------------------------------------------------------------------------


def extract_session_token(request: Request) -> str | None:
    """Return the session token from ``Authorization: Bearer`` or the session cookie."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.lower().startswith("bearer "):
        token = auth_header.split(" ", 1)[1].strip()
        if token:
            return token

    cookie = request.cookies.get(settings.IDP_SESSION_COOKIE)
    if cookie:
        return cookie.strip() or None
    return None


def resolve_principal(request: Request) -> Identity:
    """
    Resolve the principal of ``request``.

    No credential yields an unauthenticated identity. A credential that fails
    verification raises ProviderVerificationError so callers can tell the two apart.
    """
    token = extract_session_token(request)
    if not token:
        return Identity.unauthenticated()
    claims = verify_session_token(token)
    return Identity.from_claims(claims)
