# app/auth/identity.py
"""
Canonical authenticated principal model.

This module provides a unified representation of the subject of the current
request as asserted by the identity provider. Downstream code can reason about
"who is this user?" without inspecting raw session tokens.

The Identity object is INTERNAL ONLY and should not be returned directly
to clients.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from app.services.users import derive_name


@dataclass(frozen=True)
class Identity:
    """
    Representation of an authenticated (or unauthenticated) principal.

    Attributes:
        subject_id: The provider ``sub`` claim. Stable across sessions and equal
                    to the local ``users.id`` once reconciled.
        email: Primary email address if the session token carries one.
        given_name / family_name / username: Profile claims, when present.
        is_authenticated: True if the session token was verified.
        raw_claims: Raw token claims for debugging/audit. Not for authorization.
    """

    subject_id: str | None = None
    email: str | None = None
    given_name: str | None = None
    family_name: str | None = None
    username: str | None = None
    is_authenticated: bool = False
    raw_claims: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def unauthenticated(cls) -> Identity:
        """Create an identity representing an unauthenticated request."""
        return cls()

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> Identity:
        """
        Create an identity from verified session token claims.

        Profile claims are optional; the provider only includes them when the
        session token template is configured to.
        """
        email = claims.get("email") or claims.get("primary_email")
        return cls(
            subject_id=claims["sub"],
            email=email.strip().lower() if email else None,
            given_name=claims.get("first_name") or claims.get("given_name"),
            family_name=claims.get("last_name") or claims.get("family_name"),
            username=claims.get("username"),
            is_authenticated=True,
            raw_claims=dict(claims),
        )

    @property
    def display_name(self) -> str:
        """Name to store locally: "given family", else the username, else the default."""
        return derive_name(self.given_name, self.family_name, self.username)

    def to_debug_dict(self) -> dict[str, Any]:
        """
        Return a safe subset of identity info for debug output.

        Does NOT include raw_claims to avoid leaking sensitive data.
        """
        return {
            "subject_id": self.subject_id,
            "email": self.email,
            "is_authenticated": self.is_authenticated,
        }
