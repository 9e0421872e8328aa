# tests/test_identity.py
"""
Unit tests for the Identity model and the get_identity dependency.

Tests do NOT require the identity provider or database access.
"""
from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from app.auth.identity import Identity
from app.dependencies.auth import get_identity, require_identity


# ---------------------------------------------------------------------------
# Tests: Identity.unauthenticated()
# ---------------------------------------------------------------------------


def test_unauthenticated_identity():
    identity = Identity.unauthenticated()

    assert identity.subject_id is None
    assert identity.email is None
    assert identity.is_authenticated is False
    assert identity.raw_claims == {}


def test_unauthenticated_to_debug_dict():
    assert Identity.unauthenticated().to_debug_dict() == {
        "subject_id": None,
        "email": None,
        "is_authenticated": False,
    }


# ---------------------------------------------------------------------------
# Tests: Identity.from_claims()
# ---------------------------------------------------------------------------


def test_identity_from_claims():
    claims = {
        "sub": "user_2abc",
        "email": "Ada.Lovelace@Example.COM",
        "first_name": "Ada",
        "last_name": "Lovelace",
        "username": "ada",
    }
    identity = Identity.from_claims(claims)

    assert identity.subject_id == "user_2abc"
    assert identity.email == "ada.lovelace@example.com"  # Normalized
    assert (identity.given_name, identity.family_name, identity.username) == ("Ada", "Lovelace", "ada")
    assert identity.is_authenticated is True
    assert identity.raw_claims == claims


def test_identity_from_oidc_style_claims():
    identity = Identity.from_claims({"sub": "s1", "given_name": "Grace", "family_name": "Hopper"})

    assert identity.given_name == "Grace"
    assert identity.family_name == "Hopper"
    assert identity.email is None


def test_debug_dict_omits_raw_claims():
    identity = Identity.from_claims({"sub": "s1", "email": "a@x.com", "secret": "token"})
    debug = identity.to_debug_dict()

    assert "raw_claims" not in debug
    assert "secret" not in str(debug)
    assert debug == {"subject_id": "s1", "email": "a@x.com", "is_authenticated": True}


def test_identity_is_frozen():
    identity = Identity.from_claims({"sub": "immutable"})

    with pytest.raises(Exception):
        identity.subject_id = "changed"  # type: ignore[misc]


# ---------------------------------------------------------------------------
# Tests: dependencies
# ---------------------------------------------------------------------------


def test_get_identity_returns_unauthenticated_when_no_state():
    mock_request = MagicMock()
    del mock_request.state.identity

    identity = get_identity(mock_request)

    assert identity.is_authenticated is False
    assert identity.subject_id is None


def test_get_identity_returns_existing_identity():
    expected = Identity.from_claims({"sub": "abc123", "email": "x@y.com"})
    mock_request = MagicMock()
    mock_request.state.identity = expected

    assert get_identity(mock_request) is expected


def test_require_identity_rejects_anonymous():
    from fastapi import HTTPException

    with pytest.raises(HTTPException) as excinfo:
        require_identity(Identity.unauthenticated())

    assert excinfo.value.status_code == 401
    assert excinfo.value.headers == {"WWW-Authenticate": "Bearer"}


@pytest.mark.parametrize(
    "claims,expected",
    [
        ({"sub": "s1", "first_name": "Ada", "last_name": "Lovelace", "username": "ada"}, "Ada Lovelace"),
        ({"sub": "s1", "first_name": "Ada", "username": "ada"}, "ada"),
        ({"sub": "s1"}, "New User"),
    ],
)
def test_display_name(claims, expected):
    assert Identity.from_claims(claims).display_name == expected
