# app/services/users.py
"""
User reconciliation.

Responsibilities:
- Deriving the canonical email and display name from provider profile data
- Creating or updating the local user row so it matches the provider's view
- Resolving email uniqueness collisions with a single bounded retry
- Treating duplicate creates for the same subject as "already exists"

Both the webhook path and the manual sync path end up in ``reconcile_principal``.
"""
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal, Optional, Protocol, Sequence

from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session

from app.models.user import User
from app.schemas.identity_event import UserEventData

logger = logging.getLogger(__name__)

DEFAULT_USER_NAME = "New User"
PLACEHOLDER_EMAIL_DOMAIN = "example.invalid"
MAX_NAME_LENGTH = 255
MAX_EMAIL_LENGTH = 255

ReconcileOutcome = Literal["created", "updated", "unchanged"]


class ReconciliationError(Exception):
    """Base error for user reconciliation."""


class NoEmailAvailableError(ReconciliationError):
    """Raised when the provider profile carries no email address at all."""


class ReconciliationFailedError(ReconciliationError):
    """Raised when the email collision retry also fails."""


class StoreUnavailableError(ReconciliationError):
    """Raised when the user store cannot be reached."""


class _EmailCandidate(Protocol):
    id: str
    email_address: str


@dataclass(frozen=True)
class ReconcileResult:
    outcome: ReconcileOutcome
    user: User
    email_disambiguated: bool = False


# ---------------------------------------------------------------------------
# Derivation
# ---------------------------------------------------------------------------


def normalize_email(email: str) -> str:
    return email.strip().lower()


def derive_email(candidates: Sequence[_EmailCandidate], primary_id: str | None) -> str:
    """Pick the primary email, falling back to the first non-blank candidate."""
    usable = [c for c in candidates if c.email_address and c.email_address.strip()]
    if not usable:
        raise NoEmailAvailableError("Provider profile has no email addresses")
    for candidate in usable:
        if primary_id and candidate.id == primary_id:
            return normalize_email(candidate.email_address)
    return normalize_email(usable[0].email_address)


def placeholder_email(subject_id: str) -> str:
    """Synthetic address used when the provider has none, so the row can still exist."""
    return f"{subject_id}@{PLACEHOLDER_EMAIL_DOMAIN}".lower()


def derive_name(given_name: str | None, family_name: str | None, handle: str | None) -> str:
    given = (given_name or "").strip()
    family = (family_name or "").strip()
    if given and family:
        return f"{given} {family}"[:MAX_NAME_LENGTH]
    if handle and handle.strip():
        return handle.strip()[:MAX_NAME_LENGTH]
    return DEFAULT_USER_NAME


def disambiguate_email(email: str, *, now_ms: int | None = None) -> str:
    """
    Append a millisecond timestamp to the local part: ``a@x.com`` -> ``a-1700000000000@x.com``.

    The local part is truncated so the result still fits the email column.
    """
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    local, sep, domain = email.partition("@")
    if not sep:
        local, domain = email, PLACEHOLDER_EMAIL_DOMAIN
    suffix = f"-{stamp}@{domain}"
    room = max(MAX_EMAIL_LENGTH - len(suffix), 1)
    return f"{local[:room]}{suffix}"


def _is_disambiguated_form(stored: str, derived: str) -> bool:
    local, sep, domain = derived.partition("@")
    if not sep:
        return False
    match = re.fullmatch(rf"(.+)-\d+@{re.escape(domain)}", stored)
    if match is None:
        return False
    prefix = match.group(1)
    # A full-length stored address may carry a truncated local part.
    return prefix == local or (len(stored) == MAX_EMAIL_LENGTH and local.startswith(prefix))


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def get_user_by_id(db: Session, subject_id: str) -> Optional[User]:
    """Look up a user by provider subject id."""
    return db.get(User, subject_id)


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    """Look up a user by email address."""
    return db.query(User).filter(User.email == normalize_email(email)).first()


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


def reconcile_identity_event(db: Session, data: UserEventData) -> ReconcileResult:
    """Reconcile the local row for a ``user.created`` / ``user.updated`` payload."""
    try:
        email = derive_email(data.email_addresses, data.primary_email_address_id)
    except NoEmailAvailableError:
        email = placeholder_email(data.id)
        logger.warning("No email for subject %s; using placeholder %s", data.id, email)

    name = derive_name(data.first_name, data.last_name, data.username)
    return reconcile_principal(db, data.id, email, name)


def reconcile_principal(
    db: Session,
    subject_id: str,
    email: str,
    name: str | None,
) -> ReconcileResult:
    """
    Make the row for ``subject_id`` match ``email`` / ``name``.

    Idempotent: repeated calls with the same input yield ``created`` once and
    ``unchanged`` afterwards. A ``None`` name leaves the stored name alone.

    Raises:
        ValueError: subject_id or email is empty.
        ReconciliationFailedError: email collision persisted after one retry.
        StoreUnavailableError: the database could not be reached.
    """
    if not subject_id:
        raise ValueError("subject_id is required")
    if not email or not email.strip():
        raise ValueError("email is required")

    normalized_email = normalize_email(email)
    clean_name = name.strip()[:MAX_NAME_LENGTH] if name and name.strip() else None

    try:
        user = get_user_by_id(db, subject_id)
        if user is None:
            result = _create_user(db, subject_id, normalized_email, clean_name)
            if result is not None:
                return result
            user = get_user_by_id(db, subject_id)
            if user is None:
                raise ReconciliationFailedError(f"User {subject_id} vanished during reconciliation")
        return _update_user(db, user, normalized_email, clean_name)
    except (OperationalError, InterfaceError) as exc:
        db.rollback()
        logger.error("User store unavailable while reconciling %s: %s", subject_id, exc)
        raise StoreUnavailableError("User store unavailable") from exc


def _insert_user(db: Session, subject_id: str, email: str, name: str | None) -> User:
    user = User(id=subject_id, email=email, name=name)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def _create_user(db: Session, subject_id: str, email: str, name: str | None) -> ReconcileResult | None:
    """
    Insert a new row. Returns None when another writer created the same subject first,
    so the caller can fall through to update-or-noop.
    """
    try:
        user = _insert_user(db, subject_id, email, name)
        logger.info("Created user id=%s email=%s", subject_id, email)
        return ReconcileResult(outcome="created", user=user)
    except IntegrityError:
        db.rollback()

    if get_user_by_id(db, subject_id) is not None:
        logger.info("User %s created concurrently; falling through to update", subject_id)
        return None

    retry_email = disambiguate_email(email)
    logger.warning(
        "Email %s already owned by another user; creating %s with %s",
        email,
        subject_id,
        retry_email,
    )
    try:
        user = _insert_user(db, subject_id, retry_email, name)
    except IntegrityError as exc:
        db.rollback()
        if get_user_by_id(db, subject_id) is not None:
            return None
        logger.error("Failed to create user %s after email retry: %s", subject_id, exc)
        raise ReconciliationFailedError(f"Failed to create user record for {subject_id}") from exc

    logger.info("Created user id=%s with disambiguated email=%s", subject_id, retry_email)
    return ReconcileResult(outcome="created", user=user, email_disambiguated=True)


def _update_user(db: Session, user: User, email: str, name: str | None) -> ReconcileResult:
    email_changed = user.email != email
    if email_changed and _is_disambiguated_form(user.email, email):
        # Keep a previously disambiguated address while the plain one is still taken.
        owner = get_user_by_email(db, email)
        if owner is not None and owner.id != user.id:
            email_changed = False
    name_changed = name is not None and user.name != name

    if not email_changed and not name_changed:
        return ReconcileResult(outcome="unchanged", user=user)

    subject_id = user.id
    if name_changed:
        user.name = name
    if email_changed:
        user.email = email
    user.updated_at = datetime.now(timezone.utc)

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
    else:
        db.refresh(user)
        logger.info("Updated user id=%s", subject_id)
        return ReconcileResult(outcome="updated", user=user)

    # Only the email can collide; retry once with a disambiguated address.
    user = get_user_by_id(db, subject_id)
    if user is None:
        raise ReconciliationFailedError(f"User {subject_id} vanished during reconciliation")

    retry_email = disambiguate_email(email)
    logger.warning("Email %s already owned by another user; updating %s to %s", email, subject_id, retry_email)
    if name is not None:
        user.name = name
    user.email = retry_email
    user.updated_at = datetime.now(timezone.utc)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.error("Failed to update user %s after email retry: %s", subject_id, exc)
        raise ReconciliationFailedError(f"Failed to update user record for {subject_id}") from exc

    db.refresh(user)
    return ReconcileResult(outcome="updated", user=user, email_disambiguated=True)
