from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.auth.identity import Identity
from app.core.database import get_db
from app.dependencies.auth import get_identity, require_identity
from app.schemas.user import UserOut, UserSyncIn, UserSyncOut
from app.services.users import (
    DEFAULT_USER_NAME,
    ReconciliationFailedError,
    StoreUnavailableError,
    get_user_by_id,
    normalize_email,
    placeholder_email,
    reconcile_principal,
)

router = APIRouter(prefix="/users", tags=["users"])

logger = logging.getLogger(__name__)

_SYNC_MESSAGES = {
    "created": "User successfully synced to database",
    "updated": "User successfully synced to database",
    "unchanged": "User already in sync",
}


@router.post("/sync", response_model=UserSyncOut)
def sync_current_user(
    payload: UserSyncIn | None = None,
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_identity),
) -> dict:
    """Reconcile the caller's local user row right now instead of waiting for the webhook."""
    body = payload or UserSyncIn()
    if body.userId and body.userId != identity.subject_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="userId does not match the session")

    email = identity.email or (normalize_email(body.email) if body.email and body.email.strip() else None)
    if not email:
        email = placeholder_email(identity.subject_id)
        logger.warning("No email for %s during manual sync; using placeholder", identity.subject_id)

    if identity.given_name or identity.family_name or identity.username:
        name = identity.display_name
    else:
        name = body.name or DEFAULT_USER_NAME

    try:
        result = reconcile_principal(db, identity.subject_id, email, name)
    except (ReconciliationFailedError, StoreUnavailableError) as exc:
        logger.error("Manual sync failed for %s: %s", identity.subject_id, exc)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to sync user") from exc

    logger.info("User %s synced to database (manual_sync, %s)", identity.subject_id, result.outcome)
    return {
        "success": True,
        "user": UserOut.model_validate(result.user),
        "message": _SYNC_MESSAGES[result.outcome],
        "outcome": result.outcome,
    }


@router.get("/current")
def get_current_user(
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
) -> dict:
    """
    Report the caller's principal and local user row.

    Never 401: "not authenticated" is a valid answer. A principal without a local
    row is reported as not yet provisioned.
    """
    if not identity.is_authenticated or not identity.subject_id:
        return {"authenticated": False, "user": None}

    try:
        user = get_user_by_id(db, identity.subject_id)
    except SQLAlchemyError as exc:
        logger.error("Failed to load user %s: %s", identity.subject_id, exc)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error") from exc

    if user is None:
        return {
            "authenticated": True,
            "user": {"id": identity.subject_id, "provisioned": False},
            "message": "User exists in identity provider but not in database yet",
        }

    return {
        "authenticated": True,
        "user": {
            "id": user.id,
            "email": user.email,
            "name": user.name,
            "createdAt": user.created_at.isoformat() if user.created_at else None,
            "provisioned": True,
        },
    }
