from __future__ import annotations

from fastapi import APIRouter, Depends

from app.auth.identity import Identity
from app.dependencies.auth import get_identity

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/check")
def check_authentication(identity: Identity = Depends(get_identity)) -> dict:
    # Always 200; anonymous callers just get isAuthenticated=false.
    if identity.is_authenticated:
        return {"isAuthenticated": True, "userId": identity.subject_id}
    return {"isAuthenticated": False, "userId": None, "message": "User not authenticated"}
