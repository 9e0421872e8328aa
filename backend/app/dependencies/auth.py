from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status

from app.auth.identity import Identity


def _unauthorized(detail: str = "Authentication required") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_identity(request: Request) -> Identity:
    """
    Return the principal resolved by the origin policy middleware.

    Falls back to an unauthenticated identity when the middleware did not run.
    """
    identity = getattr(request.state, "identity", None)
    if isinstance(identity, Identity):
        return identity
    return Identity.unauthenticated()


def require_identity(identity: Identity = Depends(get_identity)) -> Identity:
    """
    Require an authenticated principal.

    The middleware already rejects anonymous requests to protected routes; this
    keeps handlers safe if their route is ever listed as public.
    """
    if not identity.is_authenticated or not identity.subject_id:
        raise _unauthorized()
    return identity
