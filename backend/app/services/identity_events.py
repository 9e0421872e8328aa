from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from app.schemas.identity_event import (
    IdentityEvent,
    UnhandledIdentityEvent,
    UserCreatedEvent,
    UserDeletedEvent,
    UserUpdatedEvent,
)
from app.services.users import reconcile_identity_event

logger = logging.getLogger(__name__)

_OUTCOME_MESSAGES = {
    "created": "User created successfully",
    "updated": "User updated",
    "unchanged": "User already up to date",
}


def process_identity_event(db: Session, event: IdentityEvent) -> dict[str, Any]:
    """
    Apply one verified identity event and return the acknowledgement body.

    Raises the reconciler's errors unchanged; the route maps them to status codes.
    """
    if isinstance(event, (UserCreatedEvent, UserUpdatedEvent)):
        result = reconcile_identity_event(db, event.data)
        message = _OUTCOME_MESSAGES[result.outcome]
        if result.email_disambiguated:
            message = f"{message} with modified email"
        logger.info("Identity event %s for %s: %s", event.type, event.data.id, result.outcome)
        return {
            "success": True,
            "message": message,
            "userId": result.user.id,
            "outcome": result.outcome,
        }

    if isinstance(event, UserDeletedEvent):
        # Local rows are never deleted here; other tables reference users.id.
        logger.info("User deletion acknowledged for %s; local record retained", event.data.id)
        return {
            "success": True,
            "message": "User deletion acknowledged",
            "userId": event.data.id,
        }

    if isinstance(event, UnhandledIdentityEvent):
        logger.info("Ignoring identity event type: %s", event.type)
        return {"success": True, "message": f"Webhook received: {event.type}"}

    raise TypeError(f"Unsupported identity event: {type(event).__name__}")
