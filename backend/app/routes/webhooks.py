from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.auth.webhook_signature import (
    REQUIRED_WEBHOOK_HEADERS,
    InvalidWebhookPayloadError,
    InvalidWebhookSignatureError,
    MissingWebhookHeadersError,
    WebhookVerificationError,
    verify_webhook_signature,
)
from app.core.config import settings
from app.core.database import get_db
from app.schemas.identity_event import (
    USER_CREATED,
    USER_DELETED,
    USER_UPDATED,
    MalformedIdentityEventError,
    parse_identity_event,
)
from app.schemas.user import WebhookAckOut
from app.services.identity_events import process_identity_event
from app.services.users import ReconciliationFailedError, StoreUnavailableError

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

logger = logging.getLogger(__name__)


@router.get("/identity")
def identity_webhook_health() -> dict:
    return {
        "status": "healthy",
        "endpoint": "/webhooks/identity",
        "hasWebhookSecret": bool(settings.IDENTITY_WEBHOOK_SECRET),
        "expectedEvents": [USER_CREATED, USER_UPDATED, USER_DELETED],
        "requiredHeaders": list(REQUIRED_WEBHOOK_HEADERS),
    }


@router.post(
    "/identity",
    status_code=status.HTTP_200_OK,
    response_model=WebhookAckOut,
    response_model_exclude_none=True,
)
async def identity_webhook(
    request: Request,
    db: Session = Depends(get_db),
) -> dict:
    secret = settings.IDENTITY_WEBHOOK_SECRET
    if not secret:
        logger.error("IDENTITY_WEBHOOK_SECRET is not configured")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Server configuration error")

    payload = await request.body()
    try:
        envelope = verify_webhook_signature(payload, request.headers, secret)
    except MissingWebhookHeadersError as exc:
        logger.warning("Rejected identity webhook: %s", exc)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing webhook headers") from exc
    except InvalidWebhookSignatureError as exc:
        logger.warning("Rejected identity webhook: %s", exc)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook signature") from exc
    except InvalidWebhookPayloadError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook body is not valid JSON") from exc
    except WebhookVerificationError as exc:
        logger.error("Identity webhook secret unusable: %s", exc)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Server configuration error") from exc

    try:
        event = parse_identity_event(envelope)
    except MalformedIdentityEventError as exc:
        logger.warning("Malformed identity webhook: %s", exc)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    try:
        return process_identity_event(db, event)
    except ReconciliationFailedError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to create user record"
        ) from exc
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error") from exc
