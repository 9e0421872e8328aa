# app/auth/webhook_signature.py
"""
Identity provider webhook signature verification.

The identity provider delivers change notifications through svix, which signs
each delivery with a shared ``whsec_`` secret. Verification is delegated to the
svix SDK; this module only adds the header pre-check and translates SDK errors
into our own exception family so routes can map them to status codes.

svix enforces its own five minute replay window on ``svix-timestamp``.

Verification is pure: nothing here touches the database or the network.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Mapping

from svix.webhooks import Webhook
from svix.webhooks import WebhookVerificationError as SvixVerificationError

WEBHOOK_ID_HEADER = "svix-id"
WEBHOOK_TIMESTAMP_HEADER = "svix-timestamp"
WEBHOOK_SIGNATURE_HEADER = "svix-signature"

REQUIRED_WEBHOOK_HEADERS = (
    WEBHOOK_ID_HEADER,
    WEBHOOK_TIMESTAMP_HEADER,
    WEBHOOK_SIGNATURE_HEADER,
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class WebhookVerificationError(Exception):
    """Base exception for webhook verification failures."""


class WebhookSecretError(WebhookVerificationError):
    """Raised when the configured secret is empty or not a valid svix secret."""


class MissingWebhookHeadersError(WebhookVerificationError):
    """Raised when one or more of the svix headers is absent."""

    def __init__(self, missing: list[str]) -> None:
        super().__init__(f"Missing webhook headers: {', '.join(missing)}")
        self.missing = missing


class InvalidWebhookSignatureError(WebhookVerificationError):
    """Raised when no provided signature matches, or the timestamp is outside the replay window."""


class InvalidWebhookPayloadError(WebhookVerificationError):
    """Raised when a correctly signed body is not JSON."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is None:
        # Plain dicts are case-sensitive; Starlette's Headers are not.
        for key, candidate in headers.items():
            if key.lower() == name:
                value = candidate
                break
    if value is None:
        return None
    value = value.strip()
    return value or None


def _webhook(secret: str) -> Webhook:
    if not secret:
        raise WebhookSecretError("Webhook secret is not configured")
    try:
        return Webhook(secret)
    except ValueError as exc:
        raise WebhookSecretError("Webhook secret is not valid base64") from exc


def sign_webhook_payload(
    raw_body: bytes,
    secret: str,
    *,
    msg_id: str,
    timestamp: int | None = None,
) -> dict[str, str]:
    """Build the header set a genuine delivery of ``raw_body`` would carry."""
    sent_at = datetime.now(timezone.utc) if timestamp is None else datetime.fromtimestamp(timestamp, tz=timezone.utc)
    signature = _webhook(secret).sign(msg_id, sent_at, raw_body.decode("utf-8"))
    return {
        WEBHOOK_ID_HEADER: msg_id,
        WEBHOOK_TIMESTAMP_HEADER: str(int(sent_at.timestamp())),
        WEBHOOK_SIGNATURE_HEADER: signature,
    }


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


def verify_webhook_signature(raw_body: bytes, headers: Mapping[str, str], secret: str) -> Any:
    """
    Verify that ``raw_body`` was signed by the identity provider and return the decoded JSON.

    Args:
        raw_body: Exact request body bytes as received.
        headers: Request headers (any mapping; lookup is case-insensitive).
        secret: Shared webhook secret, ``whsec_<base64>``.

    Raises:
        MissingWebhookHeadersError: a required header is absent.
        WebhookSecretError: the secret is empty or malformed.
        InvalidWebhookSignatureError: the signature does not match or the delivery is stale.
        InvalidWebhookPayloadError: the signature matches but the body is not JSON.
    """
    values = {name: _header(headers, name) for name in REQUIRED_WEBHOOK_HEADERS}
    missing = [name for name, value in values.items() if value is None]
    if missing:
        raise MissingWebhookHeadersError(missing)

    webhook = _webhook(secret)

    try:
        body = raw_body.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise InvalidWebhookSignatureError("Webhook body is not UTF-8") from exc

    try:
        return webhook.verify(body, values)
    except SvixVerificationError as exc:
        raise InvalidWebhookSignatureError(str(exc)) from exc
    except json.JSONDecodeError as exc:
        raise InvalidWebhookPayloadError("Webhook body is not valid JSON") from exc
    except ValueError as exc:
        # Malformed signature entries (no comma, bad base64) surface as ValueError.
        raise InvalidWebhookSignatureError(f"Malformed webhook signature: {exc}") from exc
