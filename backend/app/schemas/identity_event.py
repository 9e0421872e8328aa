# app/schemas/identity_event.py
"""
Tagged payloads for identity provider webhook envelopes.

Every envelope parses into exactly one variant. Types this service does not act
on become ``UnhandledIdentityEvent`` so they can be acknowledged without error.
"""
from __future__ import annotations

from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

USER_CREATED = "user.created"
USER_UPDATED = "user.updated"
USER_DELETED = "user.deleted"


class MalformedIdentityEventError(Exception):
    """Raised when a verified envelope does not have the expected shape."""


class EmailCandidate(BaseModel):
    id: str
    email_address: str

    model_config = ConfigDict(extra="ignore")


class UserEventData(BaseModel):
    id: str = Field(min_length=1)
    email_addresses: list[EmailCandidate] = Field(default_factory=list)
    primary_email_address_id: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    username: str | None = None

    model_config = ConfigDict(extra="ignore")


class DeletedObjectData(BaseModel):
    id: str | None = None
    deleted: bool = True

    model_config = ConfigDict(extra="ignore")


class UserCreatedEvent(BaseModel):
    type: Literal["user.created"] = USER_CREATED
    data: UserEventData


class UserUpdatedEvent(BaseModel):
    type: Literal["user.updated"] = USER_UPDATED
    data: UserEventData


class UserDeletedEvent(BaseModel):
    type: Literal["user.deleted"] = USER_DELETED
    data: DeletedObjectData


class UnhandledIdentityEvent(BaseModel):
    type: str
    data: dict[str, Any] = Field(default_factory=dict)


IdentityEvent = Union[UserCreatedEvent, UserUpdatedEvent, UserDeletedEvent, UnhandledIdentityEvent]

_EVENT_MODELS: dict[str, type[BaseModel]] = {
    USER_CREATED: UserCreatedEvent,
    USER_UPDATED: UserUpdatedEvent,
    USER_DELETED: UserDeletedEvent,
}


def parse_identity_event(payload: Any) -> IdentityEvent:
    """Parse a decoded webhook envelope ``{type, data}`` into its tagged variant."""
    if not isinstance(payload, dict):
        raise MalformedIdentityEventError("Webhook envelope must be a JSON object")

    event_type = payload.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise MalformedIdentityEventError("Webhook envelope missing 'type'")

    data = payload.get("data")
    if not isinstance(data, dict):
        raise MalformedIdentityEventError("Webhook envelope missing 'data'")

    model = _EVENT_MODELS.get(event_type)
    if model is None:
        return UnhandledIdentityEvent(type=event_type, data=data)

    try:
        return model.model_validate({"type": event_type, "data": data})
    except ValidationError as exc:
        raise MalformedIdentityEventError(f"Invalid {event_type} payload: {exc.error_count()} error(s)") from exc
