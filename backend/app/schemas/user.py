from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class UserOut(BaseModel):
    id: str
    email: str
    name: str | None = None

    model_config = ConfigDict(from_attributes=True)


class UserSyncIn(BaseModel):
    # Client-supplied hints; the principal's own claims take precedence.
    userId: str | None = Field(default=None, max_length=255)
    email: str | None = Field(default=None, max_length=255)
    name: str | None = Field(default=None, max_length=255)


class UserSyncOut(BaseModel):
    success: bool
    user: UserOut
    message: str
    outcome: str


class WebhookAckOut(BaseModel):
    success: bool = True
    message: str
    userId: str | None = None
    outcome: str | None = None
