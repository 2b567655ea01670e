"""Data contracts for token and call signaling endpoints."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accept and emit camelCase field names on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TokenRequest(CamelModel):
    channel_name: str = Field(..., min_length=1, description="Media channel to join")
    uid: str = Field(..., min_length=1, description="Opaque participant identifier")
    ttl_seconds: int | None = Field(default=None, ge=1, description="Override token lifetime")


class TokenResponse(CamelModel):
    success: bool = True
    token: str = Field(..., description="Signed channel credential")
    expire_at: int = Field(..., description="Unix timestamp when the token expires")


class StartCallRequest(CamelModel):
    caller_id: str = Field(..., min_length=1)
    callee_id: str = Field(..., min_length=1)
    requested_channel: str | None = Field(default=None, description="Optional channel name to reuse")


class CallTokenResponse(CamelModel):
    success: bool = True
    call_id: str
    channel_name: str
    token: str
    expire_at: int


class CalleeActionRequest(CamelModel):
    call_id: str = Field(..., min_length=1)
    callee_id: str = Field(..., min_length=1)


class EndCallRequest(CamelModel):
    call_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)


class CancelCallRequest(CamelModel):
    call_id: str = Field(..., min_length=1)
    caller_id: str = Field(..., min_length=1)


class SuccessResponse(CamelModel):
    success: bool = True


class CallSnapshot(CamelModel):
    call_id: str
    channel_name: str
    caller_id: str
    callee_id: str
    status: str
    created_at: datetime
    accepted_at: datetime | None = None
    ended_at: datetime | None = None
    ended_by: str | None = None
    end_reason: str | None = None


class PresenceResponse(CamelModel):
    user_id: str
    online: bool
    connections: int


class ErrorResponse(CamelModel):
    success: bool = False
    error: str
    detail: str
