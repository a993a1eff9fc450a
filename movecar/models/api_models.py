"""Pydantic models for API requests and responses."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .internal_models import (
    BarkConfig,
    Location,
    PushChannel,
    PushplusConfig,
    ServerChanConfig,
    TelegramConfig,
)


class PushConfigPayload(BaseModel):
    """Per-channel credential blocks as sent by clients."""

    bark: Optional[BarkConfig] = None
    pushplus: Optional[PushplusConfig] = None
    serverchan: Optional[ServerChanConfig] = None
    telegram: Optional[TelegramConfig] = None

    def for_channel(self, channel: PushChannel):
        """Return the config block for ``channel`` or None when absent."""
        return getattr(self, channel.value)


class CreateOwnerRequest(BaseModel):
    """Request model for Owner registration."""

    name: str = Field(..., min_length=1, max_length=50, description="Display name shown to requesters")
    carPlate: Optional[str] = Field(None, max_length=20)
    defaultReply: Optional[str] = Field(None, max_length=200)
    pushChannel: PushChannel
    pushConfig: PushConfigPayload


class UpdateOwnerRequest(BaseModel):
    """Partial update of an Owner; omitted fields are preserved."""

    name: Optional[str] = Field(None, min_length=1, max_length=50)
    carPlate: Optional[str] = Field(None, max_length=20)
    defaultReply: Optional[str] = Field(None, max_length=200)
    pushChannel: Optional[PushChannel] = None
    pushConfig: Optional[PushConfigPayload] = None


class CreateMoveRequestBody(BaseModel):
    """Request model for a new move-car request."""

    ownerId: str = Field(..., min_length=1, max_length=32)
    message: str = Field("", max_length=500)
    location: Optional[Location] = None


class ConfirmRequestBody(BaseModel):
    """Owner confirmation, optionally sharing the owner's location."""

    location: Optional[Location] = None


class AuthorizePhoneBody(BaseModel):
    """Owner's answer to a phone disclosure request."""

    authorize: bool


class RegisterRequest(BaseModel):
    """Request model for account registration."""

    phone: str = Field(..., min_length=1, max_length=20)
    password: str = Field(..., min_length=1, max_length=128)


class LoginRequest(BaseModel):
    """Request model for account login."""

    phone: str = Field(..., min_length=1, max_length=20)
    password: str = Field(..., min_length=1, max_length=128)


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str = Field(..., description="Service health status")
    timestamp: datetime = Field(..., description="Health check timestamp")
    version: str = Field(..., description="Service version")
