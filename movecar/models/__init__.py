"""Data models for the move-car service."""

from .api_models import (
    PushConfigPayload,
    CreateOwnerRequest,
    UpdateOwnerRequest,
    CreateMoveRequestBody,
    ConfirmRequestBody,
    AuthorizePhoneBody,
    RegisterRequest,
    LoginRequest,
    HealthResponse
)
from .internal_models import (
    PushChannel,
    BarkConfig,
    PushplusConfig,
    ServerChanConfig,
    TelegramConfig,
    Location,
    Owner,
    RequestStatus,
    MoveRequest,
    User,
    UserSession,
    PushMessage,
    PushResult
)

__all__ = [
    "PushConfigPayload",
    "CreateOwnerRequest",
    "UpdateOwnerRequest",
    "CreateMoveRequestBody",
    "ConfirmRequestBody",
    "AuthorizePhoneBody",
    "RegisterRequest",
    "LoginRequest",
    "HealthResponse",
    "PushChannel",
    "BarkConfig",
    "PushplusConfig",
    "ServerChanConfig",
    "TelegramConfig",
    "Location",
    "Owner",
    "RequestStatus",
    "MoveRequest",
    "User",
    "UserSession",
    "PushMessage",
    "PushResult"
]
