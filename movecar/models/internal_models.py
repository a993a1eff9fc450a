"""Internal data models for the move-car service.

These are the records the keyed store persists. They serialize to JSON with
snake_case keys; the API layer decides what each caller may see.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class PushChannel(str, Enum):
    """Supported third-party push channels."""

    BARK = "bark"
    PUSHPLUS = "pushplus"
    SERVERCHAN = "serverchan"
    TELEGRAM = "telegram"


class _ChannelConfig(BaseModel):
    # Wire payloads use camelCase, stored records use field names.
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class BarkConfig(_ChannelConfig):
    channel: Literal["bark"] = "bark"
    server_url: str = Field("https://api.day.app", alias="serverUrl", min_length=1)
    key: str = Field(..., min_length=1)


class PushplusConfig(_ChannelConfig):
    channel: Literal["pushplus"] = "pushplus"
    token: str = Field(..., min_length=1)


class ServerChanConfig(_ChannelConfig):
    channel: Literal["serverchan"] = "serverchan"
    send_key: str = Field(..., alias="sendKey", min_length=1)


class TelegramConfig(_ChannelConfig):
    channel: Literal["telegram"] = "telegram"
    bot_token: str = Field(..., alias="botToken", min_length=1)
    chat_id: str = Field(..., alias="chatId", min_length=1)

    @field_validator("chat_id", mode="before")
    @classmethod
    def chat_id_as_string(cls, v):
        # Bot API chat ids are integers; channel usernames are strings
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


# Tagged variant: the channel discriminant and its credentials travel together,
# so an Owner can never name a channel without holding that channel's config.
PushSettings = Annotated[
    Union[BarkConfig, PushplusConfig, ServerChanConfig, TelegramConfig],
    Field(discriminator="channel"),
]


class Location(BaseModel):
    """A GPS coordinate with optional accuracy in meters."""

    lat: float = Field(..., ge=-90.0, le=90.0)
    lng: float = Field(..., ge=-180.0, le=180.0)
    accuracy: Optional[float] = Field(None, ge=0.0)


class Owner(BaseModel):
    """A registrant who receives move-car notifications."""

    id: str
    user_id: Optional[str] = None
    name: str
    car_plate: Optional[str] = None
    default_reply: Optional[str] = None
    push: PushSettings
    admin_token: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None

    @property
    def push_channel(self) -> PushChannel:
        return PushChannel(self.push.channel)


class RequestStatus(str, Enum):
    """Lifecycle states of a MoveRequest, in transition order."""

    PENDING = "pending"
    NOTIFIED = "notified"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)


_STATUS_ORDER = [
    RequestStatus.PENDING,
    RequestStatus.NOTIFIED,
    RequestStatus.CONFIRMED,
    RequestStatus.COMPLETED,
]


class MoveRequest(BaseModel):
    """One interaction between an anonymous requester and an Owner."""

    id: str
    owner_id: str
    message: str = ""
    requester_location: Optional[Location] = None
    owner_location: Optional[Location] = None
    status: RequestStatus = RequestStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    notified_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    phone_requested: bool = False
    phone_authorized: Optional[bool] = None
    authorized_phone: Optional[str] = None

    def advance_to(self, target: RequestStatus) -> bool:
        """Move to ``target`` if it lies ahead of the current status.

        Returns True when the status changed. Status never moves backward.
        """
        if target.rank <= self.status.rank:
            return False
        self.status = target
        return True


class User(BaseModel):
    """An account that can own multiple Owners."""

    id: str
    phone: str
    password_hash: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None


class UserSession(BaseModel):
    """A bearer-token session."""

    user_id: str
    token: str
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at


class PushMessage(BaseModel):
    """A channel-independent notification."""

    title: str
    body: str
    url: Optional[str] = None


class PushResult(BaseModel):
    """Outcome of a single best-effort dispatch attempt."""

    success: bool
    channel: PushChannel
    error: Optional[str] = None
