"""
Owner registration and administration.

An Owner is addressed publicly by a short share code and administered with
an admin token that is returned only once, at creation.
"""

import hmac
import logging
from typing import List, Optional

from movecar.clients.push_client import NotificationDispatcher, get_dispatcher
from movecar.clients.repositories import DatabaseManager, get_db
from movecar.config import settings
from movecar.errors import AuthError, ConfigurationError, ForbiddenError, NotFoundError
from movecar.models.api_models import CreateOwnerRequest, PushConfigPayload, UpdateOwnerRequest
from movecar.models.internal_models import Owner, PushChannel, PushResult, utcnow
from movecar.observability import trace_function
from movecar.utils.ids import generate_admin_token, generate_unique_id

logger = logging.getLogger(__name__)


def build_push_settings(channel: PushChannel, payload: Optional[PushConfigPayload]):
    """
    Pick the config block matching ``channel``.

    Raises:
        ConfigurationError: If the payload has no block for the channel
    """
    config = payload.for_channel(channel) if payload is not None else None
    if config is None:
        raise ConfigurationError(f"Please provide {channel.value} configuration")
    return config


class OwnerService:
    """Create, read, update and delete Owners."""

    def __init__(
        self,
        db_manager: Optional[DatabaseManager] = None,
        dispatcher: Optional[NotificationDispatcher] = None
    ):
        self.db = db_manager or get_db()
        self.dispatcher = dispatcher or get_dispatcher()

    @trace_function("owner.create")
    async def create_owner(self, payload: CreateOwnerRequest, user_id: Optional[str] = None) -> Owner:
        """
        Register a new Owner.

        Args:
            payload: Validated registration body
            user_id: Account to link the Owner to, when the caller is logged in

        Returns:
            The stored Owner, including its admin token
        """
        push = build_push_settings(payload.pushChannel, payload.pushConfig)

        owner_id = await generate_unique_id(
            self.db.owners.exists,
            length=settings.owner_id_length,
            max_attempts=settings.id_generation_max_attempts,
            namespace="owner"
        )

        owner = Owner(
            id=owner_id,
            user_id=user_id,
            name=payload.name,
            car_plate=payload.carPlate,
            default_reply=payload.defaultReply,
            push=push,
            admin_token=generate_admin_token()
        )
        await self.db.owners.save(owner)

        if user_id:
            await self.db.users.add_owner(user_id, owner.id)

        logger.info(f"Created owner {owner.id} on channel {owner.push_channel.value}")
        return owner

    async def get_owner(self, owner_id: str) -> Owner:
        """
        Raises:
            NotFoundError: If no Owner has this id
        """
        owner = await self.db.owners.get(owner_id)
        if owner is None:
            raise NotFoundError("Owner", owner_id)
        return owner

    async def authorize(self, owner_id: str, token: Optional[str]) -> Owner:
        """
        Resolve an Owner and check the presented admin token.

        Raises:
            AuthError: If no token was presented
            NotFoundError: If the Owner does not exist
            ForbiddenError: If the token does not match
        """
        if not token:
            raise AuthError("Missing admin token")

        owner = await self.get_owner(owner_id)
        if not hmac.compare_digest(owner.admin_token.encode("utf-8"), token.encode("utf-8")):
            logger.warning(f"Rejected admin token for owner {owner_id}")
            raise ForbiddenError()
        return owner

    @trace_function("owner.update")
    async def update_owner(self, owner_id: str, token: Optional[str], payload: UpdateOwnerRequest) -> Owner:
        """Apply a partial update; fields absent from ``payload`` are preserved."""
        owner = await self.authorize(owner_id, token)

        updates = {}
        if payload.name is not None:
            updates["name"] = payload.name
        if payload.carPlate is not None:
            updates["car_plate"] = payload.carPlate
        if payload.defaultReply is not None:
            updates["default_reply"] = payload.defaultReply

        if payload.pushChannel is not None or payload.pushConfig is not None:
            channel = payload.pushChannel or owner.push_channel
            config = payload.pushConfig.for_channel(channel) if payload.pushConfig is not None else None
            if config is None and channel == owner.push_channel:
                config = owner.push
            if config is None:
                raise ConfigurationError(f"Please provide {channel.value} configuration")
            updates["push"] = config

        updates["updated_at"] = utcnow()
        updated = owner.model_copy(update=updates)
        await self.db.owners.save(updated)

        logger.info(f"Updated owner {owner_id}")
        return updated

    @trace_function("owner.delete")
    async def delete_owner(self, owner_id: str, token: Optional[str]) -> None:
        """Delete an Owner. Its move requests are left to expire on their own."""
        owner = await self.authorize(owner_id, token)
        await self.db.owners.delete(owner_id)
        if owner.user_id:
            await self.db.users.remove_owner(owner.user_id, owner_id)

    @trace_function("owner.test_push")
    async def test_push(self, owner_id: str, token: Optional[str]) -> PushResult:
        owner = await self.authorize(owner_id, token)
        return await self.dispatcher.send_test(owner)

    async def list_user_owners(self, user_id: str) -> List[Owner]:
        """Owners linked to an account; ids of deleted Owners are skipped."""
        owners = []
        for owner_id in await self.db.users.list_owner_ids(user_id):
            owner = await self.db.owners.get(owner_id)
            if owner is not None:
                owners.append(owner)
        return owners


# Global service instance
_owner_service: Optional[OwnerService] = None


def get_owner_service() -> OwnerService:
    """Get the global owner service instance."""
    global _owner_service
    if _owner_service is None:
        _owner_service = OwnerService()
    return _owner_service
