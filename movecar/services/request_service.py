"""
Move request lifecycle.

A request moves through ``pending -> notified -> confirmed -> completed`` and
never back. Dispatch happens immediately when the requester shared a location,
otherwise a later deferred-notify call (scheduled by the client, or optionally
by this process) performs it. Phone disclosure is a separate sub-flow that
does not touch the primary status.

Every transition is a read-modify-write on the stored record with
last-writer-wins semantics; there is no compare-and-swap.
"""

import asyncio
import logging
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from movecar.clients.push_client import NotificationDispatcher, get_dispatcher
from movecar.clients.repositories import DatabaseManager, get_db
from movecar.config import settings
from movecar.errors import BindingMissingError, InvalidStateError, MoveCarError, NotFoundError
from movecar.models.internal_models import (
    Location,
    MoveRequest,
    Owner,
    PushMessage,
    PushResult,
    RequestStatus,
    utcnow,
)
from movecar.observability import record_transition_metrics, trace_function
from movecar.utils.ids import generate_unique_id

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE = "Please move your car as soon as possible"
DEFAULT_OWNER_NAME = "Car owner"


def format_location(location: Location) -> str:
    return f"📍 Location: {location.lat:.6f}, {location.lng:.6f}"


def build_move_message(request: MoveRequest, base_url: str) -> PushMessage:
    """Compose the notification telling an Owner someone needs them to move."""
    body = f"📝 Message: {request.message or DEFAULT_MESSAGE}"

    if request.requester_location:
        body += f"\n\n{format_location(request.requester_location)}"

    local_time = request.created_at.astimezone(ZoneInfo(settings.notification_timezone))
    body += f"\n\n⏰ Time: {local_time:%Y-%m-%d %H:%M:%S}"

    return PushMessage(
        title="🚗 Someone asked you to move your car",
        body=body,
        url=f"{base_url}/r/{request.id}",
    )


def build_phone_request_message(request: MoveRequest, base_url: str) -> PushMessage:
    """Compose the notification asking an Owner to disclose their phone."""
    return PushMessage(
        title="📱 Someone is asking for your phone number",
        body="A requester would like your phone number to reach you about moving your car.\n\n"
             "Open the link to allow or deny.",
        url=f"{base_url}/auth/{request.id}",
    )


class RequestLifecycleService:
    """State machine for MoveRequests and the phone disclosure sub-flow."""

    def __init__(
        self,
        db_manager: Optional[DatabaseManager] = None,
        dispatcher: Optional[NotificationDispatcher] = None
    ):
        self.db = db_manager or get_db()
        self.dispatcher = dispatcher or get_dispatcher()

    async def _load(self, request_id: str) -> MoveRequest:
        request = await self.db.requests.get(request_id)
        if request is None:
            raise NotFoundError("Request", request_id)
        return request

    async def _load_owner(self, owner_id: str) -> Owner:
        owner = await self.db.owners.get(owner_id)
        if owner is None:
            raise NotFoundError("Owner", owner_id)
        return owner

    async def _notify(self, owner: Owner, request: MoveRequest, base_url: str) -> PushResult:
        """Dispatch and mark notified; a failed dispatch still counts as the attempt."""
        result = await self.dispatcher.send(owner, build_move_message(request, base_url))
        if request.advance_to(RequestStatus.NOTIFIED):
            request.notified_at = utcnow()
            record_transition_metrics(RequestStatus.NOTIFIED.value)
        await self.db.requests.save(request)
        return result

    @trace_function("request.create")
    async def create_request(
        self,
        owner_id: str,
        message: str,
        location: Optional[Location],
        base_url: str
    ) -> Tuple[MoveRequest, Optional[PushResult]]:
        """
        Open a new request against an Owner.

        Args:
            owner_id: Share code of the Owner to notify
            message: Requester's free text; a default is used when blank
            location: Requester's position; when given the Owner is notified now
            base_url: Public base URL for deep links

        Returns:
            Tuple of (request, push result or None when dispatch is deferred)

        Raises:
            NotFoundError: If the Owner does not exist
        """
        owner = await self._load_owner(owner_id)

        request_id = await generate_unique_id(
            self.db.requests.exists,
            length=settings.request_id_length,
            max_attempts=settings.id_generation_max_attempts,
            namespace="request"
        )

        request = MoveRequest(
            id=request_id,
            owner_id=owner.id,
            message=message.strip() or DEFAULT_MESSAGE,
            requester_location=location,
        )
        await self.db.requests.save(request)
        record_transition_metrics(RequestStatus.PENDING.value)
        logger.info(f"Created request {request.id} for owner {owner.id} (location={'yes' if location else 'no'})")

        push_result = None
        if location is not None:
            push_result = await self._notify(owner, request, base_url)

        return request, push_result

    @trace_function("request.deferred_notify")
    async def deferred_notify(self, request_id: str, base_url: str) -> Tuple[MoveRequest, Optional[PushResult]]:
        """
        Notify the Owner of a request created without a location.

        Idempotent: once the request has left ``pending`` this is a no-op and
        the push result is None.
        """
        request = await self._load(request_id)
        if request.status != RequestStatus.PENDING:
            logger.debug(f"Deferred notify skipped for request {request_id}: already {request.status.value}")
            return request, None

        owner = await self._load_owner(request.owner_id)
        result = await self._notify(owner, request, base_url)
        return request, result

    async def run_deferred_notify_after_delay(self, request_id: str, base_url: str, delay: float) -> None:
        """Sleep ``delay`` seconds, then run the deferred notify; for background tasks."""
        await asyncio.sleep(delay)
        try:
            await self.deferred_notify(request_id, base_url)
        except MoveCarError as e:
            logger.warning(f"Scheduled deferred notify for request {request_id} failed: {e.message}")

    async def get_request(self, request_id: str) -> MoveRequest:
        return await self._load(request_id)

    async def get_owner_name(self, request: MoveRequest) -> str:
        """Display name of the request's Owner, with a fallback once it is gone."""
        owner = await self.db.owners.get(request.owner_id)
        return owner.name if owner else DEFAULT_OWNER_NAME

    @trace_function("request.confirm")
    async def confirm(self, request_id: str, location: Optional[Location] = None) -> MoveRequest:
        """
        Owner acknowledges the request, optionally sharing their location.

        Allowed from ``pending`` as well as ``notified`` so an Owner acting
        before the deferred notify lands is not rejected. A completed request
        is left untouched.
        """
        request = await self._load(request_id)
        if request.status == RequestStatus.COMPLETED:
            logger.info(f"Confirm ignored for completed request {request_id}")
            return request

        if request.advance_to(RequestStatus.CONFIRMED):
            record_transition_metrics(RequestStatus.CONFIRMED.value)
        request.confirmed_at = utcnow()
        if location is not None:
            request.owner_location = location

        await self.db.requests.save(request)
        return request

    @trace_function("request.complete")
    async def complete(self, request_id: str) -> MoveRequest:
        """
        Mark the request completed.

        Raises:
            InvalidStateError: If REQUIRE_CONFIRM_BEFORE_COMPLETE is set and
                the request has not been confirmed
        """
        request = await self._load(request_id)
        if request.status == RequestStatus.COMPLETED:
            return request

        if settings.require_confirm_before_complete and request.status != RequestStatus.CONFIRMED:
            raise InvalidStateError("Request must be confirmed before it can be completed")

        request.advance_to(RequestStatus.COMPLETED)
        request.completed_at = utcnow()
        record_transition_metrics(RequestStatus.COMPLETED.value)

        await self.db.requests.save(request)
        return request

    @trace_function("request.request_phone")
    async def request_phone(self, request_id: str, base_url: str) -> Tuple[MoveRequest, Optional[PushResult]]:
        """
        Ask the Owner to disclose their account phone number.

        Idempotent: a repeated call returns the current state without a second
        notification (push result None).

        Raises:
            NotFoundError: If the request or its Owner does not exist
            BindingMissingError: If the Owner has no linked account
        """
        request = await self._load(request_id)
        if request.phone_requested:
            return request, None

        owner = await self._load_owner(request.owner_id)
        if not owner.user_id:
            raise BindingMissingError()

        request.phone_requested = True
        await self.db.requests.save(request)

        result = await self.dispatcher.send(owner, build_phone_request_message(request, base_url))
        logger.info(f"Phone disclosure requested for request {request_id}")
        return request, result

    @trace_function("request.authorize_phone")
    async def authorize_phone(self, request_id: str, authorize: bool) -> MoveRequest:
        """
        Record the Owner's disclosure decision.

        On consent the linked account's phone is copied onto the request; on
        refusal any previously disclosed phone is cleared.

        Raises:
            InvalidStateError: If no phone request is outstanding
            NotFoundError: If the Owner or its linked account is gone
        """
        request = await self._load(request_id)
        if not request.phone_requested:
            raise InvalidStateError("No phone number request to answer")

        if authorize:
            owner = await self.db.owners.get(request.owner_id)
            if owner is None or not owner.user_id:
                raise NotFoundError("Owner account")

            user = await self.db.users.get(owner.user_id)
            if user is None:
                raise NotFoundError("User", owner.user_id)

            request.phone_authorized = True
            request.authorized_phone = user.phone
        else:
            request.phone_authorized = False
            request.authorized_phone = None

        await self.db.requests.save(request)
        logger.info(f"Phone disclosure {'granted' if authorize else 'denied'} for request {request_id}")
        return request

    async def phone_status(self, request_id: str) -> Tuple[MoveRequest, bool]:
        """Return the request and whether its Owner has a linked account."""
        request = await self._load(request_id)
        owner = await self.db.owners.get(request.owner_id)
        return request, bool(owner and owner.user_id)


# Global service instance
_request_service: Optional[RequestLifecycleService] = None


def get_request_service() -> RequestLifecycleService:
    """Get the global request lifecycle service instance."""
    global _request_service
    if _request_service is None:
        _request_service = RequestLifecycleService()
    return _request_service
