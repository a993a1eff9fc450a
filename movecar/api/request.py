"""
Move request endpoints.

Requesters create and poll requests; Owners act on them through the deep
link pushed to their device. Request ids are unguessable capabilities, so
none of these endpoints take further credentials.
"""

from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, BackgroundTasks, Body, Depends, Request

from movecar.api.responses import api_response, get_base_url
from movecar.config import settings
from movecar.models.api_models import AuthorizePhoneBody, ConfirmRequestBody, CreateMoveRequestBody
from movecar.models.internal_models import MoveRequest, PushResult
from movecar.services.request_service import RequestLifecycleService, get_request_service

logger = structlog.get_logger()
router = APIRouter(prefix="/api/request", tags=["request"])


def push_outcome(result: PushResult) -> Dict[str, Any]:
    outcome = {"success": result.success, "channel": result.channel.value}
    if result.error:
        outcome["error"] = result.error
    return outcome


def request_view(request: MoveRequest, owner_name: str) -> Dict[str, Any]:
    """Public view of a request for both the requester and the Owner."""
    return {
        "id": request.id,
        "ownerId": request.owner_id,
        "ownerName": owner_name,
        "status": request.status.value,
        "message": request.message,
        "requesterLocation": request.requester_location,
        "ownerLocation": request.owner_location,
        "createdAt": request.created_at,
        "notifiedAt": request.notified_at,
        "confirmedAt": request.confirmed_at,
        "completedAt": request.completed_at,
        "phoneRequested": request.phone_requested,
        "phoneAuthorized": request.phone_authorized,
        "authorizedPhone": request.authorized_phone,
    }


@router.post("")
async def create_request(
    body: CreateMoveRequestBody,
    http_request: Request,
    background_tasks: BackgroundTasks,
    service: RequestLifecycleService = Depends(get_request_service),
):
    """
    Open a move request.

    With a location the Owner is notified immediately. Without one the
    response carries ``notifyAfterSeconds`` and the client is expected to call
    the notify endpoint after that delay.
    """
    base_url = get_base_url(http_request)
    request, push_result = await service.create_request(
        body.ownerId, body.message, body.location, base_url
    )

    data = {
        "requestId": request.id,
        "waitingUrl": f"/w/{request.id}",
        "status": request.status.value,
        "hasLocation": body.location is not None,
        "notifyAfterSeconds": 0,
    }

    if push_result is not None:
        data["push"] = push_outcome(push_result)
        message = "Notification sent" if push_result.success else "Request created, notification failed"
    else:
        delay = settings.deferred_notify_delay_seconds
        data["notifyAfterSeconds"] = delay
        message = f"Request created, the owner will be notified in {delay} seconds"
        if settings.server_side_deferred_notify:
            background_tasks.add_task(service.run_deferred_notify_after_delay, request.id, base_url, delay)

    logger.info(
        "Move request created",
        request_id=request.id,
        owner_id=request.owner_id,
        has_location=data["hasLocation"]
    )
    return api_response(data=data, message=message)


@router.get("/{request_id}")
async def get_request(request_id: str, service: RequestLifecycleService = Depends(get_request_service)):
    request = await service.get_request(request_id)
    owner_name = await service.get_owner_name(request)
    return api_response(data=request_view(request, owner_name))


@router.post("/{request_id}/notify")
async def notify(
    request_id: str,
    http_request: Request,
    service: RequestLifecycleService = Depends(get_request_service),
):
    """Deferred notify; a no-op once the request has left ``pending``."""
    request, push_result = await service.deferred_notify(request_id, get_base_url(http_request))

    data = {"status": request.status.value}
    if push_result is None:
        return api_response(data=data, message="Already notified")

    data["push"] = push_outcome(push_result)
    logger.info("Deferred notify sent", request_id=request_id, push_success=push_result.success)
    return api_response(data=data, message="Notification sent")


@router.put("/{request_id}/confirm")
async def confirm(
    request_id: str,
    body: Optional[ConfirmRequestBody] = Body(None),
    service: RequestLifecycleService = Depends(get_request_service),
):
    request = await service.confirm(request_id, body.location if body else None)
    logger.info("Move request confirmed", request_id=request_id, shared_location=request.owner_location is not None)
    return api_response(
        data={"status": request.status.value, "ownerLocation": request.owner_location},
        message="Confirmed"
    )


@router.put("/{request_id}/complete")
async def complete(request_id: str, service: RequestLifecycleService = Depends(get_request_service)):
    request = await service.complete(request_id)
    logger.info("Move request completed", request_id=request_id)
    return api_response(data={"status": request.status.value}, message="Completed")


@router.post("/{request_id}/request-phone")
async def request_phone(
    request_id: str,
    http_request: Request,
    service: RequestLifecycleService = Depends(get_request_service),
):
    """Ask the Owner to disclose their phone number."""
    request, push_result = await service.request_phone(request_id, get_base_url(http_request))

    data = {"phoneRequested": request.phone_requested, "phoneAuthorized": request.phone_authorized}
    if push_result is None:
        return api_response(data=data, message="Request already sent, waiting for the owner")

    data["push"] = push_outcome(push_result)
    return api_response(data=data, message="Request sent, waiting for the owner")


@router.put("/{request_id}/authorize-phone")
async def authorize_phone(
    request_id: str,
    body: AuthorizePhoneBody,
    service: RequestLifecycleService = Depends(get_request_service),
):
    request = await service.authorize_phone(request_id, body.authorize)
    return api_response(
        data={"phoneAuthorized": request.phone_authorized, "authorizedPhone": request.authorized_phone},
        message="Authorized" if body.authorize else "Denied"
    )


@router.get("/{request_id}/phone-status")
async def phone_status(request_id: str, service: RequestLifecycleService = Depends(get_request_service)):
    request, has_linked_account = await service.phone_status(request_id)
    return api_response(data={
        "hasLinkedAccount": has_linked_account,
        "phoneRequested": request.phone_requested,
        "phoneAuthorized": request.phone_authorized,
        "authorizedPhone": request.authorized_phone,
    })
