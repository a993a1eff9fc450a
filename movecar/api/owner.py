"""
Owner registration and administration endpoints.

Write and full-read operations require the Owner's admin token as the
``token`` query parameter.
"""

from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, Header, Query

from movecar.api.responses import api_response, error_response
from movecar.models.api_models import CreateOwnerRequest, UpdateOwnerRequest
from movecar.models.internal_models import Owner
from movecar.services.auth_service import AuthService, extract_bearer_token, get_auth_service
from movecar.services.owner_service import OwnerService, get_owner_service

logger = structlog.get_logger()
router = APIRouter(prefix="/api/owner", tags=["owner"])


def owner_public(owner: Owner) -> Dict[str, Any]:
    """Fields anyone holding the share code may see."""
    return {
        "id": owner.id,
        "name": owner.name,
        "carPlate": owner.car_plate,
    }


def owner_full(owner: Owner) -> Dict[str, Any]:
    """Everything except the admin token."""
    channel = owner.push_channel.value
    return {
        **owner_public(owner),
        "userId": owner.user_id,
        "defaultReply": owner.default_reply,
        "pushChannel": channel,
        "pushConfig": {channel: owner.push.model_dump(by_alias=True, exclude={"channel"})},
        "createdAt": owner.created_at,
        "updatedAt": owner.updated_at,
    }


@router.post("")
async def create_owner(
    request: CreateOwnerRequest,
    authorization: Optional[str] = Header(None),
    owners: OwnerService = Depends(get_owner_service),
    auth: AuthService = Depends(get_auth_service),
):
    """
    Register an Owner.

    When the caller sends a valid bearer session the Owner is linked to that
    account. The admin token is returned here and never again.
    """
    session = await auth.validate(extract_bearer_token(authorization))
    owner = await owners.create_owner(request, user_id=session.user_id if session else None)

    logger.info(
        "Owner created",
        owner_id=owner.id,
        channel=owner.push_channel.value,
        linked=bool(owner.user_id)
    )

    return api_response(
        data={
            "id": owner.id,
            "adminToken": owner.admin_token,
            "adminUrl": f"/admin/{owner.id}?token={owner.admin_token}",
            "qrcodeUrl": f"/c/{owner.id}",
        },
        message="Owner created"
    )


@router.get("/{owner_id}")
async def get_owner(owner_id: str, owners: OwnerService = Depends(get_owner_service)):
    """Public Owner info for the requester page."""
    owner = await owners.get_owner(owner_id)
    return api_response(data=owner_public(owner))


@router.get("/{owner_id}/full")
async def get_owner_full(
    owner_id: str,
    token: Optional[str] = Query(None),
    owners: OwnerService = Depends(get_owner_service),
):
    owner = await owners.authorize(owner_id, token)
    return api_response(data=owner_full(owner))


@router.put("/{owner_id}")
async def update_owner(
    owner_id: str,
    request: UpdateOwnerRequest,
    token: Optional[str] = Query(None),
    owners: OwnerService = Depends(get_owner_service),
):
    await owners.update_owner(owner_id, token, request)
    logger.info("Owner updated", owner_id=owner_id, fields=sorted(request.model_fields_set))
    return api_response(message="Updated")


@router.delete("/{owner_id}")
async def delete_owner(
    owner_id: str,
    token: Optional[str] = Query(None),
    owners: OwnerService = Depends(get_owner_service),
):
    await owners.delete_owner(owner_id, token)
    logger.info("Owner deleted", owner_id=owner_id)
    return api_response(message="Deleted")


@router.post("/{owner_id}/test-push")
async def test_push(
    owner_id: str,
    token: Optional[str] = Query(None),
    owners: OwnerService = Depends(get_owner_service),
):
    """Send a test notification through the Owner's configured channel."""
    result = await owners.test_push(owner_id, token)
    if result.success:
        return api_response(message="Push sent")

    logger.warning("Test push failed", owner_id=owner_id, channel=result.channel.value)
    return error_response(
        error=result.error or "Push failed",
        status_code=502,
        code="DISPATCH_ERROR",
        data={"channel": result.channel.value}
    )
