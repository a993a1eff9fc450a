"""Account registration, login and the signed-in user's Owners."""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Header

from movecar.api.responses import api_response
from movecar.models.api_models import LoginRequest, RegisterRequest
from movecar.models.internal_models import User, UserSession
from movecar.services.auth_service import AuthService, extract_bearer_token, get_auth_service
from movecar.services.owner_service import OwnerService, get_owner_service

logger = structlog.get_logger()
router = APIRouter(prefix="/api/user", tags=["user"])


def session_payload(user: User, session: UserSession):
    return {
        "user": {"id": user.id, "phone": user.phone},
        "token": session.token,
        "expiresAt": session.expires_at,
    }


@router.post("/register")
async def register(request: RegisterRequest, auth: AuthService = Depends(get_auth_service)):
    user, session = await auth.register(request.phone, request.password)
    logger.info("User registered", user_id=user.id)
    return api_response(data=session_payload(user, session), message="Registered")


@router.post("/login")
async def login(request: LoginRequest, auth: AuthService = Depends(get_auth_service)):
    user, session = await auth.login(request.phone, request.password)
    logger.info("User logged in", user_id=user.id)
    return api_response(data=session_payload(user, session), message="Logged in")


@router.post("/logout")
async def logout(
    authorization: Optional[str] = Header(None),
    auth: AuthService = Depends(get_auth_service),
):
    await auth.logout(extract_bearer_token(authorization))
    return api_response(message="Logged out")


@router.get("/me")
async def me(
    authorization: Optional[str] = Header(None),
    auth: AuthService = Depends(get_auth_service),
):
    user = await auth.get_current_user(extract_bearer_token(authorization))
    return api_response(data={"id": user.id, "phone": user.phone, "createdAt": user.created_at})


@router.get("/owners")
async def list_owners(
    authorization: Optional[str] = Header(None),
    auth: AuthService = Depends(get_auth_service),
    owners: OwnerService = Depends(get_owner_service),
):
    """
    List the Owners linked to the signed-in account.

    Admin tokens are included so the account holder can manage each Owner.
    """
    session = await auth.require_session(extract_bearer_token(authorization))
    linked = await owners.list_user_owners(session.user_id)
    return api_response(data=[
        {
            "id": owner.id,
            "name": owner.name,
            "carPlate": owner.car_plate,
            "adminToken": owner.admin_token,
            "createdAt": owner.created_at,
        }
        for owner in linked
    ])
