"""Response envelope helpers shared by the API routers."""

from typing import Any, Optional

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from movecar.config import settings


def api_response(data: Any = None, message: Optional[str] = None, status_code: int = 200) -> JSONResponse:
    """Build a success envelope; ``data`` and ``message`` are omitted when None."""
    content = {"success": True}
    if data is not None:
        content["data"] = data
    if message is not None:
        content["message"] = message
    return JSONResponse(status_code=status_code, content=jsonable_encoder(content))


def error_response(
    error: str,
    status_code: int,
    code: Optional[str] = None,
    data: Any = None
) -> JSONResponse:
    """Build a failure envelope."""
    content = {"success": False, "error": error}
    if code is not None:
        content["code"] = code
    if data is not None:
        content["data"] = data
    return JSONResponse(status_code=status_code, content=jsonable_encoder(content))


def get_base_url(request: Request) -> str:
    """Public base URL for deep links: APP_URL when set, else the request's own."""
    if settings.app_url:
        return settings.app_url.rstrip("/")
    return str(request.base_url).rstrip("/")
