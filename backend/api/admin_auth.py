"""Shared-token authentication for operator endpoints."""

import hmac

from fastapi import HTTPException, Request

from backend.config.settings import get_settings


def require_admin(request: Request) -> None:
    """FastAPI dependency: validate the X-Admin-Token header.

    Operator endpoints are disabled entirely while ADMIN_API_TOKEN is unset.
    """
    expected = get_settings().admin_api_token
    if not expected:
        raise HTTPException(status_code=401, detail="Operator endpoints are disabled")

    token = request.headers.get("X-Admin-Token")
    if not token:
        raise HTTPException(status_code=401, detail="Admin token required (X-Admin-Token header)")

    if not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=401, detail="Invalid admin token")
