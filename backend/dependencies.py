"""Shared FastAPI dependencies — admin API key guard."""

import hmac

from fastapi import Request

from backend.common.exceptions import ForbiddenException
from backend.config import settings

ACTOR_HEADER = "X-Actor"


async def require_api_key(request: Request) -> str:
    """Check the shared admin key; return the caller label recorded in the audit trail."""
    supplied = request.headers.get(settings.API_KEY_HEADER)
    if not supplied or not hmac.compare_digest(
        supplied.encode("utf-8"), settings.ADMIN_API_KEY.encode("utf-8"),
    ):
        raise ForbiddenException("Missing or invalid API key.")
    return request.headers.get(ACTOR_HEADER, "admin-api")[:100]
