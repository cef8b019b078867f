"""X-API-Key guard for operator-only views such as the store debug dump.

With no key configured the guard is open in development and closed
everywhere else.
"""

import logging
import secrets

from fastapi import HTTPException, Request, Security
from fastapi.security import APIKeyHeader

from app.api.limits import client_ip
from app.config import settings

logger = logging.getLogger(__name__)

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def key_matches(provided: str | None, expected: str) -> bool:
    return bool(provided) and secrets.compare_digest(provided.encode(), expected.encode())


async def require_api_key(request: Request, api_key: str | None = Security(api_key_header)) -> str:
    """Route dependency. Returns the key, or ``"dev-bypass"`` when development runs keyless."""
    expected = settings.api_key
    if not expected:
        if settings.app_env == "development":
            return "dev-bypass"
        logger.warning("Blocked %s: no API key configured (app_env=%s)", request.url.path, settings.app_env)
        raise HTTPException(status_code=403, detail="API key not configured on server")

    if not key_matches(api_key, expected):
        logger.warning("Rejected operator request to %s from %s", request.url.path, client_ip(request))
        raise HTTPException(status_code=401, detail="Invalid or missing API key")
    return api_key
