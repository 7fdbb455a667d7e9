"""HTTP Basic Auth for the maintenance endpoints.

The only caller is the external cron that sweeps holds and unpaid bookings.
It authenticates as ADMIN_WEB_USERNAME / ADMIN_WEB_PASSWORD; with no password
configured the endpoints stay closed.
"""

from __future__ import annotations

import logging
import secrets

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from consulta.config import settings

logger = logging.getLogger(__name__)

basic_auth = HTTPBasic(realm="consulta-maintenance")


def _matches(given: str, expected: str) -> bool:
    return secrets.compare_digest(given.encode("utf-8"), expected.encode("utf-8"))


async def verify_admin(
    request: Request,
    credentials: HTTPBasicCredentials = Depends(basic_auth),  # noqa: B008
) -> str:
    """FastAPI dependency: the maintenance caller's username, or 401/503."""
    expected_password = settings.security.admin_web_password
    if not expected_password:
        logger.warning("Maintenance call refused: ADMIN_WEB_PASSWORD not configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Maintenance endpoints disabled",
        )

    # evaluate both so timing does not reveal which one was wrong
    user_ok = _matches(credentials.username, settings.security.admin_web_username)
    password_ok = _matches(credentials.password, expected_password)
    if not (user_ok and password_ok):
        client = request.client.host if request.client else "unknown"
        logger.warning("Maintenance auth failed for user %r from %s", credentials.username, client)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": 'Basic realm="consulta-maintenance"'},
        )

    return credentials.username
