# backend/agenda/api/dependencies/auth.py
"""
Staff authorization dependency.

Staff identity is issued elsewhere; this API only checks the shared bearer
token presented on admin routes.
"""

import hmac
import logging
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ...core.config import settings
from ...core.exceptions import ForbiddenException, UnauthorizedException

logger = logging.getLogger(__name__)

STAFF_PRINCIPAL = "staff"

_bearer = HTTPBearer(auto_error=False)


def require_staff(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> str:
    """
    Resolve the staff principal from ``Authorization: Bearer <token>``.

    Raises UnauthorizedException when no token is sent and
    ForbiddenException when the token does not match.
    """
    if credentials is None or not credentials.credentials:
        raise UnauthorizedException("Staff token required", code="STAFF_TOKEN_MISSING")
    expected = settings.staff_api_token.get_secret_value()
    if not hmac.compare_digest(credentials.credentials.encode(), expected.encode()):
        logger.warning("Rejected staff request with invalid token")
        raise ForbiddenException("Staff access required", code="STAFF_ONLY")
    return STAFF_PRINCIPAL
