"""
MediaHost Backend — Bearer Token Verification
===============================================

What:  Resolves the caller's identity from `Authorization: Bearer <token>`.
How:   Tokens are signed, timestamped payloads ({"uid": ..., "username": ...})
       produced by itsdangerous' URLSafeTimedSerializer. Verification checks the
       signature and the maximum age (settings.auth_token_max_age).
Who:   Route dependencies. Account management (login, registration) lives
       elsewhere and only needs TokenVerifier.issue() to mint tokens.

Dependencies:
    get_current_user → Optional[CurrentUser]; None when no valid token.
                       Used where the service itself decides (merge).
    require_user     → CurrentUser or UnauthorizedError (401).
"""

import logging
import secrets
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header
from itsdangerous import BadData, URLSafeTimedSerializer

from app.config import settings
from app.exceptions import UnauthorizedError

logger = logging.getLogger(__name__)

TOKEN_SALT = "mediahost.auth"


@dataclass(frozen=True)
class CurrentUser:
    id: str
    username: str


class TokenVerifier:
    """Issues and verifies signed bearer tokens."""

    def __init__(self, secret_key: Optional[str] = None, max_age: Optional[int] = None):
        secret = secret_key or settings.auth_secret_key
        if not secret:
            secret = secrets.token_urlsafe(32)
            logger.warning(
                "AUTH_SECRET_KEY is not set; using a random signing key. "
                "Tokens will be invalid after a restart."
            )
        self.serializer = URLSafeTimedSerializer(secret, salt=TOKEN_SALT)
        self.max_age = max_age or settings.auth_token_max_age

    def issue(self, user_id: str, username: str) -> str:
        if not user_id:
            raise ValueError("user_id must be non-empty")
        return self.serializer.dumps({"uid": str(user_id), "username": username})

    def verify(self, token: str) -> Optional[CurrentUser]:
        """The user encoded in `token`, or None if it is forged, malformed or expired."""
        try:
            payload = self.serializer.loads(token, max_age=self.max_age)
        except BadData:
            return None
        if not isinstance(payload, dict) or not payload.get("uid"):
            return None
        return CurrentUser(id=str(payload["uid"]), username=payload.get("username") or "anonymous")


token_verifier = TokenVerifier()


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_current_user(
    authorization: Optional[str] = Header(default=None),
) -> Optional[CurrentUser]:
    token = _bearer_token(authorization)
    if token is None:
        return None
    user = token_verifier.verify(token)
    if user is None:
        logger.warning("Rejected invalid or expired bearer token")
    return user


async def require_user(
    user: Optional[CurrentUser] = Depends(get_current_user),
) -> CurrentUser:
    if user is None:
        raise UnauthorizedError()
    return user
