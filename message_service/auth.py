"""
JWT authentication for the message API.

The access token is read from the auth cookie first and from an
`Authorization: Bearer` header second. Tokens are HS256-signed and must carry
`sub` (the user's UUID) and `exp`.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Request

from message_service.api_errors import Unauthorized
from message_service.config import settings

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"


@dataclass(frozen=True)
class UserIdentity:
    user_id: uuid.UUID


def decode_access_token(token: str, secret: str) -> UserIdentity:
    """
    Verify signature, expiry and claims of an access token.

    Raises:
        Unauthorized: the token is malformed, expired, badly signed or
            carries a subject that is not a UUID
    """
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=[JWT_ALGORITHM],
            options={"require": ["sub", "exp"]},
        )
    except jwt.PyJWTError as e:
        logger.info(f"Rejected access token: {e}")
        raise Unauthorized() from e

    try:
        user_id = uuid.UUID(str(claims["sub"]))
    except ValueError as e:
        logger.info("Rejected access token: subject is not a UUID")
        raise Unauthorized() from e

    return UserIdentity(user_id=user_id)


def extract_token(request: Request) -> Optional[str]:
    token = request.cookies.get(settings.AUTH_COOKIE_NAME)
    if token:
        return token

    authorization = request.headers.get("Authorization")
    if authorization and authorization.startswith("Bearer "):
        return authorization[len("Bearer "):].strip() or None
    return None


def get_current_user(request: Request) -> UserIdentity:
    """FastAPI dependency: authenticate the caller or fail with 401."""
    token = extract_token(request)
    if token is None:
        raise Unauthorized()
    identity = decode_access_token(token, settings.JWT_SECRET_KEY)
    request.state.user_id = str(identity.user_id)
    return identity
