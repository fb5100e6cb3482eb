from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

import bcrypt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt

from .errors import AuthError
from .repositories import UserRepository, get_user_repository
from .settings import get_settings
from .utils import utcnow

logger = logging.getLogger(__name__)

_security = HTTPBearer(auto_error=False)


# PUBLIC_INTERFACE
def hash_password(password: str) -> str:
    """Return a bcrypt hash of password using the configured cost factor."""
    salt = bcrypt.gensalt(rounds=get_settings().bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


# PUBLIC_INTERFACE
def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        logger.warning("Stored password hash could not be parsed")
        return False


# PUBLIC_INTERFACE
def create_access_token(user_id: int) -> str:
    """Issue a signed JWT whose subject is the user id."""
    settings = get_settings()
    expires = utcnow() + timedelta(minutes=settings.jwt_expires_minutes)
    return jwt.encode(
        {"sub": str(user_id), "exp": expires},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )


# PUBLIC_INTERFACE
def decode_access_token(token: str) -> int:
    """
    Verify token and return the user id it was issued for.

    Raises:
        AuthError: signature invalid, token expired, or subject missing.
    """
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except ExpiredSignatureError as e:
        raise AuthError("Token expired") from e
    except JWTError as e:
        raise AuthError("Invalid authentication token") from e

    subject = payload.get("sub")
    try:
        return int(subject)
    except (TypeError, ValueError) as e:
        raise AuthError("Invalid authentication token") from e


# PUBLIC_INTERFACE
def authenticate(token: Optional[str], users: UserRepository) -> int:
    """
    Resolve a bearer token to the id of an existing user.

    Raises:
        AuthError: token missing or invalid, or its user no longer exists.
    """
    if not token:
        raise AuthError("Authentication token required")
    user_id = decode_access_token(token)
    if users.get(user_id) is None:
        raise AuthError("User not found")
    return user_id


# PUBLIC_INTERFACE
def get_current_user_id(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(_security),
    users: UserRepository = Depends(get_user_repository),
) -> int:
    """
    FastAPI dependency returning the authenticated caller's user id.

    Usage:
        @router.get("/", ...)
        def handler(owner_id: int = Depends(get_current_user_id)): ...

    Raises AuthError (rendered as 401 with WWW-Authenticate: Bearer) when the
    Authorization header is missing, malformed, or carries a bad token.
    """
    return authenticate(creds.credentials if creds else None, users)
