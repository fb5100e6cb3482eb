from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status

from ..auth import create_access_token, get_current_user_id, hash_password, verify_password
from ..errors import AuthError, NotFoundError
from ..repositories import UserRepository, get_user_repository
from ..schemas import AuthResponse, UserLogin, UserOut, UserRegister

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/users",
    tags=["users"],
)


# PUBLIC_INTERFACE
@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register",
    description="Create an account and return a bearer token for it.",
    responses={
        201: {"description": "User created"},
        409: {"description": "Email already exists"},
    },
)
def register(payload: UserRegister, users: UserRepository = Depends(get_user_repository)) -> AuthResponse:
    user = users.create(payload.email, hash_password(payload.password))
    logger.info("Registered user %s", user["id"])
    return AuthResponse(token=create_access_token(user["id"]), user=UserOut(**user))


# PUBLIC_INTERFACE
@router.post(
    "/login",
    response_model=AuthResponse,
    summary="Login",
    description="Exchange email and password for a bearer token.",
    responses={401: {"description": "Invalid credentials"}},
)
def login(payload: UserLogin, users: UserRepository = Depends(get_user_repository)) -> AuthResponse:
    user = users.get_by_email(payload.email)
    # Same message for unknown email and wrong password
    if user is None or not verify_password(payload.password, user["password_hash"]):
        raise AuthError("Invalid credentials")
    return AuthResponse(token=create_access_token(user["id"]), user=UserOut(**user))


# PUBLIC_INTERFACE
@router.get(
    "/me",
    response_model=UserOut,
    summary="Current User",
    description="Return the profile of the authenticated user.",
    responses={401: {"description": "Missing or invalid bearer token"}},
)
def get_profile(
    user_id: int = Depends(get_current_user_id),
    users: UserRepository = Depends(get_user_repository),
) -> UserOut:
    user = users.get(user_id)
    if user is None:
        raise NotFoundError("User not found")
    return UserOut(**user)
