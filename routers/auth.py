"""
Auth router for account creation, login and token refresh.
"""

import logfire

from fastapi import APIRouter, Depends, status

from typing import Annotated

from repositories.users import IdentityStore
from schema.security import AuthResponse, LoginRequest, RefreshTokenRequest
from schema.users import SignupRequest
from models.helpers import TokenKind
from security.helpers import authenticate_user, get_identity_store, get_token_service, resolve_principal
from security.passwords import hash_password
from security.tokens import TokenService
from utils.exceptions import AccountExistsError


router = APIRouter(
    prefix="/api/auth",
    tags=["Auth"],
)


@router.post("/signup", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def signup(
    payload: SignupRequest,
    identity_store: Annotated[IdentityStore, Depends(get_identity_store)],
    token_service: Annotated[TokenService, Depends(get_token_service)],
):
    """Create a new account and return an access/refresh token pair.

    ## Possible Errors
    - 409 Conflict: If the username or email is already taken.
    - 422 Unprocessable Entity: If a field fails validation.
    - 429 Too Many Requests: If the auth rate limit is exceeded.

    ## Error response structure
    ```json
    {
        "detail": "Username already exists",
        "code": "account_exists",
        "timestamp": "2024-01-15T10:30:00+00:00"
    }
    ```
    """
    email = payload.email.lower()

    with logfire.span(f"Creating new user: {payload.username}"):
        if await identity_store.exists_by_username(payload.username):
            logfire.warning(f"Attempt to create duplicate username: {payload.username}")
            raise AccountExistsError("Username already exists")

        if await identity_store.exists_by_email(email):
            logfire.warning(f"Attempt to create duplicate email: {email}")
            raise AccountExistsError("Email already exists")

        principal = await identity_store.create(payload.username, email, hash_password(payload.password))
        logfire.info(f"Saved new user {principal.id} to database")

        return token_service.issue_pair(principal)


@router.post("/login", response_model=AuthResponse)
async def login(
    payload: LoginRequest,
    identity_store: Annotated[IdentityStore, Depends(get_identity_store)],
    token_service: Annotated[TokenService, Depends(get_token_service)],
):
    """Login endpoint that returns both access and refresh tokens.

    ## Possible Errors
    - 401 Unauthorized: If the email or password is wrong (`invalid_credentials`).
    - 429 Too Many Requests: If the auth rate limit is exceeded.
    """
    principal = await authenticate_user(identity_store, payload.email.lower(), payload.password)

    logfire.info(f"User {principal.id} logged in successfully")

    return token_service.issue_pair(principal)


@router.post("/refresh", response_model=AuthResponse)
async def refresh(
    payload: RefreshTokenRequest,
    identity_store: Annotated[IdentityStore, Depends(get_identity_store)],
    token_service: Annotated[TokenService, Depends(get_token_service)],
):
    """Exchange a valid refresh token for a new token pair.

    Refresh tokens are not revoked on use; one stays valid until it expires.

    ## Possible Errors
    - 401 Unauthorized: `invalid_token` if the token is forged, malformed, not a
      refresh token or belongs to an unknown account; `token_expired` if it expired.
    - 429 Too Many Requests: If the auth rate limit is exceeded.
    """
    principal = await resolve_principal(payload.refresh_token, token_service, identity_store, TokenKind.REFRESH)

    logfire.info(f"Tokens refreshed for user {principal.id}")

    return token_service.issue_pair(principal)
