"""Contains all security related FastAPI dependencies
"""
from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer

from typing import Annotated

from models.helpers import TokenKind
from repositories.users import IdentityStore
from schema.users import Principal
from security.tokens import TokenService
from utils.exceptions import InvalidCredentialsError, InvalidTokenError


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/auth/login", auto_error=False)


def get_token_service(request: Request) -> TokenService:
    """Dependency returning the application's `TokenService`."""
    return request.app.state.token_service


def get_identity_store(request: Request) -> IdentityStore:
    """Dependency returning the application's `IdentityStore`."""
    return request.app.state.identity_store


async def authenticate_user(identity_store: IdentityStore, email: str, password: str) -> Principal:
    """Authenticates a user by their email and password.

    Args:
        identity_store (IdentityStore): Where accounts are looked up.
        email (str): The email of the user.
        password (str): The password of the user.

    Raises:
        InvalidCredentialsError: Unknown email or wrong password; the two are not distinguished.

    Returns:
        Principal: The authenticated principal.
    """
    principal = await identity_store.find_by_identifier(email)

    if not principal:
        raise InvalidCredentialsError()
    if not identity_store.verify_password(principal, password):
        raise InvalidCredentialsError()
    return principal


async def resolve_principal(
    token: str, token_service: TokenService, identity_store: IdentityStore, kind: TokenKind
) -> Principal:
    """Resolve and fully validate the principal a token was issued for.

    Raises:
        InvalidTokenError: Bad signature, unknown subject, wrong subject or wrong kind.
        ExpiredTokenError: The token is genuine but expired.

    Returns:
        Principal: The principal the token belongs to.
    """
    subject = token_service.extract_subject(token)

    principal = await identity_store.find_by_identifier(subject)
    if principal is None:
        raise InvalidTokenError()

    token_service.validate(token, principal.email, kind=kind)
    return principal


async def get_current_user(
    token: Annotated[str | None, Depends(oauth2_scheme)],
    token_service: Annotated[TokenService, Depends(get_token_service)],
    identity_store: Annotated[IdentityStore, Depends(get_identity_store)],
) -> Principal:
    """Get the current user from the bearer access token.

    Raises:
        InvalidTokenError: Raised when the token is missing, malformed or forged.
        ExpiredTokenError: Raised when the token has expired.

    Returns:
        Principal: The authenticated user.
    """
    if not token:
        raise InvalidTokenError("Not authenticated")

    return await resolve_principal(token, token_service, identity_store, TokenKind.ACCESS)
