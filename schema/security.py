"""Defines schema of requests and responses related to security"""

from pydantic import BaseModel, ConfigDict, Field, EmailStr, AliasChoices

from typing import Annotated, List

from models.helpers import TokenKind


class AccessClaims(BaseModel):
    """Payload carried by a signed bearer token.

    Access and refresh tokens share this shape and differ only in `exp` and `type`.
    """

    sub: str  # principal's stable identifier (email)
    id: int  # numeric principal id
    roles: List[str] = []
    iat: float  # issued-at, unix seconds (NumericDate, may be fractional)
    exp: float  # expires-at, unix seconds
    jti: str  # unique token id
    type: TokenKind = TokenKind.ACCESS


class LoginRequest(BaseModel):
    """Model for login request."""

    email: Annotated[EmailStr, Field(max_length=100)]
    password: Annotated[str, Field(min_length=1)]


class RefreshTokenRequest(BaseModel):
    """Model for refresh token request."""

    refresh_token: Annotated[str, Field(min_length=1, validation_alias=AliasChoices("refreshToken", "refresh_token"))]


class AuthResponse(BaseModel):
    """Model representing an authenticated account together with its token pair."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: Annotated[int, Field(alias="userId")]
    username: str
    email: EmailStr
    access_token: Annotated[str, Field(alias="accessToken")]
    refresh_token: Annotated[str, Field(alias="refreshToken")]
    token_type: Annotated[str, Field(default="Bearer", alias="tokenType")]
    expires_in: Annotated[int, Field(alias="expiresIn")]  # Access token expiry in seconds
