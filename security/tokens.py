"""Stateless bearer tokens: signing, verification, expiry and refresh.

Tokens are HS256 JWTs signed with a process-wide secret. There is no
server-side session store and no revocation list; a token stops being
accepted only when it expires.
"""

import uuid

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from pydantic import ValidationError

from typing import Callable, Optional

from models.helpers import TokenKind
from schema.security import AccessClaims, AuthResponse
from schema.users import Principal
from utils.exceptions import ExpiredTokenError, InvalidTokenError


ALGORITHM = "HS256"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TokenCodec:
    """Encodes and decodes signed tokens carrying `AccessClaims`."""

    def __init__(self, secret_key: str, algorithm: str = ALGORITHM):
        if not secret_key:
            raise ValueError("A signing key is required")
        self._secret_key = secret_key
        self.algorithm = algorithm

    def encode(self, claims: AccessClaims) -> str:
        return jwt.encode(claims.model_dump(mode="json"), self._secret_key, algorithm=self.algorithm)

    def decode(self, token: str) -> AccessClaims:
        """Verify the signature of `token` and return its claims.

        Expiry is not checked here; `TokenService.validate` checks it after
        the subject.

        Raises:
            InvalidTokenError: If the token is malformed, unsigned, signed with
                another key, or carries claims of the wrong shape.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self.algorithm],
                options={"verify_exp": False, "verify_aud": False},
            )
            return AccessClaims(**payload)
        except (JWTError, ValidationError, TypeError, AttributeError):
            raise InvalidTokenError()


class TokenService:
    """Issues and validates access/refresh tokens for a principal.

    Args:
        codec (TokenCodec): Signs and verifies tokens.
        access_token_expires (timedelta): Lifetime of access tokens.
        refresh_token_expires (timedelta): Lifetime of refresh tokens.
        clock (Callable[[], datetime]): Source of the current UTC time.
    """

    def __init__(
        self,
        codec: TokenCodec,
        access_token_expires: timedelta = timedelta(minutes=15),
        refresh_token_expires: timedelta = timedelta(days=7),
        clock: Callable[[], datetime] = utc_now,
    ):
        self.codec = codec
        self.access_token_expires = access_token_expires
        self.refresh_token_expires = refresh_token_expires
        self.clock = clock

    def expires_in(self, kind: TokenKind) -> timedelta:
        if kind == TokenKind.REFRESH:
            return self.refresh_token_expires
        return self.access_token_expires

    def issue(self, principal: Principal, kind: TokenKind = TokenKind.ACCESS) -> str:
        """Create a signed token for `principal`.

        Args:
            principal (Principal): The account the token is issued for.
            kind (TokenKind): Whether this is an access or refresh token.

        Returns:
            str: The serialized token.
        """
        issued_at = self.clock().timestamp()
        claims = AccessClaims(
            sub=principal.email,
            id=principal.id,
            roles=principal.roles,
            iat=issued_at,
            exp=issued_at + self.expires_in(kind).total_seconds(),
            jti=uuid.uuid4().hex,
            type=kind,
        )
        return self.codec.encode(claims)

    def issue_pair(self, principal: Principal) -> AuthResponse:
        """Issue a fresh access/refresh token pair for `principal`."""
        return AuthResponse(
            user_id=principal.id,
            username=principal.username,
            email=principal.email,
            access_token=self.issue(principal, TokenKind.ACCESS),
            refresh_token=self.issue(principal, TokenKind.REFRESH),
            expires_in=int(self.access_token_expires.total_seconds()),
        )

    def extract_subject(self, token: str) -> str:
        """Return the subject of a correctly signed token, expired or not.

        Raises:
            InvalidTokenError: If the token fails signature verification.
        """
        return self.codec.decode(token).sub

    def validate(self, token: str, expected_subject: str, kind: Optional[TokenKind] = None) -> AccessClaims:
        """Validate `token` against the principal identified by `expected_subject`.

        Checks run in a fixed order: signature, subject, kind, expiry. A token
        that fails any earlier check never reveals whether it has expired.

        Raises:
            InvalidTokenError: Bad signature, subject mismatch or wrong kind.
            ExpiredTokenError: The token is genuine but `now >= exp`.

        Returns:
            AccessClaims: The verified claims.
        """
        claims = self.codec.decode(token)

        if claims.sub != expected_subject:
            raise InvalidTokenError()

        if kind is not None and claims.type != kind:
            raise InvalidTokenError()

        if self.clock().timestamp() >= claims.exp:
            raise ExpiredTokenError()

        return claims
