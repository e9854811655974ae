"""Error taxonomy surfaced to API clients.

Every class maps to one stable HTTP status and one stable `code`, so clients
can write retry logic against the code rather than against message text.
"""

from datetime import datetime, timezone

from starlette.responses import JSONResponse

from typing import Dict, Optional


class NotesAPIError(Exception):
    """Base class for all recoverable, client-facing errors."""

    status_code: int = 400
    code: str = "bad_request"
    message: str = "Bad request"

    def __init__(self, message: Optional[str] = None, headers: Optional[Dict[str, str]] = None):
        self.message = message or self.message
        self.headers = headers
        super().__init__(self.message)

    def to_content(self) -> dict:
        """Body fields specific to this error, merged into the JSON response."""
        return {}


class InvalidTokenError(NotesAPIError):
    """Malformed, unsigned, forged, wrong-subject or wrong-kind token."""

    status_code = 401
    code = "invalid_token"
    message = "Invalid token provided"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message, headers={"WWW-Authenticate": "Bearer"})


class ExpiredTokenError(NotesAPIError):
    """Structurally valid token that is past its expiry."""

    status_code = 401
    code = "token_expired"
    message = "Auth token has expired"

    def __init__(self, message: Optional[str] = None):
        super().__init__(
            message,
            headers={"WWW-Authenticate": 'Bearer error="invalid_token", error_description="token expired"'},
        )


class InvalidCredentialsError(NotesAPIError):
    status_code = 401
    code = "invalid_credentials"
    message = "Invalid username or password"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message, headers={"WWW-Authenticate": "Bearer"})


class RateLimitExceededError(NotesAPIError):
    """Admission denied for the caller's rate-limit category."""

    status_code = 429
    code = "rate_limited"

    def __init__(self, retry_after: int):
        self.retry_after = retry_after
        super().__init__(
            f"Rate limit exceeded. Try again in {retry_after} seconds",
            headers={
                "Retry-After": str(retry_after),
                "X-Rate-Limit-Retry-After-Seconds": str(retry_after),
            },
        )

    def to_content(self) -> dict:
        return {"retryAfter": self.retry_after}


class VersionConflictError(NotesAPIError):
    status_code = 409
    code = "version_conflict"
    message = "The resource was modified by another user. Please refresh and try again."


class NoteNotFoundError(NotesAPIError):
    status_code = 404
    code = "not_found"
    message = "Note not found"


class AccountExistsError(NotesAPIError):
    status_code = 409
    code = "account_exists"
    message = "An account with these details already exists"


def error_response(exc: NotesAPIError) -> JSONResponse:
    """Render `exc` as the JSON body every client-facing error shares."""
    content = {
        "detail": exc.message,
        "code": exc.code,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    content.update(exc.to_content())
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)
