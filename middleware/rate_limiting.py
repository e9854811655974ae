"""
FastAPI admission middleware: per-identity, per-category token bucket rate limiting.

Every request is classified into a rate-limit category and a client key and is
admitted or rejected before authentication or any route handler runs.
Rejection only touches the in-memory bucket registry.
"""

import time

from threading import Lock
from typing import Callable, Iterable, Mapping, Optional, Tuple

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.routing import BaseRoute, Match

from security.tokens import TokenService
from services.rate_limit import RateLimitCategory, RateLimitKey, RateLimitRegistry
from utils.exceptions import InvalidTokenError, RateLimitExceededError, error_response
from utils.logger import get_logger


logger = get_logger(__name__)

AUTH_TAG = "Auth"
AUTH_PATH_PREFIX = "/api/auth"

# (verb, route name) -> category. Anything not listed falls back to API.
CATEGORY_POLICY: Mapping[Tuple[str, str], RateLimitCategory] = {
    ("POST", "create_note"): RateLimitCategory.NOTES_CREATE,
    ("PUT", "update_note"): RateLimitCategory.NOTES_UPDATE,
    ("POST", "restore_note"): RateLimitCategory.API,
}


def classify_request(method: str, action: Optional[str], tags: Iterable[str] = ()) -> RateLimitCategory:
    """
    Map a request's verb and logical action onto a rate-limit category.

    Args:
        method: HTTP verb
        action: Name of the matched route, if any
        tags: Tags of the matched route

    Returns:
        The category whose bucket the request consumes from
    """
    if AUTH_TAG in tags:
        return RateLimitCategory.AUTH

    if action is None:
        return RateLimitCategory.API

    return CATEGORY_POLICY.get((method.upper(), action), RateLimitCategory.API)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    FastAPI middleware for rate limiting using the token bucket algorithm.

    Authenticated callers are tracked by their token subject; anonymous callers
    by forwarded or direct client address. One network origin making both kinds
    of call therefore uses two separate buckets.
    """

    def __init__(
        self,
        app: FastAPI,
        registry: RateLimitRegistry,
        token_service: Optional[TokenService] = None,
        cleanup_interval: int = 3600,
        exclude_paths: Optional[list] = None,
    ):
        """
        Initialize the rate limiting middleware.

        Args:
            app: FastAPI application instance
            registry: Bucket registry shared by all requests
            token_service: Used to read the subject of bearer tokens (default: None)
            cleanup_interval: Interval in seconds between idle bucket sweeps (default: 3600)
            exclude_paths: List of paths to exclude from rate limiting (default: None)
        """
        super().__init__(app)

        self.registry = registry
        self.token_service = token_service
        self.cleanup_interval = cleanup_interval
        self.exclude_paths = set(exclude_paths) if exclude_paths else set()

        self.cleanup_lock = Lock()
        self.last_cleanup = time.monotonic()

    def _get_bearer_subject(self, request: Request) -> Optional[str]:
        """
        Read the subject of a correctly signed bearer token without any store lookup.
        """
        if self.token_service is None:
            return None

        scheme, _, token = request.headers.get("Authorization", "").partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            return None

        try:
            return self.token_service.extract_subject(token.strip())
        except InvalidTokenError:
            return None

    def _get_client_identifier(self, request: Request) -> str:
        """
        Extract client identifier from the request.

        Prefers the authenticated subject, then the X-Forwarded-For header
        (for proxied requests), then the direct client IP.

        Args:
            request: FastAPI Request object

        Returns:
            Client identifier string
        """
        subject = self._get_bearer_subject(request)
        if subject:
            return subject

        # X-Forwarded-For can contain multiple IPs, take the first one
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for and forwarded_for.split(",")[0].strip():
            return forwarded_for.split(",")[0].strip()

        return request.client.host if request.client else "unknown"

    def _resolve_route(self, request: Request) -> Optional[BaseRoute]:
        """
        Find the route the request will be dispatched to, if any.
        """
        partial = None
        for route in request.app.router.routes:
            match, _ = route.matches(request.scope)
            if match == Match.FULL:
                return route
            if match == Match.PARTIAL and partial is None:
                partial = route
        return partial

    def _get_category(self, request: Request) -> RateLimitCategory:
        route = self._resolve_route(request)

        if route is None:
            tags = (AUTH_TAG,) if request.url.path.startswith(AUTH_PATH_PREFIX) else ()
            return classify_request(request.method, None, tags)

        return classify_request(request.method, getattr(route, "name", None), getattr(route, "tags", None) or ())

    def _cleanup_old_buckets(self) -> None:
        """
        Periodically sweep idle buckets so memory stays bounded between accesses.
        """
        now = time.monotonic()
        if now - self.last_cleanup < self.cleanup_interval:
            return

        # Another request is already sweeping
        if not self.cleanup_lock.acquire(blocking=False):
            return
        try:
            self.registry.purge_idle()
            self.last_cleanup = now
        finally:
            self.cleanup_lock.release()

    def _should_exclude_path(self, path: str) -> bool:
        return path in self.exclude_paths

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """
        Admit or reject the request before it reaches authentication and routing.

        Args:
            request: FastAPI Request object
            call_next: Next middleware or route handler

        Returns:
            Response object, or a 429 response when the rate limit is exceeded
        """
        if self._should_exclude_path(request.url.path):
            return await call_next(request)

        self._cleanup_old_buckets()

        key = RateLimitKey(self._get_client_identifier(request), self._get_category(request))
        probe = self.registry.try_consume(key)

        if probe.consumed:
            logger.debug(
                f"Request allowed for {key} on {request.url.path} "
                f"({probe.remaining_tokens} tokens remaining)"
            )
            response = await call_next(request)
            response.headers["X-Rate-Limit-Limit"] = str(self.registry.policies[key.category].capacity)
            response.headers["X-Rate-Limit-Remaining"] = str(probe.remaining_tokens)
            return response

        logger.warning(f"Rate limit exceeded for client: {key.client_id} on endpoint: {request.url.path} ({key.category.value})")

        return error_response(RateLimitExceededError(probe.retry_after_seconds))
