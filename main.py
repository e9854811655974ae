import logfire

from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from contextlib import asynccontextmanager

from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient
from beanie import init_beanie
from pymongo.errors import ConnectionFailure

from middleware.rate_limiting import RateLimitMiddleware

from models.counters import Counter
from models.notes import Note
from models.users import User

from repositories.notes import BeanieNoteStore, NoteStore
from repositories.users import BeanieIdentityStore, IdentityStore

from security.tokens import TokenCodec, TokenService
from services.concurrency import ConcurrencyGuard
from services.notes import NoteService
from services.rate_limit import RateLimitRegistry

from utils.config import Settings, get_settings
from utils.exceptions import NotesAPIError, error_response
from utils.logger import instrument_libraries

from routers import auth, notes


DOCS_PATHS = ["/docs", "/docs/oauth2-redirect", "/redoc", "/openapi.json"]


def build_lifespan(settings: Settings):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logfire.info("Starting Notes application...")

        instrument_libraries()
        client = AsyncIOMotorClient(settings.database_connection_string, tz_aware=True)  # * Connect to MongoDB

        await init_beanie(
            database=client[settings.database_name],
            document_models=[User, Note, Counter],
        )
        logfire.info("Database initialized successfully")

        yield

        logfire.info("Shutting down Notes application...")
        client.close()
        logfire.info("Application shutdown complete")

    return lifespan


async def handle_api_error(request: Request, exc: NotesAPIError) -> JSONResponse:
    return error_response(exc)


async def handle_connection_failure(request: Request, exc: ConnectionFailure) -> JSONResponse:
    logfire.error(f"Database connection failure on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=503,
        content={"detail": "Service unavailable. Please try again later."},
    )


def create_app(
    settings: Optional[Settings] = None,
    identity_store: Optional[IdentityStore] = None,
    note_store: Optional[NoteStore] = None,
    token_service: Optional[TokenService] = None,
    registry: Optional[RateLimitRegistry] = None,
    guard: Optional[ConcurrencyGuard] = None,
) -> FastAPI:
    """Build the Notes API.

    Collaborators that are not supplied are built from `settings`; when the
    stores are not supplied the app connects to MongoDB on startup.
    """
    # An empty registry is falsy
    if settings is None:
        settings = get_settings()
    uses_database = identity_store is None or note_store is None

    if identity_store is None:
        identity_store = BeanieIdentityStore()
    if note_store is None:
        note_store = BeanieNoteStore()
    if token_service is None:
        token_service = TokenService(
            TokenCodec(settings.secret_key),
            access_token_expires=timedelta(minutes=settings.access_token_expire_minutes),
            refresh_token_expires=timedelta(days=settings.refresh_token_expire_days),
        )
    if registry is None:
        registry = RateLimitRegistry(
            idle_timeout=settings.rate_limit_idle_minutes * 60,
            max_entries=settings.rate_limit_max_entries,
        )
    if guard is None:
        guard = ConcurrencyGuard(note_store)

    app = FastAPI(
        title="Notes API",
        description="A multi-tenant notes service with per-user notes, search, soft delete and optimistic locking.",
        lifespan=build_lifespan(settings) if uses_database else None,
    )

    app.state.settings = settings
    app.state.identity_store = identity_store
    app.state.token_service = token_service
    app.state.registry = registry
    app.state.note_service = NoteService(note_store, guard)

    app.add_exception_handler(NotesAPIError, handle_api_error)
    app.add_exception_handler(ConnectionFailure, handle_connection_failure)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["ETag", "Retry-After", "X-Rate-Limit-Remaining", "X-Rate-Limit-Retry-After-Seconds"],
    )
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=["127.0.0.1"])
    app.add_middleware(GZipMiddleware, minimum_size=500)
    # Added last so it runs first and rejects before any other work
    app.add_middleware(
        RateLimitMiddleware,
        registry=registry,
        token_service=token_service,
        exclude_paths=DOCS_PATHS,
    )

    app.include_router(auth.router)
    app.include_router(notes.router)

    return app


# Configure logfire BEFORE creating FastAPI app
logfire.configure(token=get_settings().logfire_write_token, send_to_logfire="if-token-present")

app = create_app()
