import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")

import asyncio

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import pytest

from fastapi.testclient import TestClient

from main import create_app
from models.helpers import UserRole
from repositories.notes import NoteStore, SaveOutcome, SaveResult
from repositories.users import IdentityStore
from schema.notes import NoteRecord
from schema.users import Principal
from security.passwords import hash_password
from security.tokens import TokenCodec, TokenService
from services.concurrency import ConcurrencyGuard
from services.rate_limit import DEFAULT_POLICIES, RateLimitRegistry
from utils.config import Settings
from utils.exceptions import AccountExistsError


SECRET_KEY = "test-secret-key"
PASSWORD = "correct-horse"
PASSWORD_HASH = hash_password(PASSWORD)


class InMemoryIdentityStore(IdentityStore):
    """Identity store backed by a dict; counts lookups so tests can assert on them."""

    def __init__(self):
        self.principals: Dict[str, Principal] = {}
        self.lookups = 0

    def add(self, principal: Principal) -> Principal:
        self.principals[principal.email] = principal
        return principal

    async def find_by_identifier(self, identifier: str) -> Optional[Principal]:
        self.lookups += 1
        return self.principals.get(identifier)

    async def exists_by_username(self, username: str) -> bool:
        return any(p.username == username for p in self.principals.values())

    async def exists_by_email(self, email: str) -> bool:
        return email in self.principals

    async def create(self, username: str, email: str, password_hash: str, role: UserRole = UserRole.USER) -> Principal:
        if await self.exists_by_username(username) or await self.exists_by_email(email):
            raise AccountExistsError()
        return self.add(
            Principal(id=len(self.principals) + 1, username=username, email=email, password=password_hash, role=role)
        )


class InMemoryNoteStore(NoteStore):
    """Note store with the same compare-and-increment contract as the MongoDB one.

    Loads and saves yield to the event loop first so concurrent coroutines interleave.
    """

    def __init__(self):
        self.notes: Dict[int, NoteRecord] = {}
        self._next_id = 1

    def _get(self, note_id: int, owner_id: int) -> Optional[NoteRecord]:
        note = self.notes.get(note_id)
        if note is None or note.owner_id != owner_id:
            return None
        return note

    async def insert(self, record: NoteRecord) -> NoteRecord:
        note = record.model_copy(update={"id": self._next_id}, deep=True)
        self._next_id += 1
        self.notes[note.id] = note
        return note.model_copy(deep=True)

    async def load(self, note_id: int, owner_id: int) -> Optional[NoteRecord]:
        await asyncio.sleep(0)
        note = self._get(note_id, owner_id)
        if note is None or note.is_deleted:
            return None
        return note.model_copy(deep=True)

    async def load_deleted(self, note_id: int, owner_id: int) -> Optional[NoteRecord]:
        await asyncio.sleep(0)
        note = self._get(note_id, owner_id)
        if note is None or not note.is_deleted:
            return None
        return note.model_copy(deep=True)

    async def save(self, record: NoteRecord, expected_version: int) -> SaveResult:
        await asyncio.sleep(0)
        stored = self._get(record.id, record.owner_id)
        if stored is None or stored.version != expected_version:
            return SaveResult(SaveOutcome.CONFLICT)

        updated = stored.model_copy(
            update={
                "title": record.title,
                "content": record.content,
                "tags": list(record.tags),
                "updated_at": record.updated_at,
                "deleted_at": record.deleted_at,
                "version": stored.version + 1,
            }
        )
        self.notes[updated.id] = updated
        return SaveResult(SaveOutcome.APPLIED, updated.model_copy(deep=True))

    async def find_page(
        self,
        owner_id: int,
        search: Optional[str],
        tag: Optional[str],
        offset: int,
        limit: int,
        sort_field: str,
    ) -> Tuple[List[NoteRecord], int]:
        notes = [n for n in self.notes.values() if n.owner_id == owner_id and not n.is_deleted]
        if search:
            needle = search.lower()
            notes = [n for n in notes if needle in n.title.lower() or needle in n.content.lower()]
        if tag:
            notes = [n for n in notes if tag in n.tags]

        notes.sort(key=lambda n: (getattr(n, sort_field), n.id), reverse=True)
        return [n.model_copy(deep=True) for n in notes[offset:offset + limit]], len(notes)


class FakeClock:
    """Monotonic clock in seconds that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUtcClock:
    """UTC wall clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_principal(id: int, username: str, email: str) -> Principal:
    return Principal(id=id, username=username, email=email, password=PASSWORD_HASH, role=UserRole.USER)


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def utc_clock():
    return FakeUtcClock()


@pytest.fixture
def policies():
    return DEFAULT_POLICIES


@pytest.fixture
def registry(policies, clock):
    return RateLimitRegistry(policies=policies, clock=clock)


@pytest.fixture
def token_service():
    return TokenService(TokenCodec(SECRET_KEY))


@pytest.fixture
def identity_store():
    return InMemoryIdentityStore()


@pytest.fixture
def note_store():
    return InMemoryNoteStore()


@pytest.fixture
def guard(note_store):
    return ConcurrencyGuard(note_store)


@pytest.fixture
def alice(identity_store):
    return identity_store.add(make_principal(1, "alice", "alice@example.com"))


@pytest.fixture
def bob(identity_store):
    return identity_store.add(make_principal(2, "bob", "bob@example.com"))


@pytest.fixture
def app(identity_store, note_store, token_service, registry, guard):
    return create_app(
        settings=Settings(secret_key=SECRET_KEY),
        identity_store=identity_store,
        note_store=note_store,
        token_service=token_service,
        registry=registry,
        guard=guard,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


@pytest.fixture
def alice_headers(alice, token_service):
    return bearer(token_service.issue(alice))


@pytest.fixture
def bob_headers(bob, token_service):
    return bearer(token_service.issue(bob))
