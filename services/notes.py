"""Note use cases: creation, listing, lookup and guarded mutation."""

import math

import logfire

from fastapi import Request

from typing import Optional

from repositories.notes import NoteStore, SORT_FIELDS
from schema.notes import NoteRecord, NoteRequest, NoteResponse, PagedNotesResponse, normalize_tags
from schema.users import Principal
from services.concurrency import ConcurrencyGuard
from utils.exceptions import NoteNotFoundError


DEFAULT_SORT = "updatedAt"


class NoteService:
    """Service for handling a principal's notes.

    All writes after creation go through the `ConcurrencyGuard`.
    """

    def __init__(self, store: NoteStore, guard: ConcurrencyGuard):
        self.store = store
        self.guard = guard

    async def create_note(self, owner: Principal, payload: NoteRequest) -> NoteRecord:
        """Create a note at version 0 for `owner`."""
        now = self.guard.clock()
        record = NoteRecord(
            owner_id=owner.id,
            title=payload.title,
            content=payload.content,
            tags=normalize_tags(payload.tags),
            created_at=now,
            updated_at=now,
        )
        note = await self.store.insert(record)
        logfire.info(f"Created note {note.id} for user {owner.id}")
        return note

    async def get_notes(
        self,
        owner: Principal,
        search: Optional[str] = None,
        tag: Optional[str] = None,
        page: int = 0,
        size: int = 10,
        sort_by: Optional[str] = None,
    ) -> PagedNotesResponse:
        """Return one page of the owner's active notes, optionally filtered.

        Args:
            owner (Principal): The calling principal.
            search (Optional[str]): Case-insensitive substring of title or content.
            tag (Optional[str]): Tag the notes must carry.
            page (int): Zero-based page number.
            size (int): Page size.
            sort_by (Optional[str]): `updatedAt`, `createdAt` or `title`, always descending.

        Returns:
            PagedNotesResponse: The page and its pagination metadata.
        """
        search = search.strip() if search and search.strip() else None
        tag = tag.strip().lower() if tag and tag.strip() else None
        sort_field = SORT_FIELDS.get(sort_by or DEFAULT_SORT, SORT_FIELDS[DEFAULT_SORT])

        notes, total = await self.store.find_page(owner.id, search, tag, page * size, size, sort_field)
        total_pages = math.ceil(total / size) if size else 0

        return PagedNotesResponse(
            notes=[NoteResponse.from_record(note) for note in notes],
            page=page,
            size=size,
            total_elements=total,
            total_pages=total_pages,
            last=page + 1 >= total_pages,
        )

    async def get_note(self, owner: Principal, note_id: int) -> NoteRecord:
        note = await self.store.load(note_id, owner.id)
        if note is None:
            raise NoteNotFoundError(f"Note not found with id: {note_id}")
        return note

    async def update_note(
        self, owner: Principal, note_id: int, payload: NoteRequest, expected_version: Optional[int] = None
    ) -> NoteRecord:
        tags = normalize_tags(payload.tags)

        def apply(note: NoteRecord) -> NoteRecord:
            return note.model_copy(update={"title": payload.title, "content": payload.content, "tags": tags})

        note = await self.guard.update(note_id, owner.id, expected_version, apply)
        logfire.info(f"Updated note {note_id} for user {owner.id} to version {note.version}")
        return note

    async def delete_note(self, owner: Principal, note_id: int, expected_version: Optional[int] = None) -> NoteRecord:
        note = await self.guard.soft_delete(note_id, owner.id, expected_version)
        logfire.info(f"Soft deleted note {note_id} for user {owner.id}")
        return note

    async def restore_note(self, owner: Principal, note_id: int, expected_version: Optional[int] = None) -> NoteRecord:
        note = await self.guard.restore(note_id, owner.id, expected_version)
        logfire.info(f"Restored note {note_id} for user {owner.id}")
        return note


def get_note_service(request: Request) -> NoteService:
    """Dependency returning the application's `NoteService`."""
    return request.app.state.note_service
