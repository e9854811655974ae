"""Note store: owner-scoped persistence of versioned notes.

`save` is an atomic compare-and-increment: it applies only if the stored
version still equals the caller's expected version, and it reports a lost
race as a `SaveOutcome.CONFLICT` value rather than raising.
"""

import re

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

from beanie import UpdateResponse
from beanie.operators import Inc, Or, RegEx, Set

from typing import List, Optional, Tuple

from models.counters import next_sequence
from models.notes import Note
from schema.notes import NoteRecord


NOTE_SEQUENCE = "notes"

# Public sort keys -> stored field names
SORT_FIELDS = {
    "updatedAt": "updated_at",
    "createdAt": "created_at",
    "title": "title",
}


class SaveOutcome(str, Enum):
    APPLIED = "applied"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class SaveResult:
    outcome: SaveOutcome
    record: Optional[NoteRecord] = None

    @property
    def applied(self) -> bool:
        return self.outcome == SaveOutcome.APPLIED


class NoteStore(ABC):
    """Storage contract for notes. Every lookup is scoped to the owner."""

    @abstractmethod
    async def insert(self, record: NoteRecord) -> NoteRecord:
        """Persist a new note, assigning its id."""

    @abstractmethod
    async def load(self, note_id: int, owner_id: int) -> Optional[NoteRecord]:
        """Fetch an active (not soft-deleted) note."""

    @abstractmethod
    async def load_deleted(self, note_id: int, owner_id: int) -> Optional[NoteRecord]:
        """Fetch a soft-deleted note."""

    @abstractmethod
    async def save(self, record: NoteRecord, expected_version: int) -> SaveResult:
        """Write the payload and deletion timestamp of `record` and bump the version by one,
        provided the stored version is still `expected_version`.
        """

    @abstractmethod
    async def find_page(
        self,
        owner_id: int,
        search: Optional[str],
        tag: Optional[str],
        offset: int,
        limit: int,
        sort_field: str,
    ) -> Tuple[List[NoteRecord], int]:
        """Return one page of active notes (newest first by `sort_field`) and the total count."""


def _to_record(note: Note) -> NoteRecord:
    return NoteRecord(**note.model_dump())


class BeanieNoteStore(NoteStore):
    """MongoDB-backed note store."""

    async def insert(self, record: NoteRecord) -> NoteRecord:
        note = Note(id=await next_sequence(NOTE_SEQUENCE), **record.model_dump(exclude={"id"}))
        await note.insert()
        return _to_record(note)

    async def load(self, note_id: int, owner_id: int) -> Optional[NoteRecord]:
        note = await Note.find_one(Note.id == note_id, Note.owner_id == owner_id, Note.deleted_at == None)
        return _to_record(note) if note else None

    async def load_deleted(self, note_id: int, owner_id: int) -> Optional[NoteRecord]:
        note = await Note.find_one(Note.id == note_id, Note.owner_id == owner_id, Note.deleted_at != None)
        return _to_record(note) if note else None

    async def save(self, record: NoteRecord, expected_version: int) -> SaveResult:
        updated = await Note.find_one(
            Note.id == record.id,
            Note.owner_id == record.owner_id,
            Note.version == expected_version,
        ).update(
            Set(
                {
                    Note.title: record.title,
                    Note.content: record.content,
                    Note.tags: record.tags,
                    Note.updated_at: record.updated_at,
                    Note.deleted_at: record.deleted_at,
                }
            ),
            Inc({Note.version: 1}),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )

        if updated is None:
            return SaveResult(SaveOutcome.CONFLICT)
        return SaveResult(SaveOutcome.APPLIED, _to_record(updated))

    async def find_page(
        self,
        owner_id: int,
        search: Optional[str],
        tag: Optional[str],
        offset: int,
        limit: int,
        sort_field: str,
    ) -> Tuple[List[NoteRecord], int]:
        filters = [Note.owner_id == owner_id, Note.deleted_at == None]

        if search:
            pattern = re.escape(search)
            filters.append(Or(RegEx(Note.title, pattern, "i"), RegEx(Note.content, pattern, "i")))

        if tag:
            filters.append(Note.tags == tag)  # matches any element of the array

        query = Note.find(*filters)
        total = await query.count()
        notes = await query.sort(f"-{sort_field}", "-_id").skip(offset).limit(limit).to_list()

        return [_to_record(note) for note in notes], total
