"""Optimistic concurrency control for owner-scoped, versioned notes.

Each mutation runs load -> version check -> apply -> conditional save. The
window between load and save is not locked: the store's compare-and-increment
detects a concurrent writer, and the guard reports it exactly like a failed
pre-check, as a single `VersionConflictError`.
"""

import logfire
import pytz

from datetime import datetime

from typing import Callable, Optional

from repositories.notes import NoteStore
from schema.notes import NoteRecord
from utils.exceptions import NoteNotFoundError, VersionConflictError


Mutation = Callable[[NoteRecord], NoteRecord]


def utc_now() -> datetime:
    return datetime.now(pytz.utc)


class ConcurrencyGuard:
    """Guards every write of a note's payload, version and deletion timestamp.

    Args:
        store (NoteStore): Note persistence.
        clock (Callable[[], datetime]): Source of modification timestamps.
    """

    def __init__(self, store: NoteStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.clock = clock

    async def guarded_update(
        self,
        note_id: int,
        owner_id: int,
        expected_version: Optional[int],
        mutate: Mutation,
        deleted: bool = False,
    ) -> NoteRecord:
        """Apply `mutate` to a note if it is still at `expected_version`.

        Args:
            note_id (int): Id of the note.
            owner_id (int): Id of the calling principal; notes of other owners are not found.
            expected_version (Optional[int]): Version the caller based its edit on.
                None requests no check (last write wins).
            mutate (Mutation): Produces the new field values from a copy of the current note.
            deleted (bool): Target the soft-deleted set instead of active notes.

        Raises:
            NoteNotFoundError: If no matching note exists in the targeted set.
            VersionConflictError: If the version check fails, before or during the write.

        Returns:
            NoteRecord: The note as persisted, with its version incremented by one.
        """
        if deleted:
            current = await self.store.load_deleted(note_id, owner_id)
        else:
            current = await self.store.load(note_id, owner_id)

        if current is None:
            raise NoteNotFoundError(f"{'Deleted note' if deleted else 'Note'} not found with id: {note_id}")

        if expected_version is not None and expected_version != current.version:
            logfire.warning(
                f"Version conflict on note {note_id}: expected {expected_version}, stored {current.version}"
            )
            raise VersionConflictError()

        changed = mutate(current.model_copy(deep=True))
        changed = changed.model_copy(
            update={
                "id": current.id,
                "owner_id": current.owner_id,
                "created_at": current.created_at,
                "version": current.version + 1,
                "updated_at": self.clock(),
            }
        )

        result = await self.store.save(changed, expected_version=current.version)

        if not result.applied:
            logfire.warning(f"Concurrent write detected on note {note_id} at version {current.version}")
            raise VersionConflictError()

        return result.record

    async def update(self, note_id: int, owner_id: int, expected_version: Optional[int], mutate: Mutation) -> NoteRecord:
        return await self.guarded_update(note_id, owner_id, expected_version, mutate)

    async def soft_delete(self, note_id: int, owner_id: int, expected_version: Optional[int] = None) -> NoteRecord:
        """Mark an active note as deleted."""
        deleted_at = self.clock()
        return await self.guarded_update(
            note_id,
            owner_id,
            expected_version,
            lambda note: note.model_copy(update={"deleted_at": deleted_at}),
        )

    async def restore(self, note_id: int, owner_id: int, expected_version: Optional[int] = None) -> NoteRecord:
        """Clear the deletion mark of a soft-deleted note. Active notes are not found."""
        return await self.guarded_update(
            note_id,
            owner_id,
            expected_version,
            lambda note: note.model_copy(update={"deleted_at": None}),
            deleted=True,
        )
