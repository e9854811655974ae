"""Notes router: owner-scoped CRUD with entity-tag based optimistic locking."""

from fastapi import APIRouter, Depends, Header, Path, Query, Response, Security, status

from typing import Annotated, Literal, Optional

from schema.notes import NoteRequest, NoteResponse, PagedNotesResponse, parse_if_match
from schema.users import Principal
from security.helpers import get_current_user
from services.notes import NoteService, get_note_service


router = APIRouter(
    prefix="/api/notes",
    tags=["Notes"],
)

NoteId = Annotated[int, Path(description="The unique identifier of the note", ge=1)]
IfMatch = Annotated[
    Optional[str],
    Header(alias="If-Match", description="Entity tag of the version this change is based on"),
]


def expected_version(if_match: Optional[str]) -> Optional[int]:
    check_requested, version = parse_if_match(if_match)
    return version if check_requested else None


@router.post("", response_model=NoteResponse, status_code=status.HTTP_201_CREATED)
async def create_note(
    payload: NoteRequest,
    response: Response,
    current_user: Annotated[Principal, Security(get_current_user)],
    note_service: Annotated[NoteService, Depends(get_note_service)],
):
    """Create a new note for the authenticated user. New notes start at version 0.

    ## Possible Errors
    - 401 Unauthorized: Missing, invalid or expired access token.
    - 422 Unprocessable Entity: Blank title or content.
    - 429 Too Many Requests: Note creation rate limit exceeded.

    ## Success response structure
    ```json
    {
        "id": 1,
        "title": "My First Note",
        "content": "This is the content of my note",
        "tags": ["work", "important"],
        "version": 0,
        "createdAt": "2024-01-15T10:30:00Z",
        "updatedAt": "2024-01-15T10:30:00Z",
        "deletedAt": null
    }
    ```
    """
    note = await note_service.create_note(current_user, payload)
    response.headers["ETag"] = note.etag
    return NoteResponse.from_record(note)


@router.get("", response_model=PagedNotesResponse)
async def get_notes(
    current_user: Annotated[Principal, Security(get_current_user)],
    note_service: Annotated[NoteService, Depends(get_note_service)],
    search: Annotated[Optional[str], Query(description="Search query for title/content")] = None,
    tag: Annotated[Optional[str], Query(description="Filter by tag")] = None,
    page: Annotated[int, Query(ge=0, description="Page number (0-indexed)")] = 0,
    size: Annotated[int, Query(ge=1, le=100, description="Page size")] = 10,
    sort_by: Annotated[
        Literal["updatedAt", "createdAt", "title"],
        Query(alias="sortBy", description="Sort field, always descending"),
    ] = "updatedAt",
):
    """Retrieve a paginated list of the user's active notes with optional search and tag filtering."""
    return await note_service.get_notes(current_user, search, tag, page, size, sort_by)


@router.get("/{note_id}", response_model=NoteResponse)
async def get_note(
    note_id: NoteId,
    response: Response,
    current_user: Annotated[Principal, Security(get_current_user)],
    note_service: Annotated[NoteService, Depends(get_note_service)],
):
    """Retrieve a specific note. The `ETag` header carries its version.

    ## Possible Errors
    - 404 Not Found: The note does not exist, is deleted, or belongs to someone else.
    """
    note = await note_service.get_note(current_user, note_id)
    response.headers["ETag"] = note.etag
    return NoteResponse.from_record(note)


@router.put("/{note_id}", response_model=NoteResponse)
async def update_note(
    note_id: NoteId,
    payload: NoteRequest,
    response: Response,
    current_user: Annotated[Principal, Security(get_current_user)],
    note_service: Annotated[NoteService, Depends(get_note_service)],
    if_match: IfMatch = None,
):
    """Update an existing note. Supports optimistic locking via the `If-Match` header.

    Without `If-Match` (or with `If-Match: *`) the last write wins.

    ## Possible Errors
    - 404 Not Found: The note does not exist, is deleted, or belongs to someone else.
    - 409 Conflict: The note was modified since the version in `If-Match`.
    - 429 Too Many Requests: Note update rate limit exceeded.
    """
    note = await note_service.update_note(current_user, note_id, payload, expected_version(if_match))
    response.headers["ETag"] = note.etag
    return NoteResponse.from_record(note)


@router.delete("/{note_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
async def delete_note(
    note_id: NoteId,
    current_user: Annotated[Principal, Security(get_current_user)],
    note_service: Annotated[NoteService, Depends(get_note_service)],
    if_match: IfMatch = None,
):
    """Soft delete a note (sets its deletion timestamp).

    ## Possible Errors
    - 404 Not Found: The note does not exist, is already deleted, or belongs to someone else.
    - 409 Conflict: The note was modified since the version in `If-Match`.
    """
    note = await note_service.delete_note(current_user, note_id, expected_version(if_match))
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers={"ETag": note.etag})


@router.post("/{note_id}/restore", response_model=NoteResponse)
async def restore_note(
    note_id: NoteId,
    response: Response,
    current_user: Annotated[Principal, Security(get_current_user)],
    note_service: Annotated[NoteService, Depends(get_note_service)],
    if_match: IfMatch = None,
):
    """Restore a soft-deleted note.

    ## Possible Errors
    - 404 Not Found: No deleted note with this id belongs to the user.
    - 409 Conflict: The note was modified since the version in `If-Match`.
    """
    note = await note_service.restore_note(current_user, note_id, expected_version(if_match))
    response.headers["ETag"] = note.etag
    return NoteResponse.from_record(note)
