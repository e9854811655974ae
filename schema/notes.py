"""Contains the schema definition for requests, responses and records related to notes
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from typing import Annotated, List, Optional


def normalize_tags(tags: Optional[List[str]]) -> List[str]:
    """Trim and lower-case tags, dropping blanks and duplicates while keeping order."""
    normalized = []
    for tag in tags or []:
        tag = tag.strip().lower()
        if tag and tag not in normalized:
            normalized.append(tag)
    return normalized


class NoteRequest(BaseModel):
    """Request to create or update a note."""

    title: Annotated[str, Field(min_length=1, max_length=255)]
    content: Annotated[str, Field(min_length=1)]
    tags: Annotated[List[str], Field(default=[])]

    @field_validator("title", "content")
    @classmethod
    def must_not_be_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("tags", mode="before")
    @classmethod
    def default_tags(cls, v):
        return [] if v is None else v


class NoteRecord(BaseModel):
    """A versioned, owned note as exchanged with the note store."""

    id: Optional[int] = None
    owner_id: int
    title: str
    content: str
    tags: List[str] = []
    version: int = 0
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def etag(self) -> str:
        return format_etag(self.version)


class NoteResponse(BaseModel):
    """Note response."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    title: str
    content: str
    tags: List[str]
    version: int
    created_at: Annotated[datetime, Field(alias="createdAt")]
    updated_at: Annotated[datetime, Field(alias="updatedAt")]
    deleted_at: Annotated[Optional[datetime], Field(default=None, alias="deletedAt")]

    @classmethod
    def from_record(cls, record: NoteRecord) -> "NoteResponse":
        return cls(**record.model_dump(exclude={"owner_id"}))


class PagedNotesResponse(BaseModel):
    """Paginated response for notes."""

    model_config = ConfigDict(populate_by_name=True)

    notes: List[NoteResponse]
    page: int
    size: int
    total_elements: Annotated[int, Field(alias="totalElements")]
    total_pages: Annotated[int, Field(alias="totalPages")]
    last: bool


def format_etag(version: int) -> str:
    """Render a version as a strong entity tag, e.g. `"3"`."""
    return f'"{version}"'


def parse_if_match(value: Optional[str]) -> tuple[bool, Optional[int]]:
    """Parse an `If-Match` header into (check_requested, expected_version).

    A missing header or `*` requests no check. A token that is not a version
    number can never match, so it is reported as expected version `-1`.
    """
    if value is None or not value.strip() or value.strip() == "*":
        return False, None

    token = value.strip()
    if token.startswith("W/"):
        token = token[2:]
    token = token.strip('"').strip()

    try:
        return True, int(token)
    except ValueError:
        return True, -1
