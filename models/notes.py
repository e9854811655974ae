import pytz

from datetime import datetime

from pydantic import Field

from typing import Annotated, List, Optional

import pymongo
from beanie import Document


class Note(Document):
    """Persisted note. `version` is only ever written through the note store's
    compare-and-increment update.
    """
    id: int
    owner_id: Annotated[int, Field()]
    title: Annotated[str, Field(max_length=255)]
    content: Annotated[str, Field()]
    tags: Annotated[List[str], Field(default=[])]
    version: Annotated[int, Field(default=0, ge=0)]
    created_at: Annotated[datetime, Field(default_factory=lambda: datetime.now(pytz.utc))]
    updated_at: Annotated[datetime, Field(default_factory=lambda: datetime.now(pytz.utc))]
    deleted_at: Annotated[Optional[datetime], Field(default=None)]  # None means active

    class Settings:
        name = "notes"
        indexes = [
            [("owner_id", pymongo.ASCENDING), ("deleted_at", pymongo.ASCENDING), ("updated_at", pymongo.DESCENDING)],
        ]
