import pytz

from datetime import datetime

from pydantic import Field, EmailStr
from typing import Annotated, Optional

import pymongo
from beanie import Document, Indexed

from .helpers import UserRole


class User(Document):
    """Account record. Ids are numeric and assigned from the `users` counter.
    """
    id: int
    username: Annotated[str, Indexed(unique=True), Field(max_length=50, min_length=3)]
    email: Annotated[EmailStr, Indexed(index_type=pymongo.ASCENDING, unique=True), Field(max_length=100)]
    password: Annotated[str, Field()]  # bcrypt hash, never the plain password
    role: Annotated[Optional[UserRole], Field(default=UserRole.USER)]
    created_at: Annotated[datetime, Field(default_factory=lambda: datetime.now(pytz.utc))]

    class Settings:
        name = "users"
