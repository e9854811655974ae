"""Contains the schema definition for requests and records related to users
"""

from pydantic import BaseModel, Field, EmailStr, field_validator

from typing import Annotated, Optional

from models.helpers import UserRole


class SignupRequest(BaseModel):
    """Describes the structure of the signup request."""

    username: Annotated[str, Field(max_length=50, min_length=3)]
    email: Annotated[EmailStr, Field(max_length=100)]
    password: Annotated[str, Field(min_length=6)]

    @field_validator("username")
    @classmethod
    def strip_username(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 3:
            raise ValueError("Username must be between 3 and 50 characters")
        return v


class Principal(BaseModel):
    """Identity record as seen by the token service. Read-only during a request."""

    id: int
    username: str
    email: EmailStr
    password: str  # password-verification handle (hash)
    role: Optional[UserRole] = None

    @property
    def roles(self) -> list[str]:
        return [self.role.value] if self.role else []
