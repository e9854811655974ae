"""Contains all models commonly used across different modules."""
from enum import Enum


class UserRole(str, Enum):
    """Enumeration of account roles.

    Roles are carried in token claims but not enforced by the API.
    """
    USER = "USER"
    ADMIN = "ADMIN"


class TokenKind(str, Enum):
    """Intended use of a signed token."""

    ACCESS = "access"
    REFRESH = "refresh"
