"""Identity store: resolves principals by their stable identifier (email)."""

from abc import ABC, abstractmethod

from pymongo.errors import DuplicateKeyError

from typing import Optional

from models.counters import next_sequence
from models.helpers import UserRole
from models.users import User
from schema.users import Principal
from security.passwords import password_matches
from utils.exceptions import AccountExistsError


USER_SEQUENCE = "users"


class IdentityStore(ABC):
    """Read access to accounts for authentication, plus account creation."""

    @abstractmethod
    async def find_by_identifier(self, identifier: str) -> Optional[Principal]:
        """Fetch a principal by email, or None."""

    @abstractmethod
    async def exists_by_username(self, username: str) -> bool: ...

    @abstractmethod
    async def exists_by_email(self, email: str) -> bool: ...

    @abstractmethod
    async def create(self, username: str, email: str, password_hash: str, role: UserRole = UserRole.USER) -> Principal:
        """Persist a new account.

        Raises:
            AccountExistsError: If the username or email is already taken.
        """

    def verify_password(self, principal: Principal, candidate: str) -> bool:
        return password_matches(principal.password, candidate)


def _to_principal(user: User) -> Principal:
    return Principal(
        id=user.id,
        username=user.username,
        email=user.email,
        password=user.password,
        role=user.role,
    )


class BeanieIdentityStore(IdentityStore):
    """MongoDB-backed identity store."""

    async def find_by_identifier(self, identifier: str) -> Optional[Principal]:
        user = await User.find_one(User.email == identifier)
        return _to_principal(user) if user else None

    async def exists_by_username(self, username: str) -> bool:
        return await User.find_one(User.username == username) is not None

    async def exists_by_email(self, email: str) -> bool:
        return await User.find_one(User.email == email) is not None

    async def create(self, username: str, email: str, password_hash: str, role: UserRole = UserRole.USER) -> Principal:
        user = User(
            id=await next_sequence(USER_SEQUENCE),
            username=username,
            email=email,
            password=password_hash,
            role=role,
        )
        try:
            await user.insert()
        except DuplicateKeyError:
            # Lost a signup race against the unique indexes
            raise AccountExistsError()
        return _to_principal(user)
