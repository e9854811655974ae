"""Password hashing. Stored hashes are opaque handles that only `password_matches` reads."""

from passlib.context import CryptContext


password_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return password_context.hash(password)


def password_matches(password_hash: str, candidate: str) -> bool:
    """Check `candidate` against a stored hash.

    A stored value that is not a recognised hash never matches.
    """
    if not password_hash or password_context.identify(password_hash, required=False) is None:
        return False
    return password_context.verify(candidate, password_hash)
