"""Atomic sequence counters used to hand out numeric document ids."""
from pymongo import ReturnDocument

from beanie import Document


class Counter(Document):
    """One counter per sequence name, e.g. `users` or `notes`."""

    id: str
    value: int = 0

    class Settings:
        name = "counters"


async def next_sequence(name: str) -> int:
    """Atomically increment the `name` sequence and return the new value.

    Args:
        name (str): The sequence name.

    Returns:
        int: The next id in the sequence, starting at 1.
    """
    counter = await Counter.get_motor_collection().find_one_and_update(
        {"_id": name},
        {"$inc": {"value": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return counter["value"]
