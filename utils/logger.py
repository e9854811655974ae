"""Application-wide loggers and library instrumentation."""

import logfire
from logging import getLogger

ROOT_LOGGER_NAME = "NotesAPI"


def get_logger(name: str = ROOT_LOGGER_NAME):
    """Get a logger nested under the application's root logger."""
    if name == ROOT_LOGGER_NAME:
        return getLogger(name)
    return getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def instrument_libraries():
    """Instrument the database driver for better observability."""
    logfire.instrument_pymongo()
