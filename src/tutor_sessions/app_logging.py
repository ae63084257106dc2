"""Logging configuration helpers.

Records carry the id of the realtime connection they were emitted for, or
``-`` outside a connection, so one client's channel can be followed
through the gateway, the mediator and the stores.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

_NO_CONNECTION = "-"

_connection_id: ContextVar[str] = ContextVar("connection_id", default=_NO_CONNECTION)


class ConnectionIdFilter(logging.Filter):
    """Stamps each record with the active realtime connection id."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.connection_id = _connection_id.get()
        return True


@contextmanager
def bind_connection(connection_id: str) -> Iterator[None]:
    """Attribute log records emitted inside the block to a connection."""
    token = _connection_id.set(connection_id)
    try:
        yield
    finally:
        _connection_id.reset(token)


def configure_logging() -> None:
    """Configure application logging with a single stream handler."""
    logger = logging.getLogger("tutor_sessions")
    logger.setLevel(logging.INFO)
    if logger.handlers:
        return
    handler = logging.StreamHandler()
    handler.addFilter(ConnectionIdFilter())
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s %(levelname)s [ws:%(connection_id)s] %(name)s: %(message)s"
        )
    )
    logger.addHandler(handler)
    logger.propagate = False
