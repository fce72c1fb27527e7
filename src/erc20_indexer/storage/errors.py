"""Store error taxonomy."""

from __future__ import annotations

from sqlalchemy.exc import (
    DisconnectionError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.exc import TimeoutError as PoolTimeoutError


class StoreError(Exception):
    """Raised when the backing store fails.

    Attributes:
        transient: True for connection or operational failures that are
            worth retrying. Integrity and programming errors are fatal.
    """

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


def is_transient(error: BaseException) -> bool:
    if isinstance(error, IntegrityError):
        return False
    return isinstance(
        error,
        (OperationalError, InterfaceError, DisconnectionError, PoolTimeoutError, OSError),
    )


def wrap_store_error(operation: str, error: SQLAlchemyError | OSError) -> StoreError:
    """Build a StoreError for ``error`` raised while running ``operation``."""
    transient = is_transient(error)
    kind = "transient" if transient else "fatal"
    return StoreError(f"{operation} failed ({kind}): {error}", transient=transient)
