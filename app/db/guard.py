"""Storage failure handling for service methods."""

import functools
import logging
from collections.abc import Callable
from typing import Any, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import AppError, StorageError

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def storage_operation(operation: str) -> Callable[[F], F]:
    """Run a service method as one unit against `self.db`.

    Typed application errors roll back whatever the method flushed and
    propagate unchanged. Raw SQLAlchemy errors (including statement timeouts
    and lost connections) roll back, are logged with traceback, and surface
    as a retryable StorageError.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
            try:
                return func(self, *args, **kwargs)
            except AppError:
                self.db.rollback()
                raise
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.exception("Storage failure during %s", operation)
                raise StorageError(operation=operation) from exc

        return wrapper  # type: ignore[return-value]

    return decorator
