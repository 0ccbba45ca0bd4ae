"""
Shared helpers for transactional billing operations.

- run_with_timeout: per-call timeout; on expiry the running transaction is
  cancelled (and rolled back by ``get_db_session``)
- run_numbered: retry an operation that allocates a document number after a
  numbering collision, then give up with ConflictError
- storage_errors: translate SQLAlchemy failures into PersistenceError
- parse_model: validate input with Pydantic, raising the engine's ValidationError
"""
import asyncio
import logging
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from billing_engine.config import settings
from billing_engine.core.exceptions import (
    ConflictError,
    OperationTimeoutError,
    PersistenceError,
    ValidationError,
)
from billing_engine.services.document_sequence_service import is_number_collision


logger = logging.getLogger(__name__)

M = TypeVar('M', bound=BaseModel)
T = TypeVar('T')


def parse_model(model_class: Type[M], data: Any, what: str = "payload") -> M:
    """Validate ``data`` against ``model_class``; pass through instances."""
    if isinstance(data, model_class):
        return data
    try:
        return model_class.model_validate(data or {})
    except PydanticValidationError as e:
        errors = e.errors(include_url=False, include_context=False, include_input=False)
        first = errors[0] if errors else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        message = f"Invalid {what}"
        if location:
            message = f"Invalid {what}: {location}: {first.get('msg')}"
        raise ValidationError(message, {"errors": errors}) from e


@contextmanager
def storage_errors(action: str, passthrough: Tuple[Type[Exception], ...] = ()):
    """Translate unexpected storage failures into PersistenceError."""
    try:
        yield
    except passthrough:
        raise
    except SQLAlchemyError as e:
        logger.error(f"Storage failure during {action}: {e}", exc_info=True)
        raise PersistenceError(f"Storage failure during {action}") from e


async def run_with_timeout(
    operation: Awaitable[T],
    timeout: Optional[float],
    action: str
) -> T:
    if not timeout:
        return await operation
    try:
        return await asyncio.wait_for(operation, timeout=timeout)
    except asyncio.TimeoutError as e:
        logger.error(f"{action} timed out after {timeout}s and was rolled back")
        raise OperationTimeoutError(
            f"{action} exceeded {timeout} seconds",
            {"timeout_seconds": timeout}
        ) from e


async def run_numbered(
    operation: Callable[[bool], Awaitable[T]],
    timeout: Optional[float],
    action: str,
    max_retries: Optional[int] = None,
) -> T:
    """
    Run ``operation(resync)`` in its own transaction, retrying on collisions.

    The first attempt runs with ``resync=False``; retries pass ``resync=True``
    so the counter is lifted past the last persisted number.
    """
    retries = settings.NUMBERING_MAX_RETRIES if max_retries is None else max_retries

    for attempt in range(retries + 1):
        try:
            with storage_errors(action, passthrough=(IntegrityError,)):
                return await run_with_timeout(operation(attempt > 0), timeout, action)
        except IntegrityError as e:
            if not is_number_collision(e):
                logger.error(f"Integrity failure during {action}: {e.orig}")
                raise PersistenceError(f"Integrity failure during {action}") from e
            if attempt >= retries:
                logger.error(f"Document number collision during {action}, giving up after {attempt + 1} attempts")
                raise ConflictError(
                    f"Could not allocate a unique document number during {action}",
                    {"attempts": attempt + 1}
                ) from e
            logger.warning(f"Document number collision during {action}, retrying with resync")

    # Unreachable: the loop either returns or raises
    raise ConflictError(f"Could not allocate a unique document number during {action}")
