"""Bounded retries for read-only datastore calls."""

import logging
from functools import wraps

from sqlalchemy.exc import DBAPIError, OperationalError
from tenacity import AsyncRetrying, RetryError, retry_if_exception, stop_after_attempt, wait_fixed

from enrollment_engine.core.config import settings
from enrollment_engine.core.exceptions import DatastoreTransientError

logger = logging.getLogger(__name__)


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, OperationalError):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


def retry_transient(func):
    """Retry an async read-only service call on transient datastore errors.

    The wrapped call must not write: a retry re-runs it from the start on the same session
    after a rollback. Exhausted retries surface as DatastoreTransientError.
    """

    @wraps(func)
    async def wrapper(db, *args, **kwargs):
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(settings.db_retry_attempts),
                wait=wait_fixed(settings.db_retry_wait_seconds),
                retry=retry_if_exception(is_transient),
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning(
                            "Retrying %s after transient datastore error (attempt %d)",
                            func.__name__,
                            attempt.retry_state.attempt_number,
                        )
                        await db.rollback()
                    return await func(db, *args, **kwargs)
        except RetryError as e:
            raise DatastoreTransientError() from e

    return wrapper
