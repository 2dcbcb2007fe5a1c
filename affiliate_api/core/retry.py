"""Single retry for idempotent reads that hit a transient datastore failure."""
import functools
import logging

from sqlalchemy.exc import DisconnectionError, OperationalError

from affiliate_api.core.exceptions import Unavailable

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (OperationalError, DisconnectionError)


def retry_transient_read(func):
    """
    Retry a read-only service method once after a connection-level failure.

    The wrapped method must belong to a service holding its session as
    ``self.db`` and must not write; the session is rolled back before the
    retry. Never apply this to balance or counter updates.
    """
    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await func(self, *args, **kwargs)
        except TRANSIENT_ERRORS as exc:
            logger.warning(f"Transient datastore error in {func.__qualname__}, retrying once: {exc}")
            await self.db.rollback()

        try:
            return await func(self, *args, **kwargs)
        except TRANSIENT_ERRORS as exc:
            logger.error(f"Datastore unavailable in {func.__qualname__}: {exc}")
            raise Unavailable("Datastore unavailable") from exc

    return wrapper
