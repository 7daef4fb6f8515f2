import functools
import logging

from pymongo.errors import ConnectionFailure

from kiram_chat.core.exceptions import StoreUnavailable

logger = logging.getLogger(__name__)


def translate_store_errors(func):
    """Surface transient MongoDB failures as retryable StoreUnavailable."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except ConnectionFailure as e:
            logger.warning(f"MongoDB unavailable in {func.__qualname__}: {e}")
            raise StoreUnavailable(f"Message store unavailable: {e}") from e

    return wrapper
