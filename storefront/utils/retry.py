# storefront/utils/retry.py
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type
from sqlalchemy.exc import OperationalError
import redis

from storefront.utils.settings import CHECKOUT_TX_ATTEMPTS


def redis_retry():
    return retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type(redis.RedisError),
    )


def db_retry(attempts: int = CHECKOUT_TX_ATTEMPTS):
    """Re-run a whole transaction when the store reports a transient failure.

    The wrapped callable must roll back its own session before re-raising,
    otherwise the next attempt starts inside a broken transaction.
    """
    return retry(
        reraise=True,
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
        retry=retry_if_exception_type(OperationalError),
    )
