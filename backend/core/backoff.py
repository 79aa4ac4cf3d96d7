import random
import asyncio
from functools import wraps

from core.logger import Logger

logger = Logger(__name__)


def retry_with_exponential_backoff(
    errors,
    initial_delay: float = 1,
    exponential_base: float = 2,
    jitter: bool = True,
    max_retries: int = 5,
    sleep=asyncio.sleep,
):
    """
    Parameterized decorator for coroutines:
      @retry_with_exponential_backoff((SomeError, OtherError), max_retries=2)
      async def fn(...): ...

    ``max_retries`` counts the attempts after the first one.
    """
    if not isinstance(errors, tuple):
        errors = (errors,)

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            delay = initial_delay
            attempts = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except errors as e:
                    attempts += 1
                    if attempts > max_retries:
                        logger.warning(f"{func.__name__} failed after {attempts} attempt(s): {e}")
                        raise
                    sleep_for = delay * (1 + random.random()) if jitter else delay
                    logger.debug(
                        f"{func.__name__} attempt {attempts} of {max_retries + 1} failed: {e}, "
                        f"retrying in {sleep_for:.2f}s"
                    )
                    await sleep(sleep_for)
                    delay *= exponential_base

        return wrapper

    return decorator
