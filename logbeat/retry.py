"""Bounded retry with a fixed delay between attempts."""

import logging
import threading
import time
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry(attempts: int, delay: float, fn: Callable[[], T],
          exceptions: tuple[type[BaseException], ...] = (Exception,),
          stop_event: threading.Event | None = None,
          description: str = "operation") -> T:
    """Call *fn* up to *attempts* times, sleeping *delay* seconds between failures.

    Returns the first successful result. The last exception is re-raised when
    attempts run out, or straight away if *stop_event* gets set while waiting.
    """
    attempts = max(attempts, 1)
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except exceptions as e:
            if attempt >= attempts:
                logger.error("%s failed after %d attempts: %s", description, attempts, e)
                raise
            logger.warning("%s failed (attempt %d/%d): %s; retrying in %.1fs",
                           description, attempt, attempts, e, delay)
            if stop_event is not None:
                if stop_event.wait(delay):
                    raise
            else:
                time.sleep(delay)
