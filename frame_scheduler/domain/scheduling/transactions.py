"""
Transaction helper for scheduling writes

One logical operation runs in one transaction: it either commits entirely or
rolls back. Transient persistence failures (lock timeouts, serialization
failures, dropped connections) are retried with exponential backoff before
surfacing as SchedulingUnavailable. Domain errors are never retried.
"""

import logging
import time
from typing import Callable, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session

from .exceptions import SchedulingError, SchedulingUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(error: Exception) -> bool:
    if isinstance(error, OperationalError):
        return True
    return isinstance(error, DBAPIError) and error.connection_invalidated


def run_in_transaction(
    db: Session,
    operation: Callable[[Session], T],
    *,
    attempts: int = 3,
    base_delay: float = 0.1,
    max_delay: float = 2.0,
    description: str = "scheduling operation",
) -> T:
    """Run `operation(db)` and commit, retrying transient failures"""
    for attempt in range(attempts):
        try:
            result = operation(db)
            db.commit()
            return result
        except SchedulingError:
            db.rollback()
            raise
        except Exception as e:
            db.rollback()
            if not is_transient(e):
                logger.error(f"❌ {description} failed: {e}")
                raise
            if attempt == attempts - 1:
                logger.error(f"❌ {description} failed after {attempts} attempts: {e}")
                raise SchedulingUnavailable(
                    "Scheduling is temporarily unavailable, please try again",
                    {"operation": description, "attempts": attempts},
                ) from e
            delay = min(base_delay * (2**attempt), max_delay)
            logger.warning(
                f"⚠️ Transient failure in {description} (attempt {attempt + 1}/{attempts}), "
                f"retrying in {delay:.2f}s: {e}"
            )
            time.sleep(delay)
    raise SchedulingUnavailable("Scheduling is temporarily unavailable, please try again")
