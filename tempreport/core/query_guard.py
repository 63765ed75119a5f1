import logging
from contextlib import asynccontextmanager
from typing import Optional

logger = logging.getLogger(__name__)


class QueryInProgressError(Exception):
    pass


class DuplicateQueryError(Exception):
    pass


class QueryGuard:
    """Admits one report run at a time and refuses an immediate repeat.

    Check-and-set in ``acquire`` has no suspension point, so it is atomic on
    the event loop without a lock.
    """

    def __init__(self):
        self.in_flight = False
        self.last_key: Optional[str] = None

    def acquire(self, key: str) -> None:
        if self.in_flight:
            logger.info("Report ignored: another query is in progress")
            raise QueryInProgressError("A report query is already in progress")
        if key == self.last_key:
            logger.info(f"Report ignored: same query already run ({key})")
            raise DuplicateQueryError(f"Query {key} was just run")

        self.in_flight = True
        self.last_key = key

    def release(self, failed: bool = False) -> None:
        if failed:
            self.last_key = None
        self.in_flight = False


@asynccontextmanager
async def guarded_query(guard: QueryGuard, key: str):
    guard.acquire(key)

    try:
        yield guard
    except BaseException:
        guard.release(failed=True)
        raise
    else:
        guard.release()
