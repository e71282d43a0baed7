"""Per venue/day mutual exclusion and the contention retry policy."""
from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, Iterator, Tuple, TypeVar

from .errors import ContentionTimeout

T = TypeVar("T")
LockKey = Tuple[int, date]

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class VenueDateLocks:
    """Keyed locks, one per (venue, day), dropped once nobody holds or waits on them."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: Dict[LockKey, _Entry] = {}

    @contextmanager
    def hold(self, venue_id: int, day: date, timeout: float) -> Iterator[None]:
        key = (venue_id, day)
        with self._guard:
            entry = self._entries.setdefault(key, _Entry())
            entry.users += 1
        acquired = entry.lock.acquire(timeout=timeout)
        try:
            if not acquired:
                raise ContentionTimeout(f"Timed out after {timeout:.2f}s waiting for venue {venue_id} on {day}")
            yield
        finally:
            if acquired:
                entry.lock.release()
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    self._entries.pop(key, None)

    def is_held(self, venue_id: int, day: date) -> bool:
        with self._guard:
            entry = self._entries.get((venue_id, day))
        return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


def retry_on_contention(fn: Callable[[], T], attempts: int, backoff: float) -> T:
    """Call ``fn``, retrying only on :class:`ContentionTimeout` with exponential backoff."""

    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except ContentionTimeout:
            if attempt >= attempts:
                raise
            delay = backoff * (2 ** (attempt - 1))
            logger.warning("Contention on venue schedule, retry %s/%s in %.3fs", attempt, attempts - 1, delay)
            time.sleep(delay)
    raise ContentionTimeout()
