"""Persistence collaborator: sessions and the venue/day critical section."""
from __future__ import annotations

from contextlib import ExitStack, contextmanager
from datetime import date
from typing import Callable, Iterable, Iterator, Optional, TypeVar

from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from .config import Settings
from .errors import ContentionTimeout
from .locks import LockKey, VenueDateLocks, retry_on_contention
from .models import VenueDaySlot

T = TypeVar("T")


class BookingStore:
    """Wraps an injected session factory with the locking the booking core needs.

    ``with_venue_date_lock`` serializes every decision touching one venue on
    one day. Inside a process this is a keyed lock; on databases with row
    locks a ``SELECT ... FOR UPDATE`` on the matching ``venue_day_slots`` row
    extends the guarantee across processes. Both waits are bounded.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        lock_timeout: float = 5.0,
        retry_attempts: int = 3,
        retry_backoff: float = 0.05,
        locks: Optional[VenueDateLocks] = None,
    ) -> None:
        self._session_factory = session_factory
        self.lock_timeout = lock_timeout
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff
        self.locks = locks or VenueDateLocks()

    @classmethod
    def from_settings(cls, session_factory: sessionmaker, settings: Settings) -> "BookingStore":
        return cls(
            session_factory,
            lock_timeout=settings.lock_timeout_seconds,
            retry_attempts=settings.contention_retry_attempts,
            retry_backoff=settings.contention_retry_backoff_seconds,
        )

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        finally:
            db.close()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Session that commits on success and rolls back on any error."""

        with self.session() as db:
            try:
                yield db
                db.commit()
            except Exception:
                db.rollback()
                raise

    def with_venue_date_lock(self, venue_id: int, day: date, fn: Callable[[Session], T]) -> T:
        """Run ``fn`` in one transaction while holding the (venue, day) lock."""

        return self.with_venue_date_locks([(venue_id, day)], fn)

    def with_venue_date_locks(self, keys: Iterable[LockKey], fn: Callable[[Session], T]) -> T:
        """Like ``with_venue_date_lock`` for several keys, always taken in sorted order."""

        ordered = sorted(set(keys))
        with ExitStack() as stack:
            for venue_id, day in ordered:
                stack.enter_context(self.locks.hold(venue_id, day, self.lock_timeout))
            with self.transaction() as db:
                for venue_id, day in ordered:
                    self._lock_slot_row(db, venue_id, day)
                return fn(db)

    def run_locked(self, venue_id: int, day: date, fn: Callable[[Session], T]) -> T:
        """``with_venue_date_lock`` under the bounded contention retry policy."""

        return self.retry(lambda: self.with_venue_date_lock(venue_id, day, fn))

    def retry(self, fn: Callable[[], T]) -> T:
        return retry_on_contention(fn, attempts=self.retry_attempts, backoff=self.retry_backoff)

    def _lock_slot_row(self, db: Session, venue_id: int, day: date) -> None:
        dialect = db.get_bind().dialect.name
        if dialect == "sqlite":
            # SQLite has a single writer; the in-process lock is sufficient.
            return
        try:
            if dialect == "postgresql":
                db.execute(text(f"SET LOCAL lock_timeout = '{int(self.lock_timeout * 1000)}ms'"))
            try:
                with db.begin_nested():
                    db.add(VenueDaySlot(venue_id=venue_id, day=day))
            except IntegrityError:
                pass  # row already exists
            db.execute(
                select(VenueDaySlot)
                .where(VenueDaySlot.venue_id == venue_id, VenueDaySlot.day == day)
                .with_for_update()
            ).scalar_one()
        except OperationalError as exc:
            raise ContentionTimeout(f"Could not lock venue {venue_id} on {day}") from exc
