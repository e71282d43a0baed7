"""Approval state machine for bookings.

Statuses move ``pending -> approved`` or ``pending -> rejected`` and nowhere
else. Leaving a terminal status takes an administrative override, which is
recorded as a fresh decision. Every transition runs inside the venue/day
critical section of the persistence collaborator and commits as one
transaction together with its side effects (bumped bookings included).
Notifications go out only after the commit.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Callable, Dict, List, Literal, Optional, Tuple, TypeVar

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .arbitration import SUPERSEDED_REASON, Blocked, Bump, Decision, resolve
from .conflicts import Slot, find_conflicts
from .errors import (
    AuthorizationError,
    BookingValidationError,
    ConflictAtApproval,
    ContentionTimeout,
    NotFoundError,
    TerminalStateError,
)
from .events import EventPublisher, NullPublisher, booking_event
from .logging_middleware import build_audit_logger
from .models import Booking, BookingStatus, Venue
from .policy import Action, Actor, authorize, is_permitted
from .schemas import BookingCreate, BookingUpdate
from .store import BookingStore
from .venues import load_venue

BlockedPolicy = Literal["hold", "reject"]
R = TypeVar("R")


@dataclass
class Submission:
    booking: Booking
    decision: Decision
    bumped: List[Booking] = field(default_factory=list)


def validate_interval(start: time, end: time) -> None:
    if start >= end:
        raise BookingValidationError("End time must be after start time")


def _check_capacity(venue: Venue, attendees: int) -> None:
    if attendees > venue.capacity:
        raise BookingValidationError(
            f"Expected attendees ({attendees}) exceed capacity of venue {venue.id} ({venue.capacity})"
        )


def _check_open_for_submissions(venue: Venue, attendees: int) -> None:
    if not venue.available:
        raise BookingValidationError(f"Venue {venue.id} is not accepting bookings")
    _check_capacity(venue, attendees)


def _require_pending(booking: Booking) -> None:
    if booking.status != BookingStatus.PENDING:
        raise TerminalStateError(booking.id, booking.status.value)


def _load_booking(db: Session, booking_id: int) -> Booking:
    booking = db.get(Booking, booking_id)
    if booking is None:
        raise NotFoundError("Booking", booking_id)
    return booking


def _record_decision(
    booking: Booking,
    status: BookingStatus,
    decided_by: Optional[int],
    decided_at: datetime,
    reason: Optional[str] = None,
) -> None:
    booking.status = status
    booking.approved_by = decided_by
    booking.approved_at = decided_at
    booking.rejection_reason = reason if status == BookingStatus.REJECTED else None


class ApprovalStateMachine:
    def __init__(
        self,
        store: BookingStore,
        publisher: Optional[EventPublisher] = None,
        blocked_policy: BlockedPolicy = "hold",
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        if blocked_policy not in ("hold", "reject"):
            raise ValueError(f"Unknown blocked policy '{blocked_policy}'")
        self._store = store
        self._publisher = publisher or NullPublisher()
        self.blocked_policy = blocked_policy
        self._clock = clock
        self._audit = build_audit_logger("decisions")

    # Reads. Lock-free; any staleness is caught when a decision re-validates.

    def get(self, actor: Actor, booking_id: int) -> Booking:
        with self._store.session() as db:
            booking = _load_booking(db, booking_id)
        if booking.user_id != actor.id and not is_permitted(actor.role, Action.VIEW_ALL_BOOKINGS):
            raise AuthorizationError("Not allowed to view this booking")
        return booking

    def list_all(
        self,
        actor: Actor,
        status: Optional[BookingStatus] = None,
        priority: Optional[bool] = None,
    ) -> List[Booking]:
        authorize(actor, Action.VIEW_ALL_BOOKINGS)
        query = select(Booking).order_by(Booking.created_at.desc(), Booking.id.desc())
        if status is not None:
            query = query.where(Booking.status == status)
        if priority is not None:
            query = query.where(Booking.priority.is_(priority))
        with self._store.session() as db:
            return list(db.scalars(query))

    def list_for_user(self, actor: Actor, user_id: Optional[int] = None) -> List[Booking]:
        owner = actor.id if user_id is None else user_id
        if owner != actor.id:
            authorize(actor, Action.VIEW_ALL_BOOKINGS)
        query = (
            select(Booking)
            .where(Booking.user_id == owner)
            .order_by(Booking.created_at.desc(), Booking.id.desc())
        )
        with self._store.session() as db:
            return list(db.scalars(query))

    def stats(self, actor: Actor) -> Dict[str, int]:
        authorize(actor, Action.VIEW_ALL_BOOKINGS)
        with self._store.session() as db:
            rows = db.execute(select(Booking.status, func.count(Booking.id)).group_by(Booking.status)).all()
            priority = db.scalar(select(func.count(Booking.id)).where(Booking.priority.is_(True))) or 0
        counts = {status.value: count for status, count in rows}
        return {
            "total": sum(counts.values()),
            "pending": counts.get(BookingStatus.PENDING.value, 0),
            "approved": counts.get(BookingStatus.APPROVED.value, 0),
            "rejected": counts.get(BookingStatus.REJECTED.value, 0),
            "priority": priority,
        }

    def list_conflicts(
        self,
        venue_id: int,
        day: date,
        start: time,
        end: time,
        excluding: Optional[int] = None,
    ) -> List[Booking]:
        validate_interval(start, end)
        with self._store.session() as db:
            load_venue(db, venue_id)
            return find_conflicts(db, Slot(venue_id, day, start, end), excluding=excluding)

    # Transitions.

    def submit(self, actor: Actor, request: BookingCreate) -> Submission:
        authorize(actor, Action.SUBMIT)
        if request.priority:
            authorize(actor, Action.SUBMIT_PRIORITY)
        validate_interval(request.start_time, request.end_time)
        slot = Slot(request.venue_id, request.start_date, request.start_time, request.end_time)

        def decide(db: Session) -> Submission:
            venue = load_venue(db, request.venue_id)
            _check_open_for_submissions(venue, request.expected_attendees)
            conflicts = find_conflicts(db, slot)
            decision = resolve(request, conflicts)

            booking = Booking(user_id=actor.id, status=BookingStatus.PENDING, **request.model_dump())
            db.add(booking)
            db.flush()

            now = self._clock()
            bumped: List[Booking] = []
            if isinstance(decision, Bump):
                bumped = [item for item in conflicts if item.id in decision.losers]
                for loser in bumped:
                    _record_decision(loser, BookingStatus.REJECTED, actor.id, now, SUPERSEDED_REASON)
                _record_decision(booking, BookingStatus.APPROVED, actor.id, now)
            elif isinstance(decision, Blocked) and not request.priority and self.blocked_policy == "reject":
                ids = ", ".join(str(item) for item in decision.conflicts)
                _record_decision(booking, BookingStatus.REJECTED, None, now, f"conflicts with booking(s) {ids}")
            db.flush()
            return Submission(booking=booking, decision=decision, bumped=bumped)

        submission = self._store.run_locked(slot.venue_id, slot.day, decide)
        booking = submission.booking
        self._audit.info(
            "submit booking=%s user=%s venue=%s day=%s %s-%s priority=%s decision=%s related=%s status=%s",
            booking.id,
            actor.id,
            booking.venue_id,
            booking.start_date,
            booking.start_time,
            booking.end_time,
            booking.priority,
            submission.decision.kind,
            decision_summary(submission.decision)["conflicts"],
            booking.status.value,
        )
        for loser in submission.bumped:
            self._publish("booking_bumped", loser, superseded_by=booking.id)
        self._publish(
            "booking_approved" if booking.status == BookingStatus.APPROVED
            else "booking_rejected" if booking.status == BookingStatus.REJECTED
            else "booking_submitted",
            booking,
        )
        return submission

    def approve(self, booking_id: int, actor: Actor) -> Booking:
        authorize(actor, Action.APPROVE)

        def decide(db: Session, booking: Booking) -> Booking:
            _require_pending(booking)
            self._ensure_approvable(db, booking)
            _record_decision(booking, BookingStatus.APPROVED, actor.id, self._clock())
            db.flush()
            return booking

        booking = self._locked_on_booking(booking_id, decide)
        self._audit.info("approve booking=%s by=%s", booking.id, actor.id)
        self._publish("booking_approved", booking)
        return booking

    def reject(self, booking_id: int, actor: Actor, reason: Optional[str] = None) -> Booking:
        authorize(actor, Action.REJECT)

        def decide(db: Session, booking: Booking) -> Booking:
            _require_pending(booking)
            _record_decision(booking, BookingStatus.REJECTED, actor.id, self._clock(), reason)
            db.flush()
            return booking

        booking = self._locked_on_booking(booking_id, decide)
        self._audit.info("reject booking=%s by=%s reason=%r", booking.id, actor.id, reason)
        self._publish("booking_rejected", booking)
        return booking

    def override(
        self,
        booking_id: int,
        actor: Actor,
        status: BookingStatus,
        reason: Optional[str] = None,
    ) -> Booking:
        """Administrative re-decision of a booking that already has a final status."""

        authorize(actor, Action.OVERRIDE)
        if not status.is_terminal:
            raise BookingValidationError("An override must decide approved or rejected")

        def decide(db: Session, booking: Booking) -> Booking:
            if not booking.status.is_terminal:
                raise BookingValidationError(f"Booking {booking.id} is pending; approve or reject it instead")
            if status == BookingStatus.APPROVED:
                self._ensure_approvable(db, booking)
            _record_decision(booking, status, actor.id, self._clock(), reason)
            db.flush()
            return booking

        booking = self._locked_on_booking(booking_id, decide)
        self._audit.info("override booking=%s by=%s status=%s reason=%r", booking.id, actor.id, status.value, reason)
        self._publish("booking_overridden", booking)
        return booking

    def edit(self, booking_id: int, actor: Actor, changes: BookingUpdate) -> Tuple[Booking, List[Booking]]:
        """Owner edit of a pending booking; returns it with the conflicts of its new slot."""

        data = changes.model_dump(exclude_unset=True)

        def attempt() -> Tuple[Booking, List[Booking]]:
            with self._store.session() as db:
                current = _load_booking(db, booking_id)
                old_key = (current.venue_id, current.start_date)
            new_key = (data.get("venue_id") or old_key[0], data.get("start_date") or old_key[1])

            def apply(db: Session) -> Tuple[Booking, List[Booking]]:
                booking = _load_booking(db, booking_id)
                if (booking.venue_id, booking.start_date) != old_key:
                    raise ContentionTimeout(f"Booking {booking_id} moved while waiting")
                if booking.user_id != actor.id and not is_permitted(actor.role, Action.EDIT_ANY):
                    raise AuthorizationError("Only the owner may edit this booking")
                _require_pending(booking)
                for key, value in data.items():
                    if value is not None:
                        setattr(booking, key, value)
                validate_interval(booking.start_time, booking.end_time)
                _check_open_for_submissions(load_venue(db, booking.venue_id), booking.expected_attendees)
                db.flush()
                return booking, find_conflicts(db, Slot.of(booking), excluding=booking.id)

            return self._store.with_venue_date_locks([old_key, new_key], apply)

        booking, conflicts = self._store.retry(attempt)
        self._audit.info("edit booking=%s by=%s fields=%s conflicts=%s", booking.id, actor.id, sorted(data), [c.id for c in conflicts])
        return booking, conflicts

    def withdraw(self, booking_id: int, actor: Actor) -> List[str]:
        """Delete a pending booking; returns the storage paths of its documents."""

        def remove(db: Session, booking: Booking) -> List[str]:
            if booking.user_id != actor.id and not is_permitted(actor.role, Action.WITHDRAW_ANY):
                raise AuthorizationError("Only the owner may withdraw this booking")
            _require_pending(booking)
            paths = [document.file_path for document in booking.documents]
            db.delete(booking)
            return paths

        paths = self._locked_on_booking(booking_id, remove)
        self._audit.info("withdraw booking=%s by=%s documents=%s", booking_id, actor.id, len(paths))
        return paths

    # Helpers.

    def _ensure_approvable(self, db: Session, booking: Booking) -> None:
        """Capacity against the venue as it is now, and no approved overlap."""

        _check_capacity(load_venue(db, booking.venue_id), booking.expected_attendees)
        taken = [
            other
            for other in find_conflicts(db, Slot.of(booking), excluding=booking.id)
            if other.status == BookingStatus.APPROVED
        ]
        if taken:
            raise ConflictAtApproval(booking.id, [other.id for other in taken])

    def _locked_on_booking(self, booking_id: int, fn: Callable[[Session, Booking], R]) -> R:
        """Run ``fn`` on a freshly loaded booking inside its venue/day critical section."""

        def attempt() -> R:
            with self._store.session() as db:
                booking = _load_booking(db, booking_id)
                key = (booking.venue_id, booking.start_date)

            def locked(db: Session) -> R:
                booking = _load_booking(db, booking_id)
                if (booking.venue_id, booking.start_date) != key:
                    raise ContentionTimeout(f"Booking {booking_id} moved while waiting")
                return fn(db, booking)

            return self._store.with_venue_date_lock(key[0], key[1], locked)

        return self._store.retry(attempt)

    def _publish(self, event: str, booking: Booking, **extra) -> None:
        self._publisher.publish(event, {**booking_event(booking), **extra})


def decision_summary(decision: Decision) -> Dict[str, object]:
    if isinstance(decision, Bump):
        return {"kind": decision.kind, "conflicts": list(decision.losers), "losers": list(decision.losers)}
    if isinstance(decision, Blocked):
        return {"kind": decision.kind, "conflicts": list(decision.conflicts), "losers": []}
    return {"kind": decision.kind, "conflicts": [], "losers": []}
