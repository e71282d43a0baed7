"""Conflict detection over the booking ledger.

Two bookings conflict when they are for the same venue on the same date, both
are still live (``pending`` or ``approved``) and their half-open intervals
overlap: ``[s1, e1)`` and ``[s2, e2)`` overlap iff ``s1 < e2 and s2 < e1``.
Back-to-back bookings (``e1 == s2``) never conflict.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, time
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import Booking, BookingStatus

LIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.APPROVED)


@dataclass(frozen=True)
class Slot:
    venue_id: int
    day: date
    start: time
    end: time

    @classmethod
    def of(cls, booking: Booking) -> "Slot":
        return cls(booking.venue_id, booking.start_date, booking.start_time, booking.end_time)


def find_conflicts(db: Session, candidate: Slot, excluding: Optional[int] = None) -> List[Booking]:
    """Live bookings overlapping ``candidate``, earliest first, priority first on ties."""

    query = (
        select(Booking)
        .where(
            Booking.venue_id == candidate.venue_id,
            Booking.start_date == candidate.day,
            Booking.status.in_(LIVE_STATUSES),
            Booking.start_time < candidate.end,
            Booking.end_time > candidate.start,
        )
        .order_by(Booking.start_time.asc(), Booking.priority.desc(), Booking.id.asc())
    )
    if excluding is not None:
        query = query.where(Booking.id != excluding)
    return list(db.scalars(query))
