"""Priority arbitration between a candidate booking and its conflicts.

A priority candidate may push aside pending, non-priority bookings but never
an approved one. When it does bump, it bumps every such booking at once: a
slot holds a single approved booking, so clearing only some of them would
leave the candidate unapprovable. Pending priority peers are not bumped and
stay pending.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, Sequence, Tuple, Union

from .models import Booking, BookingStatus

SUPERSEDED_REASON = "superseded by priority booking"


@dataclass(frozen=True)
class Clear:
    kind: str = field(default="clear", init=False)


@dataclass(frozen=True)
class Blocked:
    conflicts: Tuple[int, ...]
    kind: str = field(default="blocked", init=False)


@dataclass(frozen=True)
class Bump:
    losers: Tuple[int, ...]
    kind: str = field(default="bump", init=False)


Decision = Union[Clear, Blocked, Bump]


class _Candidate(Protocol):
    priority: bool


def _is_bumpable(booking: Booking) -> bool:
    return booking.status == BookingStatus.PENDING and not booking.priority


def resolve(candidate: _Candidate, conflicts: Sequence[Booking]) -> Decision:
    """Decide what happens to ``candidate`` given the bookings it overlaps.

    ``candidate`` is anything carrying a ``priority`` flag. ``conflicts`` is
    expected in :func:`find_conflicts` order; the ids carried by the returned
    decision keep that order.
    """

    if not conflicts:
        return Clear()
    ids = tuple(booking.id for booking in conflicts)
    if not candidate.priority or any(booking.status == BookingStatus.APPROVED for booking in conflicts):
        return Blocked(conflicts=ids)
    losers = tuple(booking.id for booking in conflicts if _is_bumpable(booking))
    if not losers:
        return Blocked(conflicts=ids)
    return Bump(losers=losers)

