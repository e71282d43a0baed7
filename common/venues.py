"""Venue registry: identity, capacity, equipment and the availability override."""
from __future__ import annotations

from typing import List

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .cache import SimpleTTLCache
from .errors import BookingValidationError, NotFoundError
from .models import Booking, Venue
from .policy import Action, Actor, authorize
from .schemas import VenueCreate, VenueRead, VenueUpdate
from .store import BookingStore


def load_venue(db: Session, venue_id: int) -> Venue:
    venue = db.get(Venue, venue_id)
    if venue is None:
        raise NotFoundError("Venue", venue_id)
    return venue


def _listing_key(available_only: bool) -> str:
    return f"venue-list:{'available' if available_only else 'all'}"


class VenueRegistry:
    """Reads are cached briefly; every write invalidates the cached listings.

    Disabling a venue only blocks new submissions. Bookings already made
    against it, approved or pending, are left as they are.
    """

    def __init__(self, store: BookingStore, cache_ttl: int = 60) -> None:
        self._store = store
        self._listings: SimpleTTLCache[List[VenueRead]] = SimpleTTLCache(ttl=cache_ttl)

    def invalidate(self) -> None:
        self._listings.clear()

    def get(self, venue_id: int) -> Venue:
        with self._store.session() as db:
            return load_venue(db, venue_id)

    def list(self, available_only: bool = False) -> List[VenueRead]:
        return self._listings.get_or_load(_listing_key(available_only), lambda: self._load(available_only))

    def _load(self, available_only: bool) -> List[VenueRead]:
        with self._store.session() as db:
            query = select(Venue).order_by(Venue.name)
            if available_only:
                query = query.where(Venue.available.is_(True))
            return [VenueRead.model_validate(venue) for venue in db.scalars(query)]

    def create(self, actor: Actor, venue_in: VenueCreate) -> Venue:
        authorize(actor, Action.MANAGE_VENUES)
        with self._store.transaction() as db:
            self._ensure_unique_name(db, venue_in.name)
            venue = Venue(**venue_in.model_dump())
            db.add(venue)
            db.flush()
        self.invalidate()
        return venue

    def update(self, actor: Actor, venue_id: int, venue_update: VenueUpdate) -> Venue:
        authorize(actor, Action.MANAGE_VENUES)
        data = venue_update.model_dump(exclude_unset=True)
        with self._store.transaction() as db:
            venue = load_venue(db, venue_id)
            if "name" in data and data["name"] != venue.name:
                self._ensure_unique_name(db, data["name"])
            for key, value in data.items():
                setattr(venue, key, value)
            db.flush()
        self.invalidate()
        return venue

    def disable(self, actor: Actor, venue_id: int) -> Venue:
        return self._set_available(actor, venue_id, False)

    def enable(self, actor: Actor, venue_id: int) -> Venue:
        return self._set_available(actor, venue_id, True)

    def _set_available(self, actor: Actor, venue_id: int, available: bool) -> Venue:
        authorize(actor, Action.MANAGE_VENUES)
        with self._store.transaction() as db:
            venue = load_venue(db, venue_id)
            venue.available = available
            db.flush()
        self.invalidate()
        return venue

    def delete(self, actor: Actor, venue_id: int) -> None:
        authorize(actor, Action.MANAGE_VENUES)
        with self._store.transaction() as db:
            venue = load_venue(db, venue_id)
            referenced = db.scalar(select(func.count(Booking.id)).where(Booking.venue_id == venue_id))
            if referenced:
                raise BookingValidationError(
                    f"Venue {venue_id} is referenced by {referenced} booking(s); disable it instead"
                )
            db.delete(venue)
        self.invalidate()

    @staticmethod
    def _ensure_unique_name(db: Session, name: str) -> None:
        if db.scalar(select(Venue.id).where(Venue.name == name)) is not None:
            raise BookingValidationError(f"A venue named '{name}' already exists")
