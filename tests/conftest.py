import os
import tempfile
from datetime import date, time
from pathlib import Path
from typing import Callable, Generator

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("RATE_LIMITING_ENABLED", "false")
os.environ.setdefault("DOCUMENT_ROOT", str(Path(tempfile.gettempdir()) / "venue-booking-test-documents"))

from common.config import reset_settings_cache  # noqa: E402

reset_settings_cache()

from common.approvals import ApprovalStateMachine  # noqa: E402
from common.auth import get_password_hash  # noqa: E402
from common.database import Base, SessionLocal, engine  # noqa: E402
from common.documents import DocumentLedger, LocalDocumentStore  # noqa: E402
from common.events import RecordingPublisher  # noqa: E402
from common.models import Booking, BookingStatus, RoleEnum, User, Venue  # noqa: E402
from common.policy import Actor  # noqa: E402
from common.store import BookingStore  # noqa: E402
from services.bookings.app import app as bookings_app  # noqa: E402
from services.users.app import app as users_app  # noqa: E402
from services.venues.app import app as venues_app  # noqa: E402

EVENT_DAY = date(2030, 3, 14)


@pytest.fixture(autouse=True, scope="function")
def _create_test_database() -> Generator[None, None, None]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    venues_app.state.core.venues.invalidate()
    bookings_app.state.core.venues.invalidate()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session() -> Generator:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def users_client() -> Generator[TestClient, None, None]:
    with TestClient(users_app) as client:
        yield client


@pytest.fixture()
def venues_client() -> Generator[TestClient, None, None]:
    with TestClient(venues_app) as client:
        yield client


@pytest.fixture()
def bookings_client() -> Generator[TestClient, None, None]:
    with TestClient(bookings_app) as client:
        yield client


@pytest.fixture()
def store() -> BookingStore:
    return BookingStore(SessionLocal, lock_timeout=0.5, retry_attempts=2, retry_backoff=0)


@pytest.fixture()
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture()
def machine(store: BookingStore, publisher: RecordingPublisher) -> ApprovalStateMachine:
    return ApprovalStateMachine(store, publisher=publisher)


@pytest.fixture()
def documents(store: BookingStore, tmp_path: Path) -> DocumentLedger:
    return DocumentLedger(store, LocalDocumentStore(tmp_path), max_bytes=1024)


@pytest.fixture()
def make_actor(db_session) -> Callable[..., Actor]:
    counter = {"n": 0}

    def factory(role: RoleEnum = RoleEnum.STUDENT) -> Actor:
        counter["n"] += 1
        username = f"{role.value}{counter['n']}"
        user = User(
            full_name=username.title(),
            username=username,
            email=f"{username}@campus.example.edu",
            role=role,
            department="Engineering",
            hashed_password=get_password_hash("Passw0rd!"),
        )
        db_session.add(user)
        db_session.commit()
        return Actor(id=user.id, role=user.role)

    return factory


@pytest.fixture()
def make_venue(db_session) -> Callable[..., Venue]:
    counter = {"n": 0}

    def factory(capacity: int = 100, available: bool = True, **overrides) -> Venue:
        counter["n"] += 1
        venue = Venue(
            name=overrides.pop("name", f"Seminar Hall {counter['n']}"),
            type=overrides.pop("type", "seminar-hall"),
            capacity=capacity,
            equipment=overrides.pop("equipment", ["projector"]),
            available=available,
            **overrides,
        )
        db_session.add(venue)
        db_session.commit()
        return venue

    return factory


@pytest.fixture()
def make_booking(db_session) -> Callable[..., Booking]:
    """Insert a booking directly, bypassing the state machine."""

    def factory(
        owner: Actor,
        venue: Venue,
        start: time,
        end: time,
        status: BookingStatus = BookingStatus.PENDING,
        priority: bool = False,
        day: date = EVENT_DAY,
        attendees: int = 20,
    ) -> Booking:
        booking = Booking(
            user_id=owner.id,
            venue_id=venue.id,
            event_name=f"Event {start:%H%M}",
            expected_attendees=attendees,
            start_date=day,
            start_time=start,
            end_time=end,
            status=status,
            priority=priority,
        )
        db_session.add(booking)
        db_session.commit()
        return booking

    return factory


@pytest.fixture()
def reload(db_session) -> Callable:
    """Fetch a fresh copy of a row, ignoring anything cached in the test session."""

    def fetch(model, ident):
        db_session.expire_all()
        return db_session.get(model, ident)

    return fetch
