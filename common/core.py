"""Assembly of the booking core from an injected session factory."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import sessionmaker

from .approvals import ApprovalStateMachine
from .config import Settings
from .documents import DocumentLedger, DocumentStore, LocalDocumentStore
from .events import EventPublisher, build_publisher
from .store import BookingStore
from .venues import VenueRegistry


@dataclass
class BookingCore:
    store: BookingStore
    venues: VenueRegistry
    bookings: ApprovalStateMachine
    documents: DocumentLedger


def build_core(
    settings: Settings,
    session_factory: sessionmaker,
    publisher: Optional[EventPublisher] = None,
    blobs: Optional[DocumentStore] = None,
) -> BookingCore:
    store = BookingStore.from_settings(session_factory, settings)
    return BookingCore(
        store=store,
        venues=VenueRegistry(store, cache_ttl=settings.venue_cache_ttl),
        bookings=ApprovalStateMachine(
            store,
            publisher=publisher or build_publisher(settings),
            blocked_policy=settings.blocked_policy,
        ),
        documents=DocumentLedger(
            store,
            blobs or LocalDocumentStore(settings.document_root),
            max_bytes=settings.max_document_bytes,
        ),
    )
