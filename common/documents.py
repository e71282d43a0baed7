"""Supporting documents attached to bookings.

File contents are opaque: the ledger records name, size and storage path,
and hands the bytes to a :class:`DocumentStore`.
"""
from __future__ import annotations

import logging
import time
import uuid
from pathlib import Path, PurePosixPath
from typing import Iterable, List, Protocol

from sqlalchemy import select

from .errors import AuthorizationError, BookingValidationError, NotFoundError
from .models import Booking, BookingDocument
from .policy import Action, Actor, is_permitted
from .store import BookingStore

logger = logging.getLogger(__name__)


class DocumentStore(Protocol):
    def save(self, path: str, data: bytes) -> None: ...

    def open(self, path: str) -> bytes: ...

    def delete(self, path: str) -> None: ...


class LocalDocumentStore:
    """Blob store on the local filesystem, rooted at ``root``."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        relative = PurePosixPath(path)
        if relative.is_absolute() or ".." in relative.parts:
            raise BookingValidationError(f"Invalid document path '{path}'")
        return self.root.joinpath(*relative.parts)

    def save(self, path: str, data: bytes) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    def open(self, path: str) -> bytes:
        target = self._resolve(path)
        if not target.is_file():
            raise NotFoundError("Document file", path)
        return target.read_bytes()

    def delete(self, path: str) -> None:
        self._resolve(path).unlink(missing_ok=True)


def document_path(booking_id: int, file_name: str) -> str:
    suffix = PurePosixPath(file_name).suffix.lower()
    return f"{booking_id}/{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}{suffix}"


class DocumentLedger:
    def __init__(self, store: BookingStore, blobs: DocumentStore, max_bytes: int) -> None:
        self._store = store
        self._blobs = blobs
        self.max_bytes = max_bytes

    @staticmethod
    def _check_access(actor: Actor, booking: Booking, elevated: Action) -> None:
        if booking.user_id != actor.id and not is_permitted(actor.role, elevated):
            raise AuthorizationError("Not allowed to access documents of this booking")

    def attach(self, actor: Actor, booking_id: int, file_name: str, data: bytes) -> BookingDocument:
        if not file_name:
            raise BookingValidationError("Document needs a file name")
        if len(data) > self.max_bytes:
            raise BookingValidationError(f"Document exceeds the {self.max_bytes} byte limit")

        path = ""
        try:
            with self._store.transaction() as db:
                booking = db.get(Booking, booking_id)
                if booking is None:
                    raise NotFoundError("Booking", booking_id)
                self._check_access(actor, booking, Action.EDIT_ANY)
                path = document_path(booking_id, file_name)
                self._blobs.save(path, data)
                document = BookingDocument(
                    booking_id=booking_id,
                    file_name=file_name,
                    file_path=path,
                    file_size=len(data),
                )
                db.add(document)
                db.flush()
        except Exception:
            if path:
                self._blobs.delete(path)
            raise
        logger.info("Attached %s (%s bytes) to booking %s", path, len(data), booking_id)
        return document

    def list(self, actor: Actor, booking_id: int) -> List[BookingDocument]:
        with self._store.session() as db:
            booking = db.get(Booking, booking_id)
            if booking is None:
                raise NotFoundError("Booking", booking_id)
            self._check_access(actor, booking, Action.VIEW_ALL_BOOKINGS)
            query = (
                select(BookingDocument)
                .where(BookingDocument.booking_id == booking_id)
                .order_by(BookingDocument.uploaded_at.desc(), BookingDocument.id.desc())
            )
            return list(db.scalars(query))

    def get(self, actor: Actor, document_id: int) -> BookingDocument:
        with self._store.session() as db:
            document = db.get(BookingDocument, document_id)
            if document is None:
                raise NotFoundError("Document", document_id)
            self._check_access(actor, document.booking, Action.VIEW_ALL_BOOKINGS)
            return document

    def read(self, actor: Actor, document_id: int) -> tuple[BookingDocument, bytes]:
        document = self.get(actor, document_id)
        return document, self._blobs.open(document.file_path)

    def delete(self, actor: Actor, document_id: int) -> None:
        with self._store.transaction() as db:
            document = db.get(BookingDocument, document_id)
            if document is None:
                raise NotFoundError("Document", document_id)
            self._check_access(actor, document.booking, Action.EDIT_ANY)
            path = document.file_path
            db.delete(document)
        self._blobs.delete(path)

    def purge(self, paths: Iterable[str]) -> None:
        """Remove blobs whose records went away with their booking."""

        for path in paths:
            self._blobs.delete(path)
