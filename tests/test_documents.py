from datetime import time

import pytest

from common.documents import LocalDocumentStore, document_path
from common.errors import AuthorizationError, BookingValidationError, NotFoundError
from common.models import BookingDocument, RoleEnum


def test_owner_attaches_and_reads_document(documents, make_actor, make_venue, make_booking):
    owner = make_actor()
    booking = make_booking(owner, make_venue(), time(9), time(10))

    document = documents.attach(owner, booking.id, "Proposal.PDF", b"%PDF-1.4 agenda")

    assert document.file_size == len(b"%PDF-1.4 agenda")
    assert document.file_path.startswith(f"{booking.id}/")
    assert document.file_path.endswith(".pdf")
    stored, data = documents.read(owner, document.id)
    assert stored.file_name == "Proposal.PDF"
    assert data == b"%PDF-1.4 agenda"
    assert [item.id for item in documents.list(owner, booking.id)] == [document.id]


def test_document_size_limit(documents, make_actor, make_venue, make_booking, db_session):
    owner = make_actor()
    booking = make_booking(owner, make_venue(), time(9), time(10))

    with pytest.raises(BookingValidationError):
        documents.attach(owner, booking.id, "huge.bin", b"x" * 1025)
    assert db_session.query(BookingDocument).count() == 0


def test_strangers_cannot_touch_documents(documents, make_actor, make_venue, make_booking):
    owner, stranger = make_actor(), make_actor()
    booking = make_booking(owner, make_venue(), time(9), time(10))
    document = documents.attach(owner, booking.id, "notes.txt", b"notes")

    with pytest.raises(AuthorizationError):
        documents.attach(stranger, booking.id, "spam.txt", b"spam")
    with pytest.raises(AuthorizationError):
        documents.read(stranger, document.id)
    with pytest.raises(AuthorizationError):
        documents.delete(stranger, document.id)


def test_faculty_can_view_but_not_delete(documents, make_actor, make_venue, make_booking):
    owner, faculty = make_actor(), make_actor(RoleEnum.FACULTY)
    booking = make_booking(owner, make_venue(), time(9), time(10))
    document = documents.attach(owner, booking.id, "notes.txt", b"notes")

    assert documents.read(faculty, document.id)[1] == b"notes"
    with pytest.raises(AuthorizationError):
        documents.delete(faculty, document.id)


def test_delete_removes_record_and_file(documents, make_actor, make_venue, make_booking, tmp_path):
    owner = make_actor()
    booking = make_booking(owner, make_venue(), time(9), time(10))
    document = documents.attach(owner, booking.id, "notes.txt", b"notes")
    assert (tmp_path / document.file_path).is_file()

    documents.delete(owner, document.id)

    assert not (tmp_path / document.file_path).exists()
    with pytest.raises(NotFoundError):
        documents.get(owner, document.id)


def test_attach_to_unknown_booking(documents, make_actor, tmp_path):
    with pytest.raises(NotFoundError):
        documents.attach(make_actor(), 404, "notes.txt", b"notes")
    assert list(tmp_path.iterdir()) == []


def test_withdraw_returns_paths_for_purge(machine, documents, make_actor, make_venue, make_booking, tmp_path):
    owner = make_actor()
    booking = make_booking(owner, make_venue(), time(9), time(10))
    document = documents.attach(owner, booking.id, "notes.txt", b"notes")

    paths = machine.withdraw(booking.id, owner)
    documents.purge(paths)

    assert paths == [document.file_path]
    assert not (tmp_path / document.file_path).exists()


class TestLocalDocumentStore:
    def test_rejects_paths_outside_root(self, tmp_path):
        blobs = LocalDocumentStore(tmp_path)

        for path in ("../escape.txt", "/etc/passwd", "1/../../escape.txt"):
            with pytest.raises(BookingValidationError):
                blobs.save(path, b"x")

    def test_missing_file(self, tmp_path):
        with pytest.raises(NotFoundError):
            LocalDocumentStore(tmp_path).open("1/missing.txt")

    def test_delete_is_idempotent(self, tmp_path):
        blobs = LocalDocumentStore(tmp_path)
        blobs.save("1/a.txt", b"a")

        blobs.delete("1/a.txt")
        blobs.delete("1/a.txt")

        assert not (tmp_path / "1" / "a.txt").exists()

    def test_document_path_layout(self):
        path = document_path(12, "Slides.PPTX")

        assert path.startswith("12/")
        assert path.endswith(".pptx")
        assert path != document_path(12, "Slides.PPTX")


def test_attach_refuses_one_byte_over_the_limit(documents, make_actor, make_venue, make_booking):
    owner = make_actor()
    booking = make_booking(owner, make_venue(), time(9), time(10))

    assert documents.attach(owner, booking.id, "exact.bin", b"x" * 1024).file_size == 1024
    with pytest.raises(BookingValidationError):
        documents.attach(owner, booking.id, "over.bin", b"x" * 1025)
