import pytest

from common.errors import ContentionTimeout
from common.models import RoleEnum
from services.bookings.app import app as bookings_app

EVENT_DATE = "2030-03-14"


def auth_header(users_client, username: str, password: str) -> dict[str, str]:
    response = users_client.post(
        "/users/login",
        data={"username": username, "password": password},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    token = response.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


def register(users_client, username: str, role: RoleEnum = RoleEnum.STUDENT) -> dict[str, str]:
    users_client.post(
        "/users/register",
        json={
            "full_name": username.title(),
            "username": username,
            "email": f"{username}@campus.example.edu",
            "password": "Passw0rd!",
            "role": role.value,
        },
    )
    return auth_header(users_client, username, "Passw0rd!")


@pytest.fixture()
def campus(users_client, venues_client):
    # Elevated roles must register before the first admin.
    headers = {
        "faculty": register(users_client, "rao", RoleEnum.FACULTY),
        "admin": register(users_client, "admin", RoleEnum.ADMIN),
        "alice": register(users_client, "alice"),
        "bob": register(users_client, "bob"),
    }
    venue = venues_client.post(
        "/venues",
        json={"name": "Auditorium", "type": "auditorium", "capacity": 200, "equipment": ["mic"]},
        headers=headers["admin"],
    ).json()
    return headers, venue["id"]


def booking_payload(venue_id: int, start: str, end: str, **extra) -> dict:
    return {
        "venue_id": venue_id,
        "event_name": extra.pop("event_name", "Robotics club meetup"),
        "event_type": extra.pop("event_type", "club-activity"),
        "start_date": EVENT_DATE,
        "start_time": start,
        "end_time": end,
        "expected_attendees": extra.pop("expected_attendees", 30),
        **extra,
    }


def test_priority_booking_flow(bookings_client, campus):
    headers, venue_id = campus

    first = bookings_client.post("/bookings", json=booking_payload(venue_id, "14:00", "16:00"), headers=headers["alice"])
    assert first.status_code == 201
    assert first.json()["decision"] == {"kind": "clear", "conflicts": [], "losers": []}
    first_id = first.json()["booking"]["id"]
    assert first.json()["booking"]["status"] == "pending"

    second = bookings_client.post(
        "/bookings",
        json=booking_payload(venue_id, "15:00", "17:00", event_type="seminar", priority=True),
        headers=headers["faculty"],
    )
    assert second.status_code == 201
    assert second.json()["decision"]["kind"] == "bump"
    assert second.json()["decision"]["losers"] == [first_id]
    assert second.json()["booking"]["status"] == "approved"
    second_id = second.json()["booking"]["id"]

    bumped = bookings_client.get(f"/bookings/{first_id}", headers=headers["alice"]).json()
    assert bumped["status"] == "rejected"
    assert bumped["rejection_reason"] == "superseded by priority booking"

    conflicts = bookings_client.get(
        f"/bookings/conflicts?venue_id={venue_id}&date={EVENT_DATE}&start_time=15:30&end_time=16:00",
        headers=headers["bob"],
    )
    assert conflicts.status_code == 200
    assert [item["id"] for item in conflicts.json()] == [second_id]

    again = bookings_client.post(f"/bookings/{first_id}/approve", headers=headers["admin"])
    assert again.status_code == 409
    assert again.json()["error"] == "TerminalStateError"

    reinstate = bookings_client.post(
        f"/bookings/{first_id}/override", json={"status": "approved"}, headers=headers["admin"]
    )
    assert reinstate.status_code == 409
    assert reinstate.json()["conflicts"] == [second_id]

    stats = bookings_client.get("/bookings/stats", headers=headers["admin"]).json()
    assert stats == {"total": 2, "pending": 0, "approved": 1, "rejected": 1, "priority": 1}
    assert [item["id"] for item in bookings_client.get("/bookings/priority", headers=headers["faculty"]).json()] == [
        second_id
    ]


def test_blocked_submission_waits_for_decision(bookings_client, campus):
    headers, venue_id = campus
    first_id = bookings_client.post(
        "/bookings", json=booking_payload(venue_id, "10:00", "11:00"), headers=headers["alice"]
    ).json()["booking"]["id"]

    second = bookings_client.post("/bookings", json=booking_payload(venue_id, "10:30", "11:30"), headers=headers["bob"])
    assert second.json()["decision"] == {"kind": "blocked", "conflicts": [first_id], "losers": []}
    second_id = second.json()["booking"]["id"]

    pending = bookings_client.get("/bookings/pending", headers=headers["faculty"]).json()
    assert {item["id"] for item in pending} == {first_id, second_id}

    assert bookings_client.post(f"/bookings/{first_id}/approve", headers=headers["faculty"]).status_code == 200
    lost = bookings_client.post(f"/bookings/{second_id}/approve", headers=headers["faculty"])
    assert lost.status_code == 409
    assert lost.json()["error"] == "ConflictAtApproval"

    rejected = bookings_client.post(
        f"/bookings/{second_id}/reject", json={"reason": "Slot taken"}, headers=headers["faculty"]
    )
    assert rejected.status_code == 200
    assert rejected.json()["rejection_reason"] == "Slot taken"


def test_submission_validation(bookings_client, campus):
    headers, venue_id = campus

    inverted = bookings_client.post("/bookings", json=booking_payload(venue_id, "12:00", "11:00"), headers=headers["alice"])
    assert inverted.status_code == 400
    assert inverted.json()["error"] == "BookingValidationError"

    crowded = bookings_client.post(
        "/bookings", json=booking_payload(venue_id, "09:00", "10:00", expected_attendees=201), headers=headers["alice"]
    )
    assert crowded.status_code == 400

    unknown = bookings_client.post("/bookings", json=booking_payload(9999, "09:00", "10:00"), headers=headers["alice"])
    assert unknown.status_code == 404

    student_priority = bookings_client.post(
        "/bookings", json=booking_payload(venue_id, "09:00", "10:00", priority=True), headers=headers["alice"]
    )
    assert student_priority.status_code == 403

    assert bookings_client.post("/bookings", json=booking_payload(venue_id, "09:00", "10:00")).status_code == 401


def test_owner_views_edits_and_withdraws(bookings_client, campus):
    headers, venue_id = campus
    booking_id = bookings_client.post(
        "/bookings", json=booking_payload(venue_id, "09:00", "10:00"), headers=headers["alice"]
    ).json()["booking"]["id"]

    mine = bookings_client.get("/bookings/me", headers=headers["alice"]).json()
    assert [item["id"] for item in mine] == [booking_id]
    assert bookings_client.get(f"/bookings/{booking_id}", headers=headers["bob"]).status_code == 403
    assert bookings_client.get("/bookings", headers=headers["alice"]).status_code == 403

    edited = bookings_client.put(
        f"/bookings/{booking_id}", json={"end_time": "10:30", "expected_attendees": 45}, headers=headers["alice"]
    )
    assert edited.status_code == 200
    assert edited.json()["booking"]["end_time"] == "10:30:00"
    assert edited.json()["conflicts"] == []
    assert bookings_client.put(f"/bookings/{booking_id}", json={"event_name": "Mine"}, headers=headers["bob"]).status_code == 403

    assert bookings_client.delete(f"/bookings/{booking_id}", headers=headers["alice"]).status_code == 204
    assert bookings_client.get(f"/bookings/{booking_id}", headers=headers["alice"]).status_code == 404


def test_booking_documents(bookings_client, campus):
    headers, venue_id = campus
    booking_id = bookings_client.post(
        "/bookings", json=booking_payload(venue_id, "09:00", "10:00"), headers=headers["alice"]
    ).json()["booking"]["id"]

    upload = bookings_client.post(
        f"/bookings/{booking_id}/documents",
        files={"file": ("agenda.txt", b"1. welcome\n2. demos\n", "text/plain")},
        headers=headers["alice"],
    )
    assert upload.status_code == 201
    document = upload.json()
    assert document["file_name"] == "agenda.txt"
    assert document["file_size"] == len(b"1. welcome\n2. demos\n")

    listing = bookings_client.get(f"/bookings/{booking_id}/documents", headers=headers["faculty"])
    assert [item["id"] for item in listing.json()] == [document["id"]]

    download = bookings_client.get(f"/documents/{document['id']}", headers=headers["alice"])
    assert download.status_code == 200
    assert download.content == b"1. welcome\n2. demos\n"
    assert "agenda.txt" in download.headers["content-disposition"]

    assert bookings_client.delete(f"/documents/{document['id']}", headers=headers["bob"]).status_code == 403
    assert bookings_client.delete(f"/documents/{document['id']}", headers=headers["alice"]).status_code == 204
    assert bookings_client.get(f"/documents/{document['id']}", headers=headers["alice"]).status_code == 404


def test_contention_is_reported_as_retryable(bookings_client, campus, monkeypatch):
    headers, venue_id = campus
    booking_id = bookings_client.post(
        "/bookings", json=booking_payload(venue_id, "09:00", "10:00"), headers=headers["alice"]
    ).json()["booking"]["id"]

    def busy(*args, **kwargs):
        raise ContentionTimeout()

    monkeypatch.setattr(bookings_app.state.core.bookings, "approve", busy)

    resp = bookings_client.post(f"/bookings/{booking_id}/approve", headers=headers["admin"])
    assert resp.status_code == 503
    assert resp.json()["retryable"] is True
    assert resp.headers["retry-after"] == "1"


def test_oversized_upload_is_refused(bookings_client, campus, monkeypatch):
    headers, venue_id = campus
    booking_id = bookings_client.post(
        "/bookings", json=booking_payload(venue_id, "09:00", "10:00"), headers=headers["alice"]
    ).json()["booking"]["id"]
    monkeypatch.setattr(bookings_app.state.core.documents, "max_bytes", 16)

    resp = bookings_client.post(
        f"/bookings/{booking_id}/documents",
        files={"file": ("minutes.txt", b"x" * 4096, "text/plain")},
        headers=headers["alice"],
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "BookingValidationError"
    assert "16 byte limit" in resp.json()["detail"]

    listing = bookings_client.get(f"/bookings/{booking_id}/documents", headers=headers["alice"])
    assert listing.json() == []
