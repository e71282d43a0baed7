"""Booking error taxonomy and the FastAPI handlers that report it."""
from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse


class BookingError(Exception):
    """Base class for every failure the booking core reports to callers."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    retryable: bool = False

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail

    def to_payload(self) -> Dict[str, Any]:
        return {"detail": self.detail, "error": type(self).__name__, "retryable": self.retryable}


class BookingValidationError(BookingError):
    """Bad interval, capacity exceeded, disabled venue and similar request faults."""

    status_code = status.HTTP_400_BAD_REQUEST


class AuthorizationError(BookingError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(BookingError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, kind: str, identifier: Any) -> None:
        super().__init__(f"{kind} {identifier} not found")
        self.kind = kind
        self.identifier = identifier


class TerminalStateError(BookingError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, booking_id: int, current: str) -> None:
        super().__init__(f"Booking {booking_id} is already {current}")
        self.booking_id = booking_id
        self.current = current


class ConflictAtApproval(BookingError):
    """The slot was taken by an approved booking after this one was submitted."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, booking_id: int, conflicting_ids: Sequence[int]) -> None:
        ids = ", ".join(str(item) for item in conflicting_ids)
        super().__init__(f"Booking {booking_id} overlaps approved booking(s) {ids}")
        self.booking_id = booking_id
        self.conflicting_ids = list(conflicting_ids)

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["conflicts"] = self.conflicting_ids
        return payload


class ContentionTimeout(BookingError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True

    def __init__(self, detail: Optional[str] = None) -> None:
        super().__init__(detail or "Venue schedule is busy, retry shortly")


def booking_error_handler(_: Request, exc: BookingError) -> JSONResponse:
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload(), headers=headers)


def register_error_handlers(app: FastAPI) -> None:
    """Attach the booking error handler to an app."""

    app.add_exception_handler(BookingError, booking_error_handler)
