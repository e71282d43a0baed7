from contextlib import asynccontextmanager
from datetime import date, time
from typing import List, Optional

from fastapi import Depends, FastAPI, File, Query, Request, Response, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware

from common.approvals import decision_summary
from common.config import get_settings
from common.core import BookingCore, build_core
from common.database import Base, SessionLocal, engine
from common.dependencies import get_core, get_current_actor
from common.errors import register_error_handlers
from common.logging_middleware import add_audit_middleware
from common.models import Booking, BookingDocument, BookingStatus
from common.policy import Actor
from common.rate_limit import apply_rate_limiter, limiter
from common.schemas import (
    BookingCreate,
    BookingEditRead,
    BookingRead,
    BookingStats,
    BookingUpdate,
    DecisionRead,
    DocumentRead,
    OverrideRequest,
    RejectRequest,
    SubmissionRead,
)

settings = get_settings()


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Bookings Service", version="0.3.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    register_error_handlers(fastapi_app)
    add_audit_middleware(fastapi_app, "bookings")
    fastapi_app.state.core = build_core(settings, SessionLocal)
    return fastapi_app


app = create_app()


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "bookings"}


@app.post("/bookings", response_model=SubmissionRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
def submit_booking(
    request: Request,
    booking_in: BookingCreate,
    actor: Actor = Depends(get_current_actor),
    core: BookingCore = Depends(get_core),
) -> SubmissionRead:
    submission = core.bookings.submit(actor, booking_in)
    return SubmissionRead(
        booking=BookingRead.model_validate(submission.booking),
        decision=DecisionRead(**decision_summary(submission.decision)),
    )


@app.get("/bookings", response_model=List[BookingRead])
@limiter.limit("30/minute")
def list_bookings(
    request: Request,
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    priority: Optional[bool] = None,
    actor: Actor = Depends(get_current_actor),
    core: BookingCore = Depends(get_core),
) -> List[Booking]:
    return core.bookings.list_all(actor, status=status_filter, priority=priority)


@app.get("/bookings/me", response_model=List[BookingRead])
@limiter.limit("30/minute")
def list_my_bookings(
    request: Request,
    actor: Actor = Depends(get_current_actor),
    core: BookingCore = Depends(get_core),
) -> List[Booking]:
    return core.bookings.list_for_user(actor)


@app.get("/bookings/pending", response_model=List[BookingRead])
@limiter.limit("30/minute")
def list_pending_bookings(
    request: Request,
    actor: Actor = Depends(get_current_actor),
    core: BookingCore = Depends(get_core),
) -> List[Booking]:
    return core.bookings.list_all(actor, status=BookingStatus.PENDING)


@app.get("/bookings/priority", response_model=List[BookingRead])
@limiter.limit("30/minute")
def list_priority_bookings(
    request: Request,
    actor: Actor = Depends(get_current_actor),
    core: BookingCore = Depends(get_core),
) -> List[Booking]:
    return core.bookings.list_all(actor, priority=True)


@app.get("/bookings/stats", response_model=BookingStats)
@limiter.limit("30/minute")
def booking_stats(
    request: Request,
    actor: Actor = Depends(get_current_actor),
    core: BookingCore = Depends(get_core),
) -> BookingStats:
    return BookingStats(**core.bookings.stats(actor))


@app.get("/bookings/conflicts", response_model=List[BookingRead])
@limiter.limit("40/minute")
def list_conflicts(
    request: Request,
    venue_id: int,
    day: date = Query(..., alias="date"),
    start_time: time = Query(...),
    end_time: time = Query(...),
    exclude_booking_id: Optional[int] = None,
    _: Actor = Depends(get_current_actor),
    core: BookingCore = Depends(get_core),
) -> List[Booking]:
    return core.bookings.list_conflicts(venue_id, day, start_time, end_time, excluding=exclude_booking_id)


@app.get("/bookings/user/{user_id}", response_model=List[BookingRead])
@limiter.limit("30/minute")
def user_booking_history(
    request: Request,
    user_id: int,
    actor: Actor = Depends(get_current_actor),
    core: BookingCore = Depends(get_core),
) -> List[Booking]:
    return core.bookings.list_for_user(actor, user_id)


@app.get("/bookings/{booking_id}", response_model=BookingRead)
@limiter.limit("60/minute")
def get_booking(
    request: Request,
    booking_id: int,
    actor: Actor = Depends(get_current_actor),
    core: BookingCore = Depends(get_core),
) -> Booking:
    return core.bookings.get(actor, booking_id)


@app.put("/bookings/{booking_id}", response_model=BookingEditRead)
@limiter.limit("20/minute")
def edit_booking(
    request: Request,
    booking_id: int,
    booking_update: BookingUpdate,
    actor: Actor = Depends(get_current_actor),
    core: BookingCore = Depends(get_core),
) -> BookingEditRead:
    booking, conflicts = core.bookings.edit(booking_id, actor, booking_update)
    return BookingEditRead(
        booking=BookingRead.model_validate(booking),
        conflicts=[BookingRead.model_validate(item) for item in conflicts],
    )


@app.delete("/bookings/{booking_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("20/minute")
def withdraw_booking(
    request: Request,
    booking_id: int,
    actor: Actor = Depends(get_current_actor),
    core: BookingCore = Depends(get_core),
) -> Response:
    paths = core.bookings.withdraw(booking_id, actor)
    core.documents.purge(paths)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/bookings/{booking_id}/approve", response_model=BookingRead)
@limiter.limit("30/minute")
def approve_booking(
    request: Request,
    booking_id: int,
    actor: Actor = Depends(get_current_actor),
    core: BookingCore = Depends(get_core),
) -> Booking:
    return core.bookings.approve(booking_id, actor)


@app.post("/bookings/{booking_id}/reject", response_model=BookingRead)
@limiter.limit("30/minute")
def reject_booking(
    request: Request,
    booking_id: int,
    body: Optional[RejectRequest] = None,
    actor: Actor = Depends(get_current_actor),
    core: BookingCore = Depends(get_core),
) -> Booking:
    return core.bookings.reject(booking_id, actor, reason=body.reason if body else None)


@app.post("/bookings/{booking_id}/override", response_model=BookingRead)
@limiter.limit("10/minute")
def override_booking(
    request: Request,
    booking_id: int,
    body: OverrideRequest,
    actor: Actor = Depends(get_current_actor),
    core: BookingCore = Depends(get_core),
) -> Booking:
    return core.bookings.override(booking_id, actor, body.status, reason=body.reason)


@app.post(
    "/bookings/{booking_id}/documents",
    response_model=DocumentRead,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("10/minute")
def upload_document(
    request: Request,
    booking_id: int,
    file: UploadFile = File(...),
    actor: Actor = Depends(get_current_actor),
    core: BookingCore = Depends(get_core),
) -> BookingDocument:
    # One byte past the limit is enough for the ledger to refuse the upload.
    data = file.file.read(core.documents.max_bytes + 1)
    return core.documents.attach(actor, booking_id, file.filename or "", data)


@app.get("/bookings/{booking_id}/documents", response_model=List[DocumentRead])
@limiter.limit("30/minute")
def list_documents(
    request: Request,
    booking_id: int,
    actor: Actor = Depends(get_current_actor),
    core: BookingCore = Depends(get_core),
) -> List[BookingDocument]:
    return core.documents.list(actor, booking_id)


@app.get("/documents/{document_id}")
@limiter.limit("30/minute")
def download_document(
    request: Request,
    document_id: int,
    actor: Actor = Depends(get_current_actor),
    core: BookingCore = Depends(get_core),
) -> Response:
    document, data = core.documents.read(actor, document_id)
    return Response(
        content=data,
        media_type="application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{document.file_name}"'},
    )


@app.delete("/documents/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("20/minute")
def delete_document(
    request: Request,
    document_id: int,
    actor: Actor = Depends(get_current_actor),
    core: BookingCore = Depends(get_core),
) -> Response:
    core.documents.delete(actor, document_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
