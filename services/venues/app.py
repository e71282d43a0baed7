from contextlib import asynccontextmanager
from typing import List

from circuitbreaker import circuit
from fastapi import Depends, FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware

from common.config import get_settings
from common.core import BookingCore, build_core
from common.database import Base, SessionLocal, engine
from common.dependencies import get_core, get_current_actor
from common.errors import register_error_handlers
from common.logging_middleware import add_audit_middleware
from common.models import Venue
from common.policy import Actor
from common.rate_limit import apply_rate_limiter, limiter
from common.schemas import VenueCreate, VenueRead, VenueUpdate

settings = get_settings()


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Venues Service", version="0.3.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    register_error_handlers(fastapi_app)
    add_audit_middleware(fastapi_app, "venues")
    fastapi_app.state.core = build_core(settings, SessionLocal)
    return fastapi_app


app = create_app()


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "venues"}


@app.get("/venues", response_model=List[VenueRead])
@circuit(failure_threshold=5, recovery_timeout=60)
def list_venues(
    request: Request,
    available_only: bool = False,
    core: BookingCore = Depends(get_core),
) -> List[VenueRead]:
    return core.venues.list(available_only=available_only)


@app.get("/venues/{venue_id}", response_model=VenueRead)
@limiter.limit("60/minute")
def get_venue(request: Request, venue_id: int, core: BookingCore = Depends(get_core)) -> Venue:
    return core.venues.get(venue_id)


@app.post("/venues", response_model=VenueRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def add_venue(
    request: Request,
    venue_in: VenueCreate,
    actor: Actor = Depends(get_current_actor),
    core: BookingCore = Depends(get_core),
) -> Venue:
    return core.venues.create(actor, venue_in)


@app.put("/venues/{venue_id}", response_model=VenueRead)
@limiter.limit("15/minute")
def update_venue(
    request: Request,
    venue_id: int,
    venue_update: VenueUpdate,
    actor: Actor = Depends(get_current_actor),
    core: BookingCore = Depends(get_core),
) -> Venue:
    return core.venues.update(actor, venue_id, venue_update)


@app.post("/venues/{venue_id}/disable", response_model=VenueRead)
@limiter.limit("15/minute")
def disable_venue(
    request: Request,
    venue_id: int,
    actor: Actor = Depends(get_current_actor),
    core: BookingCore = Depends(get_core),
) -> Venue:
    return core.venues.disable(actor, venue_id)


@app.post("/venues/{venue_id}/enable", response_model=VenueRead)
@limiter.limit("15/minute")
def enable_venue(
    request: Request,
    venue_id: int,
    actor: Actor = Depends(get_current_actor),
    core: BookingCore = Depends(get_core),
) -> Venue:
    return core.venues.enable(actor, venue_id)


@app.delete("/venues/{venue_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("15/minute")
def delete_venue(
    request: Request,
    venue_id: int,
    actor: Actor = Depends(get_current_actor),
    core: BookingCore = Depends(get_core),
) -> Response:
    core.venues.delete(actor, venue_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
