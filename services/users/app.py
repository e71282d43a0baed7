from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import func
from sqlalchemy.orm import Session

from common import auth
from common.config import get_settings
from common.database import Base, engine, get_db
from common.dependencies import allow_action, get_current_user
from common.errors import BookingValidationError, register_error_handlers
from common.logging_middleware import add_audit_middleware
from common.models import Booking, RoleEnum, User
from common.policy import Action, is_permitted, may_self_register
from common.rate_limit import apply_rate_limiter, limiter
from common.schemas import Token, UserCreate, UserRead, UserStats, UserUpdate

settings = get_settings()


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Users Service", version="0.3.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    register_error_handlers(fastapi_app)
    add_audit_middleware(fastapi_app, "users")
    return fastapi_app


app = create_app()


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "users"}


@app.post("/users/register", response_model=UserRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
def register_user(request: Request, user_in: UserCreate, db: Session = Depends(get_db)) -> User:
    if db.query(User).filter((User.username == user_in.username) | (User.email == user_in.email)).first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username or email already exists")

    # Faculty and admin accounts can self-register only until the first admin exists.
    admins_exist = db.query(User).filter(User.role == RoleEnum.ADMIN).first() is not None
    if not may_self_register(user_in.role, admins_exist):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only admins can assign elevated roles")

    user = User(
        full_name=user_in.full_name,
        username=user_in.username,
        email=user_in.email,
        role=user_in.role,
        student_id=user_in.student_id,
        department=user_in.department,
        hashed_password=auth.get_password_hash(user_in.password),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@app.post("/users/login", response_model=Token)
@limiter.limit("10/minute")
def login(request: Request, form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)) -> Token:
    user = auth.authenticate_user(db, form_data.username, form_data.password)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Incorrect username or password")
    return Token(access_token=auth.issue_token(user))


@app.get("/users/me", response_model=UserRead)
@limiter.limit("60/minute")
def read_me(request: Request, current_user: User = Depends(get_current_user)) -> User:
    return current_user


@app.get("/users", response_model=list[UserRead])
@limiter.limit("20/minute")
def list_users(
    request: Request,
    role: RoleEnum | None = None,
    _: User = Depends(allow_action(Action.MANAGE_USERS)),
    db: Session = Depends(get_db),
) -> list[User]:
    query = db.query(User)
    if role is not None:
        query = query.filter(User.role == role)
    return query.order_by(User.full_name).all()


@app.get("/users/stats", response_model=UserStats)
@limiter.limit("20/minute")
def user_stats(
    request: Request,
    _: User = Depends(allow_action(Action.MANAGE_USERS)),
    db: Session = Depends(get_db),
) -> UserStats:
    counts = dict(db.query(User.role, func.count(User.id)).group_by(User.role).all())
    return UserStats(
        total=sum(counts.values()),
        students=counts.get(RoleEnum.STUDENT, 0),
        faculty=counts.get(RoleEnum.FACULTY, 0),
        admins=counts.get(RoleEnum.ADMIN, 0),
    )


@app.get("/users/{username}", response_model=UserRead)
@limiter.limit("30/minute")
def get_user(
    request: Request,
    username: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> User:
    auth.ensure_self_or_admin(current_user, username)
    user = db.query(User).filter(User.username == username).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


@app.put("/users/{username}", response_model=UserRead)
@limiter.limit("10/minute")
def update_user(
    request: Request,
    username: str,
    user_update: UserUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> User:
    auth.ensure_self_or_admin(current_user, username)
    user = db.query(User).filter(User.username == username).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    if user_update.full_name:
        user.full_name = user_update.full_name
    if user_update.email:
        user.email = user_update.email
    if user_update.student_id is not None:
        user.student_id = user_update.student_id
    if user_update.department is not None:
        user.department = user_update.department
    if user_update.role and is_permitted(current_user.role, Action.MANAGE_USERS):
        user.role = user_update.role
    if user_update.password:
        user.hashed_password = auth.get_password_hash(user_update.password)

    db.commit()
    db.refresh(user)
    return user


@app.delete("/users/{username}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("10/minute")
def delete_user(
    request: Request,
    username: str,
    current_user: User = Depends(allow_action(Action.MANAGE_USERS)),
    db: Session = Depends(get_db),
) -> Response:
    user = db.query(User).filter(User.username == username).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if user.id == current_user.id:
        raise BookingValidationError("Admins cannot delete their own account")
    if db.query(Booking).filter(Booking.user_id == user.id).first() is not None:
        raise BookingValidationError(f"User '{username}' still owns bookings")
    db.delete(user)
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
