"""Reusable FastAPI dependencies for identity, the booking core and database access."""
from typing import Callable

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from .auth import InvalidTokenError, decode_token
from .core import BookingCore
from .database import get_db
from .models import User
from .policy import Action, Actor, authorize

oauth_scheme = OAuth2PasswordBearer(tokenUrl="/users/login")


def get_current_user(token: str = Depends(oauth_scheme), db: Session = Depends(get_db)) -> User:
    try:
        payload = decode_token(token)
    except InvalidTokenError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc
    username: str | None = payload.get("sub")
    if username is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing subject in token")
    user = db.query(User).filter(User.username == username).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


def get_current_actor(current_user: User = Depends(get_current_user)) -> Actor:
    return Actor(id=current_user.id, role=current_user.role)


def allow_action(action: Action) -> Callable[[User], User]:
    def dependency(current_user: User = Depends(get_current_user)) -> User:
        authorize(Actor(id=current_user.id, role=current_user.role), action)
        return current_user

    return dependency


def get_core(request: Request) -> BookingCore:
    return request.app.state.core
