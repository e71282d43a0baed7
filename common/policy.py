"""Authorization policy table for booking and venue operations.

Every role check of the booking core goes through :func:`authorize`, so the
table below is the single place that says who may do what.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet

from .errors import AuthorizationError
from .models import RoleEnum


class Action(str, Enum):
    SUBMIT = "submit"
    SUBMIT_PRIORITY = "submit_priority"
    APPROVE = "approve"
    REJECT = "reject"
    OVERRIDE = "override"
    EDIT_ANY = "edit_any"
    WITHDRAW_ANY = "withdraw_any"
    VIEW_ALL_BOOKINGS = "view_all_bookings"
    MANAGE_VENUES = "manage_venues"
    MANAGE_USERS = "manage_users"


_EVERYONE = frozenset(RoleEnum)
_STAFF = frozenset({RoleEnum.FACULTY, RoleEnum.ADMIN})
_ADMIN = frozenset({RoleEnum.ADMIN})

POLICY: Dict[Action, FrozenSet[RoleEnum]] = {
    Action.SUBMIT: _EVERYONE,
    Action.SUBMIT_PRIORITY: _STAFF,
    Action.APPROVE: _STAFF,
    Action.REJECT: _STAFF,
    Action.OVERRIDE: _ADMIN,
    Action.EDIT_ANY: _ADMIN,
    Action.WITHDRAW_ANY: _ADMIN,
    Action.VIEW_ALL_BOOKINGS: _STAFF,
    Action.MANAGE_VENUES: _ADMIN,
    Action.MANAGE_USERS: _ADMIN,
}


@dataclass(frozen=True)
class Actor:
    """The caller as reported by the identity collaborator."""

    id: int
    role: RoleEnum


def is_permitted(role: RoleEnum, action: Action) -> bool:
    return role in POLICY[action]


def authorize(actor: Actor, action: Action) -> None:
    if not is_permitted(actor.role, action):
        raise AuthorizationError(f"Role '{actor.role.value}' may not {action.value.replace('_', ' ')}")


def may_self_register(role: RoleEnum, admins_exist: bool) -> bool:
    """Anonymous sign-up grants student only, except while bootstrapping the first admin."""

    return role == RoleEnum.STUDENT or not admins_exist
