from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from .database import get_db
from .errors import AuthenticationError, AuthorizationError
from .models import Role
from .token_utils import lookup_token


@dataclass(frozen=True)
class Caller:
    """Authenticated identity attached to a request."""

    id: str
    email: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    @property
    def is_caregiver(self) -> bool:
        return self.role is Role.CAREGIVER


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return None
    value = header.split(" ", 1)[1].strip()
    return value or None


def current_caller(request: Request, db: Session = Depends(get_db)) -> Caller:
    token_value = _bearer_token(request)
    if not token_value:
        raise AuthenticationError("No token provided")
    token, expired = lookup_token(db, token_value)
    if token is None:
        raise AuthenticationError("Invalid token")
    if expired:
        raise AuthenticationError("Token expired")
    user = token.user
    if user is None:
        raise AuthenticationError("User not found")
    if user.role is None:
        raise AuthorizationError("User has no role assigned")
    caller = Caller(id=user.id, email=user.email, role=user.role_name)
    request.state.caller = caller
    return caller


def require_role(*roles: Role) -> Callable[..., Caller]:
    allowed = frozenset(roles)
    label = ", ".join(role.value for role in roles)

    def dependency(caller: Caller = Depends(current_caller)) -> Caller:
        if caller.role not in allowed:
            raise AuthorizationError(f"Access denied. Required roles: {label}")
        return caller

    return dependency


require_admin = require_role(Role.ADMIN)
require_caregiver = require_role(Role.CAREGIVER)
