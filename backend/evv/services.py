from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session, joinedload, selectinload

from .errors import AuthenticationError, ConflictError, NotFoundError, ValidationError
from .models import Client, Role, RoleRecord, Shift, ShiftStatus, User
from .token_utils import create_token, hash_password, verify_password
from .utils import today_utc

logger = logging.getLogger(__name__)

ROLE_DESCRIPTIONS: Dict[Role, str] = {
    Role.ADMIN: "Administrator with full access",
    Role.CAREGIVER: "Caregiver with limited access",
}

UNSET: Any = object()


def ensure_roles(db: Session) -> List[RoleRecord]:
    records: List[RoleRecord] = []
    for role, description in ROLE_DESCRIPTIONS.items():
        record = db.query(RoleRecord).filter(RoleRecord.name == role.value).one_or_none()
        if record is None:
            record = RoleRecord(name=role.value, description=description)
            db.add(record)
            logger.info("Created role %s", role.value)
        records.append(record)
    db.commit()
    return records


def _shift_query(db: Session):
    return db.query(Shift).options(
        joinedload(Shift.client),
        joinedload(Shift.caregiver).joinedload(User.role),
        selectinload(Shift.visits),
    )


# ----------------------------------------------------------------------
# Reference data
# ----------------------------------------------------------------------


def list_roles(db: Session) -> List[RoleRecord]:
    return db.query(RoleRecord).order_by(RoleRecord.name).all()


def list_clients(db: Session) -> List[Client]:
    return db.query(Client).order_by(Client.name).all()


# ----------------------------------------------------------------------
# Authentication
# ----------------------------------------------------------------------


def register_user(
    db: Session,
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    role_id: str,
) -> Tuple[User, str]:
    normalized_email = email.strip().lower()
    if db.query(User).filter(User.email == normalized_email).one_or_none():
        raise ValidationError("User already exists")
    role = db.query(RoleRecord).filter(RoleRecord.id == role_id).one_or_none()
    if role is None:
        raise ValidationError("Invalid role")
    user = User(
        email=normalized_email,
        password_hash=hash_password(password),
        first_name=first_name,
        last_name=last_name,
        role=role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    _, token_value = create_token(db, user)
    logger.info("Registered user %s with role %s", user.id, role.name)
    return user, token_value


def authenticate_user(db: Session, email: str, password: str) -> Tuple[User, str]:
    user = (
        db.query(User)
        .options(joinedload(User.role))
        .filter(User.email == email.strip().lower())
        .one_or_none()
    )
    if user is None or not verify_password(password, user.password_hash):
        logger.warning("Failed login attempt for %s", email)
        raise AuthenticationError("Invalid credentials")
    _, token_value = create_token(db, user)
    return user, token_value


# ----------------------------------------------------------------------
# Shifts
# ----------------------------------------------------------------------


def list_caregiver_shifts(db: Session, caregiver_id: str, from_date: Optional[dt.date] = None) -> List[Shift]:
    start = from_date or today_utc()
    return (
        _shift_query(db)
        .filter(Shift.caregiver_id == caregiver_id, Shift.date >= start)
        .order_by(Shift.date.asc(), Shift.created_at.asc())
        .all()
    )


def list_all_shifts(db: Session) -> List[Shift]:
    return _shift_query(db).order_by(Shift.date.desc(), Shift.created_at.desc()).all()


def get_shift(db: Session, shift_id: str) -> Shift:
    shift = _shift_query(db).filter(Shift.id == shift_id).one_or_none()
    if shift is None:
        raise NotFoundError("Shift not found")
    return shift


def _require_client(db: Session, client_id: str) -> Client:
    client = db.query(Client).filter(Client.id == client_id).one_or_none()
    if client is None:
        raise NotFoundError("Client not found")
    return client


def _require_caregiver(db: Session, caregiver_id: str) -> User:
    caregiver = db.query(User).filter(User.id == caregiver_id).one_or_none()
    if caregiver is None:
        raise NotFoundError("Caregiver not found")
    return caregiver


def create_shift(
    db: Session,
    day: dt.date,
    client_id: str,
    caregiver_id: str,
) -> Shift:
    _require_client(db, client_id)
    _require_caregiver(db, caregiver_id)
    shift = Shift(
        date=day,
        client_id=client_id,
        caregiver_id=caregiver_id,
        status=ShiftStatus.PENDING.value,
    )
    db.add(shift)
    db.commit()
    logger.info("Created shift %s for caregiver %s", shift.id, caregiver_id)
    return get_shift(db, shift.id)


def update_shift(db: Session, shift_id: str, changes: Dict[str, Any]) -> Shift:
    shift = db.query(Shift).filter(Shift.id == shift_id).one_or_none()
    if shift is None:
        raise NotFoundError("Shift not found")

    status_value = changes.get("status", UNSET)
    if status_value is not UNSET and status_value is not None:
        if status_value != ShiftStatus.CANCELLED.value:
            raise ValidationError(
                "Validation error",
                errors=[{"path": "status", "message": "Shift status can only be set to cancelled"}],
            )
        if shift.status == ShiftStatus.COMPLETED.value:
            raise ConflictError("Completed shifts cannot be cancelled")
        shift.status = ShiftStatus.CANCELLED.value

    if changes.get("date") is not None:
        shift.date = changes["date"]
    if changes.get("client_id") is not None:
        _require_client(db, changes["client_id"])
        shift.client_id = changes["client_id"]
    if changes.get("caregiver_id") is not None:
        _require_caregiver(db, changes["caregiver_id"])
        shift.caregiver_id = changes["caregiver_id"]

    db.add(shift)
    db.commit()
    return get_shift(db, shift.id)


def delete_shift(db: Session, shift_id: str) -> None:
    shift = db.query(Shift).filter(Shift.id == shift_id).one_or_none()
    if shift is None:
        raise NotFoundError("Shift not found")
    db.delete(shift)
    db.commit()
    logger.info("Deleted shift %s", shift_id)
