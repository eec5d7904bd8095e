"""Visit lifecycle for a shift.

A shift moves ``NOT_STARTED -> STARTED -> ENDED`` as START and END visits are
recorded against it. Every check here runs against the database, and the
``(shift_id, type)`` unique constraint backs the existence checks so two
concurrent start requests cannot both succeed.
"""

from __future__ import annotations

import datetime as dt
import enum
import logging
import math
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import ConflictError, NotFoundError, ValidationError
from .models import Shift, ShiftStatus, Visit, VisitType
from .utils import now_utc

logger = logging.getLogger(__name__)

MSG_SHIFT_NOT_FOUND = "Shift not found"
MSG_ALREADY_STARTED = "Visit already started"
MSG_NOT_STARTED = "Visit has not been started"
MSG_ALREADY_ENDED = "Visit already ended"
MSG_CANCELLED = "Shift has been cancelled"


class VisitState(str, enum.Enum):
    NOT_STARTED = "NOT_STARTED"
    STARTED = "STARTED"
    ENDED = "ENDED"


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float

    def validate(self) -> None:
        errors = []
        if not _in_range(self.latitude, -90.0, 90.0):
            errors.append({"path": "latitude", "message": "Latitude must be between -90 and 90"})
        if not _in_range(self.longitude, -180.0, 180.0):
            errors.append({"path": "longitude", "message": "Longitude must be between -180 and 180"})
        if errors:
            raise ValidationError("Validation error", errors=errors)


def _in_range(value: float, low: float, high: float) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    if math.isnan(value):
        return False
    return low <= value <= high


def _owned_shift(db: Session, shift_id: str, caregiver_id: str) -> Shift:
    # Shifts owned by someone else are reported exactly like missing ones.
    shift = (
        db.query(Shift)
        .filter(Shift.id == shift_id, Shift.caregiver_id == caregiver_id)
        .one_or_none()
    )
    if shift is None:
        raise NotFoundError(MSG_SHIFT_NOT_FOUND)
    return shift


def _find_visit(db: Session, shift_id: str, visit_type: VisitType) -> Optional[Visit]:
    return (
        db.query(Visit)
        .filter(Visit.shift_id == shift_id, Visit.type == visit_type.value)
        .first()
    )


def _commit_visit(db: Session, visit: Visit, conflict_message: str) -> Visit:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.warning("Concurrent %s visit rejected for shift %s", visit.type, visit.shift_id)
        raise ConflictError(conflict_message) from exc
    db.refresh(visit)
    return visit


def visit_state(db: Session, shift_id: str) -> VisitState:
    if _find_visit(db, shift_id, VisitType.END) is not None:
        return VisitState.ENDED
    if _find_visit(db, shift_id, VisitType.START) is not None:
        return VisitState.STARTED
    return VisitState.NOT_STARTED


def record_start(
    db: Session,
    shift_id: str,
    caregiver_id: str,
    location: Location,
    now: Optional[dt.datetime] = None,
) -> Visit:
    location.validate()
    shift = _owned_shift(db, shift_id, caregiver_id)
    if shift.status == ShiftStatus.CANCELLED.value:
        raise ConflictError(MSG_CANCELLED)
    if _find_visit(db, shift.id, VisitType.START) is not None:
        raise ConflictError(MSG_ALREADY_STARTED)

    timestamp = now or now_utc()
    visit = Visit(
        type=VisitType.START.value,
        latitude=location.latitude,
        longitude=location.longitude,
        timestamp=timestamp,
        shift_id=shift.id,
        caregiver_id=caregiver_id,
    )
    db.add(visit)
    shift.status = ShiftStatus.IN_PROGRESS.value
    shift.start_time = timestamp
    db.add(shift)
    visit = _commit_visit(db, visit, MSG_ALREADY_STARTED)
    logger.info("Visit started for shift %s by caregiver %s", shift_id, caregiver_id)
    return visit


def record_end(
    db: Session,
    shift_id: str,
    caregiver_id: str,
    location: Location,
    now: Optional[dt.datetime] = None,
) -> Visit:
    location.validate()
    shift = _owned_shift(db, shift_id, caregiver_id)
    if shift.status == ShiftStatus.CANCELLED.value:
        raise ConflictError(MSG_CANCELLED)
    if _find_visit(db, shift.id, VisitType.START) is None:
        raise ConflictError(MSG_NOT_STARTED)
    if _find_visit(db, shift.id, VisitType.END) is not None:
        raise ConflictError(MSG_ALREADY_ENDED)

    timestamp = now or now_utc()
    visit = Visit(
        type=VisitType.END.value,
        latitude=location.latitude,
        longitude=location.longitude,
        timestamp=timestamp,
        shift_id=shift.id,
        caregiver_id=caregiver_id,
    )
    db.add(visit)
    shift.status = ShiftStatus.COMPLETED.value
    shift.end_time = timestamp
    db.add(shift)
    visit = _commit_visit(db, visit, MSG_ALREADY_ENDED)
    logger.info("Visit ended for shift %s by caregiver %s", shift_id, caregiver_id)
    return visit


def list_shift_visits(
    db: Session,
    shift_id: str,
    caregiver_id: str,
    skip: int = 0,
    limit: int = 10,
    descending: bool = False,
) -> List[Visit]:
    _owned_shift(db, shift_id, caregiver_id)
    order = Visit.timestamp.desc() if descending else Visit.timestamp.asc()
    return (
        db.query(Visit)
        .filter(Visit.shift_id == shift_id)
        .order_by(order)
        .offset(skip)
        .limit(limit)
        .all()
    )
