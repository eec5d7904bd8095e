"""Populate a development database with demo users, clients and shifts.

Run with ``python -m evv.seed``.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Dict, List

from sqlalchemy.orm import Session

from .models import Client, Role, RoleRecord, Shift, ShiftStatus, User
from .services import ensure_roles
from .token_utils import hash_password
from .utils import today_utc

logger = logging.getLogger(__name__)

DEMO_USERS: List[Dict[str, str]] = [
    {
        "email": "admin@example.com",
        "password": "admin123",
        "first_name": "Admin",
        "last_name": "User",
        "role": Role.ADMIN.value,
    },
    {
        "email": "caregiver@example.com",
        "password": "caregiver123",
        "first_name": "John",
        "last_name": "Doe",
        "role": Role.CAREGIVER.value,
    },
]

DEMO_CLIENTS: List[Dict[str, str]] = [
    {"name": "Alice Smith", "address": "123 Main St, Springfield"},
    {"name": "Bob Johnson", "address": "456 Oak Ave, Springfield"},
]


def _upsert_user(db: Session, spec: Dict[str, str]) -> User:
    user = db.query(User).filter(User.email == spec["email"]).one_or_none()
    if user is not None:
        return user
    role = db.query(RoleRecord).filter(RoleRecord.name == spec["role"]).one()
    user = User(
        email=spec["email"],
        password_hash=hash_password(spec["password"]),
        first_name=spec["first_name"],
        last_name=spec["last_name"],
        role=role,
    )
    db.add(user)
    db.flush()
    return user


def seed_demo_data(db: Session, days_ahead: int = 3) -> Dict[str, int]:
    ensure_roles(db)
    users = [_upsert_user(db, spec) for spec in DEMO_USERS]
    caregiver = next(user for user in users if user.role.name == Role.CAREGIVER.value)

    clients: List[Client] = []
    for spec in DEMO_CLIENTS:
        client = db.query(Client).filter(Client.name == spec["name"]).one_or_none()
        if client is None:
            client = Client(name=spec["name"], address=spec["address"])
            db.add(client)
            db.flush()
        clients.append(client)

    created_shifts = 0
    start = today_utc()
    for offset in range(days_ahead):
        day = start + dt.timedelta(days=offset)
        for client in clients:
            exists = (
                db.query(Shift)
                .filter(Shift.date == day, Shift.client_id == client.id, Shift.caregiver_id == caregiver.id)
                .first()
            )
            if exists:
                continue
            db.add(
                Shift(
                    date=day,
                    client_id=client.id,
                    caregiver_id=caregiver.id,
                    status=ShiftStatus.PENDING.value,
                )
            )
            created_shifts += 1
    db.commit()
    return {"users": len(users), "clients": len(clients), "shifts": created_shifts}


def main() -> None:
    from .config import settings
    from .database import db_session, engine
    from .models import Base

    logging.basicConfig(level=settings.log_level, format=settings.log_format)
    Base.metadata.create_all(bind=engine)
    with db_session() as session:
        counts = seed_demo_data(session)
    logger.info("Seeded %(users)s users, %(clients)s clients, %(shifts)s new shifts", counts)


if __name__ == "__main__":
    main()
