from __future__ import annotations

import datetime as dt
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Generator

_TEST_DATA_DIR = tempfile.mkdtemp(prefix="evv-tests-")
os.environ.setdefault("EVV_SQLITE_PATH", str(Path(_TEST_DATA_DIR) / "app.db"))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from evv import models, token_utils
from evv.database import get_db
from evv.main import app
from evv.services import ensure_roles


@dataclass
class Actor:
    id: str
    email: str
    token: str

    @property
    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


@pytest.fixture(scope="session")
def temp_db_path() -> Generator[Path, None, None]:
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "test.db"
        yield path


@pytest.fixture(scope="session")
def engine(temp_db_path: Path):
    url = f"sqlite:///{temp_db_path}"
    engine = create_engine(url, connect_args={"check_same_thread": False}, future=True)
    models.Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture(autouse=True)
def fast_password_hashing(monkeypatch) -> None:
    monkeypatch.setattr(token_utils, "PASSWORD_ITERATIONS", 1_000)


@pytest.fixture(scope="function")
def session(engine) -> Generator[Session, None, None]:
    connection = engine.connect()
    transaction = connection.begin()
    SessionTesting = sessionmaker(bind=connection, autoflush=False, autocommit=False, future=True)
    session = SessionTesting()
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture(scope="function")
def client(session: Session) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def role_ids(session: Session) -> Dict[str, str]:
    return {record.name: record.id for record in ensure_roles(session)}


def _make_actor(session: Session, role_id: str, email: str, first_name: str) -> Actor:
    user = models.User(
        email=email,
        password_hash=token_utils.hash_password("secret123"),
        first_name=first_name,
        last_name="Tester",
        role_id=role_id,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    _, token_value = token_utils.create_token(session, user)
    return Actor(id=user.id, email=email, token=token_value)


@pytest.fixture()
def caregiver(session: Session, role_ids: Dict[str, str]) -> Actor:
    return _make_actor(session, role_ids["CAREGIVER"], "carla@example.com", "Carla")


@pytest.fixture()
def other_caregiver(session: Session, role_ids: Dict[str, str]) -> Actor:
    return _make_actor(session, role_ids["CAREGIVER"], "chris@example.com", "Chris")


@pytest.fixture()
def admin(session: Session, role_ids: Dict[str, str]) -> Actor:
    return _make_actor(session, role_ids["ADMIN"], "ada@example.com", "Ada")


@pytest.fixture()
def care_client_id(session: Session) -> str:
    record = models.Client(name="Alice Smith", address="123 Main St")
    session.add(record)
    session.commit()
    return record.id


@pytest.fixture()
def upcoming_day() -> dt.date:
    return dt.datetime.now(dt.timezone.utc).date() + dt.timedelta(days=1)


@pytest.fixture()
def make_shift(session: Session, care_client_id: str, upcoming_day: dt.date):
    def factory(caregiver_id: str, *, day: dt.date | None = None, status: str = "pending") -> str:
        shift = models.Shift(
            date=day or upcoming_day,
            client_id=care_client_id,
            caregiver_id=caregiver_id,
            status=status,
        )
        session.add(shift)
        session.commit()
        return shift.id

    return factory
