from __future__ import annotations

import datetime as dt
import enum
import uuid

from sqlalchemy import Column, Date, DateTime, Float, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class Role(str, enum.Enum):
    ADMIN = "ADMIN"
    CAREGIVER = "CAREGIVER"


class ShiftStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class VisitType(str, enum.Enum):
    START = "START"
    END = "END"


class RoleRecord(Base):
    __tablename__ = "roles"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(20), nullable=False, unique=True)
    description = Column(Text, nullable=True)

    users = relationship("User", back_populates="role")


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    role_id = Column(String(36), ForeignKey("roles.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    role = relationship("RoleRecord", back_populates="users")
    shifts = relationship("Shift", back_populates="caregiver")
    tokens = relationship("AccessToken", back_populates="user", cascade="all, delete-orphan")

    @property
    def role_name(self) -> Role:
        return Role(self.role.name)


class Client(Base):
    __tablename__ = "clients"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False)
    address = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    shifts = relationship("Shift", back_populates="client")


class Shift(Base):
    __tablename__ = "shifts"

    id = Column(String(36), primary_key=True, default=new_id)
    date = Column(Date, nullable=False, index=True)
    start_time = Column(DateTime(timezone=True), nullable=True)
    end_time = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(20), nullable=False, default=ShiftStatus.PENDING.value, index=True)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=False, index=True)
    caregiver_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    client = relationship("Client", back_populates="shifts")
    caregiver = relationship("User", back_populates="shifts")
    visits = relationship(
        "Visit",
        back_populates="shift",
        cascade="all, delete-orphan",
        order_by="Visit.timestamp",
    )


class Visit(Base):
    __tablename__ = "visits"
    __table_args__ = (UniqueConstraint("shift_id", "type", name="uq_visits_shift_type"),)

    id = Column(String(36), primary_key=True, default=new_id)
    type = Column(String(10), nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    timestamp = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    shift_id = Column(String(36), ForeignKey("shifts.id", ondelete="CASCADE"), nullable=False, index=True)
    caregiver_id = Column(String(36), ForeignKey("users.id"), nullable=False)

    shift = relationship("Shift", back_populates="visits")


class AccessToken(Base):
    __tablename__ = "access_tokens"

    id = Column(String(36), primary_key=True, default=new_id)
    token_hash = Column(String(128), nullable=False, unique=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    last_used_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="tokens")
