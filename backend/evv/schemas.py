from __future__ import annotations

import datetime as dt
import uuid
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel

from .utils import serialize_datetime


class RequestModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class ResponseModel(BaseModel):
    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


# ----------------------------------------------------------------------
# Requests
# ----------------------------------------------------------------------


class VisitLogRequest(RequestModel):
    shift_id: uuid.UUID
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class LoginRequest(RequestModel):
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1)


class RegisterRequest(RequestModel):
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=6)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    role_id: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        local, _, domain = value.partition("@")
        if not local or "." not in domain:
            raise ValueError("Invalid email")
        return value


class ShiftCreateRequest(RequestModel):
    date: dt.date
    client_id: str = Field(min_length=1)
    caregiver_id: str = Field(min_length=1)


class CaregiverShiftCreateRequest(RequestModel):
    date: dt.date
    client_id: str = Field(min_length=1)


class ShiftUpdateRequest(RequestModel):
    date: Optional[dt.date] = None
    client_id: Optional[str] = None
    caregiver_id: Optional[str] = None
    status: Optional[str] = None


# ----------------------------------------------------------------------
# Responses
# ----------------------------------------------------------------------


class VisitRead(ResponseModel):
    id: str
    type: str
    latitude: float
    longitude: float
    timestamp: dt.datetime
    shift_id: str
    caregiver_id: str

    @field_serializer("timestamp")
    def _serialize_timestamp(self, value: dt.datetime) -> Optional[str]:
        return serialize_datetime(value)


class ClientRead(ResponseModel):
    id: str
    name: str
    address: str


class CaregiverRead(ResponseModel):
    id: str
    first_name: str
    last_name: str
    email: str
    role: str

    @field_validator("role", mode="before")
    @classmethod
    def _role_name(cls, value: Any) -> Any:
        return getattr(value, "name", value)


class ShiftRead(ResponseModel):
    id: str
    date: dt.date
    start_time: Optional[dt.datetime] = None
    end_time: Optional[dt.datetime] = None
    status: str
    client_id: str
    caregiver_id: str
    client: Optional[ClientRead] = None
    caregiver: Optional[CaregiverRead] = None
    visits: List[VisitRead] = Field(default_factory=list)

    @field_serializer("start_time", "end_time")
    def _serialize_times(self, value: Optional[dt.datetime]) -> Optional[str]:
        return serialize_datetime(value)


class UserRead(ResponseModel):
    id: str
    email: str
    first_name: str
    last_name: str
    role: str

    @field_validator("role", mode="before")
    @classmethod
    def _role_name(cls, value: Any) -> Any:
        return getattr(value, "name", value)


class VisitData(ResponseModel):
    visit: VisitRead


class VisitEnvelope(ResponseModel):
    data: VisitData


class VisitListData(ResponseModel):
    visits: List[VisitRead]


class VisitListEnvelope(ResponseModel):
    data: VisitListData


class ShiftData(ResponseModel):
    shift: ShiftRead


class ShiftEnvelope(ResponseModel):
    data: ShiftData


class ShiftListData(ResponseModel):
    shifts: List[ShiftRead]


class ShiftListEnvelope(ResponseModel):
    data: ShiftListData


class RoleRead(ResponseModel):
    id: str
    name: str
    description: Optional[str] = None


class RoleListData(ResponseModel):
    roles: List[RoleRead]


class RoleListEnvelope(ResponseModel):
    data: RoleListData


class ClientListData(ResponseModel):
    clients: List[ClientRead]


class ClientListEnvelope(ResponseModel):
    data: ClientListData


class AuthData(ResponseModel):
    token: str
    user: UserRead


class AuthEnvelope(ResponseModel):
    data: AuthData
