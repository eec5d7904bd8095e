"""Data models for the EVV client."""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class Priority(enum.IntEnum):
    """Drain order of queued requests; lower values go first."""

    HIGH = 0
    MEDIUM = 1
    LOW = 2


class VisitAction(str, enum.Enum):
    START = "start"
    END = "end"


@dataclass(frozen=True, slots=True)
class Location:
    """A GPS fix in degrees."""

    latitude: float
    longitude: float


@dataclass(frozen=True, slots=True)
class VisitLog:
    """One entry of a batched visit submission."""

    shift_id: str
    location: Location
    type: VisitAction


@dataclass(slots=True)
class AuthUser:
    """The logged-in user as returned by the login endpoint."""

    id: str
    email: str
    first_name: str
    last_name: str
    role: str

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "AuthUser":
        return cls(
            id=str(payload.get("id", "")),
            email=payload.get("email", ""),
            first_name=payload.get("firstName", ""),
            last_name=payload.get("lastName", ""),
            role=payload.get("role", ""),
        )


@dataclass(slots=True)
class RequestSpec:
    """Everything needed to send a request again later."""

    method: str
    path: str
    json: Optional[Dict[str, Any]] = None
    params: Optional[Dict[str, Any]] = None
    request_id: str = ""


@dataclass(slots=True)
class QueuedRequest:
    """A request held back while offline, with the future its caller awaits."""

    spec: RequestSpec
    priority: Priority
    timestamp: float
    sequence: int
    future: "asyncio.Future[Any]" = field(repr=False)

    def sort_key(self) -> tuple[int, float, int]:
        return (int(self.priority), self.timestamp, self.sequence)


__all__ = [
    "AuthUser",
    "Location",
    "Priority",
    "QueuedRequest",
    "RequestSpec",
    "VisitAction",
    "VisitLog",
]
