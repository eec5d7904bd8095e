from __future__ import annotations

from typing import Any, Dict, List, Optional


class EVVError(Exception):
    """Base error carrying the HTTP status used when it reaches a route."""

    status_code: int = 500

    def __init__(self, message: str, *, errors: Optional[List[Dict[str, Any]]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.errors = errors

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"status": "error", "message": self.message}
        if self.errors:
            body["errors"] = self.errors
        return body


class ValidationError(EVVError):
    status_code = 400


class AuthenticationError(EVVError):
    status_code = 401


class AuthorizationError(EVVError):
    status_code = 403


class NotFoundError(EVVError):
    status_code = 404


class ConflictError(EVVError):
    # Lifecycle violations are reported as bad requests on the wire.
    status_code = 400


__all__ = [
    "EVVError",
    "ValidationError",
    "AuthenticationError",
    "AuthorizationError",
    "NotFoundError",
    "ConflictError",
]
