from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class AppError(Exception):
    status_code: int
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class ValidationError(AppError):
    """Missing or malformed input, duplicate PNR, invalid transition."""

    def __init__(self, message: str, code: str = "validation_error", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(400, code, message, details)


class AuthorizationError(AppError):
    """Actor role is not allowed to run the operation in the booking's state."""

    def __init__(self, message: str, code: str = "forbidden", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(403, code, message, details)


class NotFoundError(AppError):
    def __init__(self, message: str, code: str = "not_found", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(404, code, message, details)


class ConflictError(AppError):
    """Write attempted against a stale booking revision."""

    def __init__(self, message: str, code: str = "booking_revision_conflict", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(409, code, message, details)


class StoreError(AppError):
    def __init__(self, message: str = "Booking store unavailable", code: str = "store_unavailable", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(503, code, message, details)


def error_response(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {
        "error": {
            "code": code,
            "message": message,
            "details": details or {},
        }
    }
