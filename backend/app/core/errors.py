# app/core/errors.py
"""
Business errors raised by the repositories and services.

Each error carries a machine-readable ``code``. The API layer renders them as
``{"success": false, "error": message, "code": code}`` so controllers never
have to build error payloads by hand.
"""

from typing import Optional

from fastapi import status


class ParkaLotError(Exception):
    """Base class for expected business outcomes."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_code: str = "error"

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        self.message = message
        self.code = code or self.default_code
        super().__init__(message)

    def to_payload(self) -> dict:
        return {"success": False, "error": self.message, "code": self.code}


class ValidationError(ParkaLotError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "validation"


class NotFoundError(ParkaLotError):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "not_found"


class ConflictError(ParkaLotError):
    status_code = status.HTTP_409_CONFLICT
    default_code = "conflict"


class AccessDeniedError(ParkaLotError):
    status_code = status.HTTP_403_FORBIDDEN
    default_code = "forbidden"

    def __init__(self, message: str = "Access denied", code: Optional[str] = None) -> None:
        super().__init__(message, code)


class ExternalFailureError(ParkaLotError):
    """Payment provider unreachable or rejected the request. Safe to retry."""

    status_code = status.HTTP_502_BAD_GATEWAY
    default_code = "payment_error"
