"""
Application error type shared by every feature.

One exception class carries a kind tag instead of a per-entity exception
hierarchy. The HTTP layer maps the kind to a status code with
``status_for_kind``; nothing below the routes knows about HTTP.
"""
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import status


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    CONFLICT = "conflict"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    STORE_FAILURE = "store_failure"


_STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.STORE_FAILURE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for_kind(kind: ErrorKind) -> int:
    """Map an error kind to its transport status."""
    return _STATUS_BY_KIND[kind]


class AppError(Exception):
    """
    Tagged application error.

    Usage:
        raise AppError(ErrorKind.NOT_FOUND, "Role not found", entity="role")
    """

    def __init__(self, kind: ErrorKind, message: str, entity: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.entity = entity

    @property
    def status_code(self) -> int:
        return status_for_kind(self.kind)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind.value, "message": self.message, "entity": self.entity}

    def __repr__(self) -> str:
        return f"<AppError(kind={self.kind.value}, entity={self.entity!r}, message={self.message!r})>"


def not_found(entity: str, message: Optional[str] = None) -> AppError:
    return AppError(ErrorKind.NOT_FOUND, message or f"{entity.replace('_', ' ').capitalize()} not found", entity)


def validation_error(message: str, entity: Optional[str] = None) -> AppError:
    return AppError(ErrorKind.VALIDATION, message, entity)


def store_failure(message: str, entity: Optional[str] = None) -> AppError:
    return AppError(ErrorKind.STORE_FAILURE, message, entity)
