"""Typed exceptions shared by the identity, access and storage layers."""
from __future__ import annotations

from typing import Dict


class MessagelyError(Exception):
    """Base class for errors that map onto an HTTP status code."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_payload(self) -> Dict[str, Dict[str, object]]:
        return {"error": {"message": self.message, "status": self.status_code}}


class ValidationError(MessagelyError):
    """Malformed or missing input, or a reference to an unknown user."""

    status_code = 400
    default_message = "Invalid request"


class ConflictError(MessagelyError):
    """A uniqueness constraint was violated."""

    status_code = 409
    default_message = "Resource already exists"


class NotFound(MessagelyError):
    status_code = 404
    default_message = "Not found"


class Unauthenticated(MessagelyError):
    """No token was supplied, or the supplied token did not verify."""

    status_code = 401
    default_message = "Authentication required"


class Unauthorized(MessagelyError):
    """The caller is authenticated but may not touch the resource."""

    status_code = 401
    default_message = "Unauthorized"


class AuthError(MessagelyError):
    """A presented token is malformed or carries an invalid signature."""

    status_code = 401
    default_message = "Invalid token"


class StorageError(MessagelyError):
    status_code = 500
    default_message = "Storage failure"


__all__ = [
    "AuthError",
    "ConflictError",
    "MessagelyError",
    "NotFound",
    "StorageError",
    "Unauthenticated",
    "Unauthorized",
    "ValidationError",
]
