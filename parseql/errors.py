"""Error taxonomy for parseql.

Every error carries a Parse-compatible numeric ``code`` so callers that speak
the Parse REST dialect can map failures back to familiar values.
"""
from __future__ import annotations

from typing import Optional


class ParseQLError(Exception):
    """Base exception for all parseql errors."""

    code: int = 1

    def __init__(self, message: str, code: Optional[int] = None):
        if code is not None:
            self.code = code
        self.message = message
        super().__init__(message)


class SchemaInconsistency(ParseQLError):
    """Raised (or logged) when a class references a class missing from the schema."""


class MissingIdentifier(ParseQLError):
    """Raised when neither ``id`` nor ``objectId`` was supplied."""

    code = 104

    def __init__(self, message: str = "id or objectId are required"):
        super().__init__(message)


class NotFound(ParseQLError):
    """Raised when an object id does not resolve in its class."""

    code = 101

    def __init__(self, class_name: str, object_id: Optional[str] = None):
        self.class_name = class_name
        self.object_id = object_id
        super().__init__("Object not found.")


class ValidationError(ParseQLError):
    """Raised when a payload does not match the class schema."""

    code = 142


class ConflictError(ParseQLError):
    """Raised when a write violates a uniqueness constraint."""

    code = 137


class InvalidSessionToken(ParseQLError):
    """Raised when a session token does not map to a live session."""

    code = 209

    def __init__(self, message: str = "Invalid session token"):
        super().__init__(message)


__all__ = [
    'ParseQLError',
    'SchemaInconsistency',
    'MissingIdentifier',
    'NotFound',
    'ValidationError',
    'ConflictError',
    'InvalidSessionToken',
]
