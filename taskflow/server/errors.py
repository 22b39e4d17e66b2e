"""Domain exceptions raised by managers.

Managers never raise HTTP errors; routers translate these in
``routers/_errors.py``.
"""

from __future__ import annotations


class NotFoundError(LookupError):
    """Raised when a record does not exist in the caller's workspace."""

    def __init__(self, kind: str, record_id: str) -> None:
        super().__init__(f"{kind} '{record_id}' not found.")
        self.kind = kind
        self.record_id = record_id


class ConflictError(ValueError):
    """Raised when a write would violate a uniqueness rule."""


class InvalidRequestError(ValueError):
    """Raised when a request is well-formed but not acceptable."""


class AccessDeniedError(PermissionError):
    """Raised when the caller's role or workspace does not permit the action."""

    def __init__(self, message: str, code: str = "ACCESS_DENIED") -> None:
        super().__init__(message)
        self.code = code


class LimitReachedError(AccessDeniedError):
    """Raised when a COMMUNITY workspace hits one of its usage limits."""

    def __init__(self, resource: str, limit: int) -> None:
        super().__init__(f"Workspace {resource} limit reached ({limit}).", code="LIMIT_REACHED")
        self.resource = resource
        self.limit = limit


class AuthenticationError(Exception):
    """Raised when the caller's identity cannot be established."""
