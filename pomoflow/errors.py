"""Errors raised by the session persistence layer."""

from __future__ import annotations


class PersistenceError(Exception):
    """A session or settings store call failed."""


class NotFoundError(PersistenceError):
    """The record does not exist or belongs to someone else."""


class RemoteValidationError(PersistenceError):
    """The store rejected the payload."""

    def __init__(self, message: str, details: list[dict] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class UnauthorizedError(PersistenceError):
    """The store did not accept the caller's identity."""
