# error taxonomy shared by the db and services packages

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    PERSISTENCE = "PERSISTENCE"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    VALIDATION = "VALIDATION"
    DATA_INTEGRITY = "DATA_INTEGRITY"
    BUSY = "BUSY"


class CheckoutError(Exception):
    """Base class for every error raised by the checkout core."""

    kind: ErrorKind = ErrorKind.PERSISTENCE

    def __init__(self, message: str = "", reason: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.reason = reason


class NotFoundError(CheckoutError):
    kind = ErrorKind.NOT_FOUND


class PersistenceError(CheckoutError):
    kind = ErrorKind.PERSISTENCE


class ReceiptCollisionError(PersistenceError):
    """The receipt number is already taken. Never retried on another backend."""


class BackendUnavailableError(PersistenceError):
    """Network failure, timeout or server error on the remote data service."""


class InvalidTransitionError(CheckoutError):
    kind = ErrorKind.INVALID_TRANSITION


class ValidationError(CheckoutError):
    kind = ErrorKind.VALIDATION


class DataIntegrityError(CheckoutError):
    kind = ErrorKind.DATA_INTEGRITY


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """
    Explicit result of a core operation.

    A failed outcome may still carry a value (e.g. the receipt a guard was
    refused on), so callers must look at `ok`, not at `value`.
    """

    value: Optional[T] = None
    error: Optional[ErrorKind] = None
    message: str = ""
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T, message: str = "") -> "Outcome[T]":
        return cls(value=value, message=message)

    @classmethod
    def failure(
        cls,
        kind: ErrorKind,
        message: str,
        reason: Optional[str] = None,
        value: Optional[T] = None,
    ) -> "Outcome[T]":
        return cls(value=value, error=kind, message=message, reason=reason)

    @classmethod
    def from_error(cls, exc: CheckoutError, value: Optional[T] = None) -> "Outcome[T]":
        return cls(
            value=value,
            error=exc.kind,
            message=exc.message or str(exc),
            reason=exc.reason,
        )
