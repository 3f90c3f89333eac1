from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    INVALID_QUANTITY = "INVALID_QUANTITY"
    NO_PICKUP_SELECTED = "NO_PICKUP_SELECTED"
    EMPTY_BASKET = "EMPTY_BASKET"
    PICKUP_WINDOW_EXPIRED = "PICKUP_WINDOW_EXPIRED"
    EDIT_WINDOW_CLOSED = "EDIT_WINDOW_CLOSED"
    ALREADY_TERMINAL = "ALREADY_TERMINAL"
    CONFLICT = "CONFLICT"
    NOT_FOUND = "NOT_FOUND"
    SIGN_IN_REQUIRED = "SIGN_IN_REQUIRED"


@dataclass(frozen=True, slots=True)
class EngineError:
    """An expected, user-presentable outcome.

    Engine operations return these instead of raising, so callers branch with
    `isinstance(result, EngineError)` and show `message` as-is.
    """

    kind: ErrorKind
    message: str


class PersistenceError(Exception):
    """Base class for persistence transport/storage failures."""


class PersistenceUnavailableError(PersistenceError):
    def __init__(self, reason: str) -> None:
        super().__init__(f"Order storage is unavailable: {reason}")
        self.reason = reason
