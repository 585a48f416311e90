"""Tagged results returned by the stores.

A store never raises for expected conditions. Callers branch on
``Outcome.kind`` so that a missing record, a lost race and a broken database
stay distinguishable all the way up to the HTTP layer.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class OutcomeKind(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INVALID_STATE = "invalid_state"
    STORAGE_ERROR = "storage_error"


@dataclass(frozen=True)
class Outcome(Generic[T]):
    kind: OutcomeKind
    value: Optional[T] = None
    detail: Optional[str] = None
    cause: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.OK

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(OutcomeKind.OK, value=value)

    @classmethod
    def not_found(cls, detail: str) -> "Outcome[T]":
        return cls(OutcomeKind.NOT_FOUND, detail=detail)

    @classmethod
    def conflict(cls, detail: str) -> "Outcome[T]":
        return cls(OutcomeKind.CONFLICT, detail=detail)

    @classmethod
    def invalid_state(cls, detail: str) -> "Outcome[T]":
        return cls(OutcomeKind.INVALID_STATE, detail=detail)

    @classmethod
    def storage_error(cls, cause: BaseException) -> "Outcome[T]":
        return cls(OutcomeKind.STORAGE_ERROR, detail="Storage failure", cause=cause)
