"""
errors.py
Error taxonomy for the front-desk engine and the Result wrapper returned by
engine operations.

Caller-correctable problems (bad split, bad input, no stock) and expected
business conditions (duplicate member, occupied resource, no card) come back
inside a Result so the desk can re-prompt. Storage failures are raised.
"""

from __future__ import annotations

import functools
from dataclasses import dataclass
from typing import Any


class FrontDeskError(Exception):
    code = "ERROR"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class CorrectableError(FrontDeskError):
    """The desk can fix the input and retry."""


class BusinessConflict(FrontDeskError):
    """An expected condition of the shared state, not a bug."""


class ValidationError(CorrectableError):
    code = "VALIDATION_ERROR"

    def __init__(self, message: str = "", problems: list[str] | None = None):
        problems = list(problems or [])
        super().__init__(message or "; ".join(problems))
        self.problems = problems or [self.message]


class SplitMismatch(CorrectableError):
    code = "SPLIT_MISMATCH"

    def __init__(self, total: int, cash: int, upi: int):
        super().__init__(f"Split amounts (₹{cash + upi}) must equal total (₹{total}).")
        self.total = total
        self.cash = cash
        self.upi = upi


class InsufficientStock(CorrectableError):
    code = "INSUFFICIENT_STOCK"


class DuplicateMember(BusinessConflict):
    code = "DUPLICATE_MEMBER"


class ResourceUnavailable(BusinessConflict):
    code = "RESOURCE_UNAVAILABLE"

    def __init__(self, message: str = "", occupant_name: str | None = None):
        super().__init__(message)
        self.occupant_name = occupant_name


class NoCardIssued(BusinessConflict):
    code = "NO_CARD_ISSUED"


class PersistenceFailure(FrontDeskError):
    """Transient storage failure; safe to retry."""

    code = "PERSISTENCE_FAILURE"


class FatalInconsistency(FrontDeskError):
    """A partial write could not be compensated. Needs a human."""

    code = "FATAL_INCONSISTENCY"


@dataclass(frozen=True)
class Result:
    value: Any = None
    error: FrontDeskError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self):
        if self.error is not None:
            raise self.error
        return self.value


def returns_result(func):
    """Wrap an engine operation so expected failures come back as a Result."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> Result:
        try:
            return Result(value=func(*args, **kwargs))
        except (CorrectableError, BusinessConflict) as e:
            return Result(error=e)

    return wrapper
