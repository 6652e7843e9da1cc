from __future__ import annotations

from typing import Any


class ExpenseError(Exception):
    code = "internal_error"
    status_code = 500

    def __init__(self, message: str, *, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        return self.message


class RangeError(ExpenseError, ValueError):
    """Period bounds are out of order (years, months or restore dates)."""

    code = "range_error"
    status_code = 400


class StoreError(ExpenseError):
    """An underlying persistence failure; the original is chained as __cause__."""

    code = "store_error"
    status_code = 500


class NotFoundError(ExpenseError):
    code = "not_found"
    status_code = 404


class JobAlreadyRunning(ExpenseError):
    code = "job_already_running"
    status_code = 409
