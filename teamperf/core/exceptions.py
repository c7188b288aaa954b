"""
Performance subsystem errors.

Calculators raise these; the PerformanceService facade turns them into
error results so callers can tell a failed computation from a zero one.
"""
from typing import Optional


class PerformanceError(Exception):
    """Base class for performance subsystem errors."""


class InvalidPeriodError(PerformanceError, ValueError):
    """Raised when a period string matches none of the accepted formats."""

    def __init__(self, value: object):
        self.value = value
        super().__init__(
            f"Invalid period '{value}': expected YYYY, YYYY-MM, YYYY-Www or YYYY-MM-DD"
        )


class UserNotFoundError(PerformanceError):
    """Raised when a required user does not exist."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User {user_id} not found")


class OrderNotFoundError(PerformanceError):
    """Raised when a required order does not exist."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class PerformanceDataError(PerformanceError):
    """Raised when a data fetch fails; wraps the underlying database error."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        message = f"Failed to fetch {operation}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
