"""
Overdue fine computation.

Fines depend only on two calendar dates and the configured rate, so the same
loan always yields the same fine no matter when or where it is computed.
"""

from datetime import date, datetime


def _as_date(value: date) -> date:
    # datetime is a subclass of date; fines count calendar days only
    return value.date() if isinstance(value, datetime) else value


class FineCalculator:
    """Computes overdue charges at a flat rate per calendar day late."""

    def __init__(self, rate_per_day: float = 1.0):
        if rate_per_day < 0:
            raise ValueError("Fine rate cannot be negative")
        self.rate_per_day = rate_per_day

    @staticmethod
    def days_late(due_date: date, return_date: date) -> int:
        """Whole calendar days between due and return, never negative."""
        return max(0, (_as_date(return_date) - _as_date(due_date)).days)

    def compute(self, due_date: date, return_date: date) -> float:
        """
        Fine owed for a copy returned on ``return_date``.

        Examples:
            >>> FineCalculator(1.0).compute(date(2024, 3, 15), date(2024, 3, 18))
            3.0
            >>> FineCalculator(1.0).compute(date(2024, 3, 15), date(2024, 3, 10))
            0.0
        """
        return round(self.days_late(due_date, return_date) * self.rate_per_day, 2)
