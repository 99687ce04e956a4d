"""
Circulation components.

- CopyRegistry: physical copies and the copy status state machine
- MembershipGate: borrowing eligibility and member provisioning
- CirculationEngine: issue and return
- ReservationQueue: holds on exhausted titles, FIFO allocation and expiry
- FineCalculator: overdue charges
"""

from .copy_registry import CopyRegistry, next_copy_number
from .engine import CirculationEngine
from .fines import FineCalculator
from .membership import DenialReason, MembershipGate, max_books_for_tier
from .reservations import ReservationQueue
from .services import CirculationServices, build_services, get_services, reset_services

__all__ = [
    "CirculationEngine",
    "CirculationServices",
    "CopyRegistry",
    "DenialReason",
    "FineCalculator",
    "MembershipGate",
    "ReservationQueue",
    "build_services",
    "get_services",
    "max_books_for_tier",
    "next_copy_number",
    "reset_services",
]
