"""
Shared enumerations for the circulation models.

Roles replace free-form role strings: authorization decisions match on this
closed set so an unknown role can never slip through as "staff".
"""

from enum import Enum


class Role(str, Enum):
    """Role of the actor performing a circulation operation."""

    ADMIN = "ADMIN"
    LIBRARIAN = "LIBRARIAN"
    MEMBER = "MEMBER"

    @property
    def is_staff(self) -> bool:
        """Staff roles may act on other members' records."""
        match self:
            case Role.ADMIN | Role.LIBRARIAN:
                return True
            case Role.MEMBER:
                return False
