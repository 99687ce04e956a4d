"""
Tools for the library circulation server.

Each tool is a dictionary with its name, description, JSON input schema and
async handler; the server registers everything in ``all_tools``.
"""

from .circulation import (
    add_copy,
    cancel_reservation,
    create_reservation,
    expire_reservations,
    issue_book,
    mark_copy_status,
    return_book,
)

all_tools = [
    issue_book,
    return_book,
    create_reservation,
    cancel_reservation,
    add_copy,
    expire_reservations,
    mark_copy_status,
]

__all__ = [
    "add_copy",
    "all_tools",
    "cancel_reservation",
    "create_reservation",
    "expire_reservations",
    "issue_book",
    "mark_copy_status",
    "return_book",
]
