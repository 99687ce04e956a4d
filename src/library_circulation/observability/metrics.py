"""Custom metrics for the circulation engine."""

import logfire

circulation_events = logfire.metric_counter(
    "library.circulation.events",
    description="Circulation events (issue, return, reserve, cancel, expire, copy changes)",
)


def record_circulation_event(event_type: str, **attributes: str) -> None:
    """Record one circulation event, e.g. ``record_circulation_event("issue", book_id=...)``."""
    circulation_events.add(1, {"event_type": event_type, **attributes})
