"""Exception hierarchy for familycal_lite.

Data problems inside stored rows are recovered locally and only logged;
these exceptions cover caller mistakes and store adapter failures.
"""


class FamilyCalError(Exception):
    """Base exception for all familycal_lite errors."""


class InvalidViewKeyError(FamilyCalError, ValueError):
    """View key does not match any known view.

    Raised when:
    - The key is not "today", "upcoming", "day:YYYY-MM-DD" or "month:YYYY-MM"
    - The date portion of a day/month key is not a valid calendar date
    """


class InvalidWindowError(FamilyCalError, ValueError):
    """Expansion window is inverted (window_start > window_end)."""


class EventQueryError(FamilyCalError):
    """The external event store failed to answer a query.

    Store adapters should raise this (or let their own exceptions escape);
    the view cache converts any failure into an error entry state.
    """


class RecordParseError(FamilyCalError, ValueError):
    """A stored row is missing fields required to build an event.

    Raised when:
    - id, start_time or end_time is missing
    - A timestamp cannot be parsed
    """
