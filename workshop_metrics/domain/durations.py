"""Duration arithmetic and HH:MM:SS rendering.

Pure functions with no external dependencies.
"""

from datetime import datetime, timedelta

ZERO_DURATION = "00:00:00"

_ONE_MS = timedelta(milliseconds=1)


def to_ms(delta: timedelta) -> int:
    """Whole milliseconds in a timedelta (floor)."""
    return delta // _ONE_MS


def elapsed_ms(start: datetime, end: datetime) -> int:
    """Milliseconds from start to end (negative if end precedes start)."""
    return to_ms(end - start)


def format_duration(ms: float) -> str:
    """Render a millisecond duration as zero-padded HH:MM:SS.

    Truncates to whole seconds (never rounds) and does not wrap hours into
    days, so 25 hours renders as "25:00:00".

    Raises:
        ValueError: if ms is negative
    """
    if ms < 0:
        raise ValueError(f"Duration must be non-negative, got {ms}ms")

    total_seconds = int(ms // 1000)
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def format_minutes(minutes: float) -> str:
    """Render a duration given in minutes as HH:MM:SS."""
    return format_duration(minutes * 60_000)
