"""Calendar reporting windows.

Pure functions: every boundary is derived from an injected `now`, and
calendar boundaries (start of day, week, month) are computed in the
business's civil zone rather than UTC. Weeks start on Sunday.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from enum import Enum
from zoneinfo import ZoneInfo

from workshop_metrics.core.exceptions import InvalidWindowError


class WindowKind(str, Enum):
    TODAY = "today"
    YESTERDAY = "yesterday"
    THIS_WEEK = "thisWeek"
    LAST_WEEK = "lastWeek"
    THIS_MONTH = "thisMonth"
    LAST_MONTH = "lastMonth"
    LAST_7_DAYS = "last7Days"
    LAST_30_DAYS = "last30Days"
    CUSTOM = "custom"


@dataclass(frozen=True)
class TimeWindow:
    """Half-open time range [start, end)."""

    name: str
    start: datetime
    end: datetime

    def contains(self, ts: datetime) -> bool:
        return self.start <= ts < self.end


def _local_midnight(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz).astimezone(timezone.utc)


def _week_start(day: date) -> date:
    # date.weekday(): Monday == 0, so Sunday is 6
    return day - timedelta(days=(day.weekday() + 1) % 7)


def _month_start(day: date) -> date:
    return day.replace(day=1)


def _previous_month_start(day: date) -> date:
    return _month_start(_month_start(day) - timedelta(days=1))


def resolve_timezone(name: str) -> tzinfo:
    return ZoneInfo(name)


def build_window(
    kind: WindowKind | str,
    now: datetime,
    tz: tzinfo,
    start: datetime | None = None,
    end: datetime | None = None,
) -> TimeWindow:
    """Build one named window relative to `now`.

    Args:
        kind: Window kind (enum or its string value)
        now: Reference instant, timezone-aware
        tz: Business civil timezone for calendar boundaries
        start: Explicit start (custom windows only; defaults to start of today)
        end: Explicit end (custom windows only; defaults to now)

    Returns:
        TimeWindow with UTC boundaries

    Raises:
        InvalidWindowError: if a custom window ends before it starts
        ValueError: for an unknown kind
    """
    kind = WindowKind(kind)
    now = now.astimezone(timezone.utc)
    today = now.astimezone(tz).date()
    start_of_today = _local_midnight(today, tz)

    if kind == WindowKind.TODAY:
        bounds = (start_of_today, now)
    elif kind == WindowKind.YESTERDAY:
        bounds = (_local_midnight(today - timedelta(days=1), tz), start_of_today)
    elif kind == WindowKind.THIS_WEEK:
        bounds = (_local_midnight(_week_start(today), tz), now)
    elif kind == WindowKind.LAST_WEEK:
        this_week = _week_start(today)
        bounds = (
            _local_midnight(this_week - timedelta(days=7), tz),
            _local_midnight(this_week, tz),
        )
    elif kind == WindowKind.THIS_MONTH:
        bounds = (_local_midnight(_month_start(today), tz), now)
    elif kind == WindowKind.LAST_MONTH:
        bounds = (
            _local_midnight(_previous_month_start(today), tz),
            _local_midnight(_month_start(today), tz),
        )
    elif kind == WindowKind.LAST_7_DAYS:
        bounds = (now - timedelta(days=7), now)
    elif kind == WindowKind.LAST_30_DAYS:
        bounds = (now - timedelta(days=30), now)
    else:
        custom_start = start.astimezone(timezone.utc) if start else start_of_today
        custom_end = end.astimezone(timezone.utc) if end else now
        if custom_end < custom_start:
            raise InvalidWindowError(custom_start, custom_end)
        bounds = (custom_start, custom_end)

    return TimeWindow(name=kind.value, start=bounds[0], end=bounds[1])


def build_windows(
    kinds: list[WindowKind | str],
    now: datetime,
    tz: tzinfo,
) -> dict[str, TimeWindow]:
    """Build several windows from one reference instant, preserving order."""
    windows = [build_window(kind, now, tz) for kind in kinds]
    return {w.name: w for w in windows}


@dataclass
class RequestClock:
    """The single `now` of one request and the windows derived from it.

    Every sub-computation of a request reads boundaries from the same clock,
    so wall-clock drift during a long computation cannot skew windows.
    """

    now: datetime
    tz: tzinfo
    _cache: dict[str, TimeWindow] = field(default_factory=dict, repr=False)

    @classmethod
    def capture(cls, tz: tzinfo, now: datetime | None = None) -> "RequestClock":
        if now is None:
            now = datetime.now(timezone.utc)
        return cls(now=now.astimezone(timezone.utc), tz=tz)

    def window(self, kind: WindowKind | str) -> TimeWindow:
        name = WindowKind(kind).value
        if name not in self._cache:
            self._cache[name] = build_window(name, self.now, self.tz)
        return self._cache[name]

    def windows(self, kinds: list[WindowKind | str]) -> dict[str, TimeWindow]:
        return {WindowKind(k).value: self.window(k) for k in kinds}

    def custom(self, start: datetime | None = None, end: datetime | None = None) -> TimeWindow:
        return build_window(WindowKind.CUSTOM, self.now, self.tz, start=start, end=end)
