"""Derived stage intervals and chronological event ordering."""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from workshop_metrics.domain.durations import elapsed_ms
from workshop_metrics.schemas.vehicle import EventType, StageEvent

# Tie-break for events sharing a timestamp, so sorting never depends on
# the order events were appended to the log.
_EVENT_RANK = {
    EventType.START: 0,
    EventType.RESUME: 1,
    EventType.PAUSE: 2,
    EventType.END: 3,
}


def _sort_key(event: StageEvent) -> tuple:
    return (
        event.timestamp,
        _EVENT_RANK[event.event_type],
        event.stage_name,
        event.work_type or "",
        event.bay_number or "",
        event.performer_name(""),
    )


def sort_events(events: Iterable[StageEvent]) -> list[StageEvent]:
    """Chronological order, deterministic for any input permutation."""
    return sorted(events, key=_sort_key)


@dataclass(frozen=True)
class Interval:
    """One stage occurrence of one vehicle, closed or still open.

    For open paused-tracking occurrences, active_ms/paused_ms hold what was
    accumulated up to `last_marker_at`; `paused` says which bucket the time
    since then belongs to.
    """

    vehicle_number: str
    stage: str
    stage_name: str
    started_at: datetime
    ended_at: datetime | None
    performed_by: str
    active_ms: int = 0
    paused_ms: int = 0
    work_type: str | None = None
    bay_number: str | None = None
    role: str | None = None
    paused: bool = False
    last_marker_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.ended_at is None

    @property
    def total_ms(self) -> int:
        if self.ended_at is None:
            raise ValueError("Open interval has no total duration")
        return elapsed_ms(self.started_at, self.ended_at)

    def elapsed_ms(self, now: datetime) -> int:
        end = self.ended_at or now
        return max(0, elapsed_ms(self.started_at, end))

    def _tail_ms(self, now: datetime) -> int:
        if not self.is_open:
            return 0
        return max(0, elapsed_ms(self.last_marker_at or self.started_at, now))

    def live_active_ms(self, now: datetime) -> int:
        return self.active_ms + (0 if self.paused else self._tail_ms(now))

    def live_paused_ms(self, now: datetime) -> int:
        return self.paused_ms + (self._tail_ms(now) if self.paused else 0)
