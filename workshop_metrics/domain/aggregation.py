"""Aggregation of reconstructed intervals into window totals and live views.

Pure functions, no I/O. Accumulators are immutable values: folding returns
a new accumulator and merging is commutative and associative, so partial
results computed per vehicle (or per worker) combine safely in any order.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

import structlog

from workshop_metrics.domain.durations import elapsed_ms
from workshop_metrics.domain.intervals import reconstruct_vehicle
from workshop_metrics.domain.occurrence import Interval
from workshop_metrics.domain.stages import STAGE_ORDER, StageKind, classify, order_by_stage
from workshop_metrics.domain.windows import TimeWindow
from workshop_metrics.schemas.vehicle import EventType, StageEvent, Vehicle

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class OccurrenceRecord:
    """A closed occurrence as listed in a window's details."""

    vehicle_number: str
    stage_name: str
    start_time: datetime
    end_time: datetime
    duration_ms: int
    active_ms: int
    paused_ms: int


def _record_key(record: OccurrenceRecord) -> tuple:
    return (record.start_time, record.vehicle_number, record.end_time, record.stage_name)


@dataclass(frozen=True)
class StageTotals:
    """Running totals of closed occurrences for one stage (or work type)."""

    total_ms: int = 0
    active_ms: int = 0
    paused_ms: int = 0
    details: tuple[OccurrenceRecord, ...] = ()

    @property
    def count(self) -> int:
        return len(self.details)

    @property
    def average_ms(self) -> float:
        return self.total_ms / self.count if self.count else 0

    @property
    def average_active_ms(self) -> float:
        return self.active_ms / self.count if self.count else 0

    def add(self, interval: Interval) -> "StageTotals":
        """Fold one closed interval in.

        Raises:
            ValueError: if the interval is open or does not end after it starts
        """
        if interval.is_open:
            raise ValueError("Open intervals are not aggregated")
        duration = interval.total_ms
        if duration <= 0:
            raise ValueError(f"Interval for {interval.vehicle_number} does not end after it starts")

        record = OccurrenceRecord(
            vehicle_number=interval.vehicle_number,
            stage_name=interval.stage_name,
            start_time=interval.started_at,
            end_time=interval.ended_at,
            duration_ms=duration,
            active_ms=interval.active_ms,
            paused_ms=interval.paused_ms,
        )
        return StageTotals(
            total_ms=self.total_ms + duration,
            active_ms=self.active_ms + interval.active_ms,
            paused_ms=self.paused_ms + interval.paused_ms,
            details=self.details + (record,),
        )

    def merge(self, other: "StageTotals") -> "StageTotals":
        return StageTotals(
            total_ms=self.total_ms + other.total_ms,
            active_ms=self.active_ms + other.active_ms,
            paused_ms=self.paused_ms + other.paused_ms,
            details=tuple(sorted(self.details + other.details, key=_record_key)),
        )


@dataclass(frozen=True)
class WindowAggregate:
    """Closed-occurrence totals for one window.

    by_stage is keyed by canonical stage name; by_work_type and overall
    cover paused-tracking stages only.
    """

    by_stage: dict[str, StageTotals] = field(default_factory=dict)
    by_work_type: dict[str, StageTotals] = field(default_factory=dict)
    overall: StageTotals = field(default_factory=StageTotals)

    def stage(self, name: str) -> StageTotals:
        return self.by_stage.get(name, StageTotals())


def fold_intervals(intervals: Iterable[Interval], acc: WindowAggregate | None = None) -> WindowAggregate:
    """Fold intervals into an aggregate, returning a new value.

    Open intervals are skipped: they belong to live views, not totals.
    Closed intervals without a positive duration are skipped and logged,
    leaving the rest of the fold intact.
    """
    acc = acc or WindowAggregate()
    by_stage = dict(acc.by_stage)
    by_work_type = dict(acc.by_work_type)
    overall = acc.overall

    for interval in intervals:
        if interval.is_open:
            continue
        if interval.total_ms <= 0:
            logger.warning(
                "interval_skipped",
                vehicle_number=interval.vehicle_number,
                stage_name=interval.stage_name,
                started_at=interval.started_at.isoformat(),
                reason="non_positive_duration",
            )
            continue
        by_stage[interval.stage] = by_stage.get(interval.stage, StageTotals()).add(interval)
        if classify(interval.stage).kind == StageKind.PAUSED_TRACKING:
            work_type = interval.work_type or ""
            by_work_type[work_type] = by_work_type.get(work_type, StageTotals()).add(interval)
            overall = overall.add(interval)

    return WindowAggregate(by_stage=by_stage, by_work_type=by_work_type, overall=overall)


def _merge_maps(a: dict[str, StageTotals], b: dict[str, StageTotals]) -> dict[str, StageTotals]:
    merged = dict(a)
    for key, totals in b.items():
        merged[key] = merged[key].merge(totals) if key in merged else totals
    return merged


def merge_aggregates(*aggregates: WindowAggregate) -> WindowAggregate:
    result = WindowAggregate()
    for agg in aggregates:
        result = WindowAggregate(
            by_stage=_merge_maps(result.by_stage, agg.by_stage),
            by_work_type=_merge_maps(result.by_work_type, agg.by_work_type),
            overall=result.overall.merge(agg.overall),
        )
    return result


def aggregate_window(
    vehicles: Iterable[Vehicle],
    window: TimeWindow,
    unknown_performer: str = "Unknown",
) -> WindowAggregate:
    """Aggregate closed occurrences of every vehicle within one window.

    Each vehicle is reconstructed on its own; a failure there is logged and
    only that vehicle's contribution is lost.
    """
    partials: list[WindowAggregate] = []
    for vehicle in vehicles:
        try:
            intervals = reconstruct_vehicle(vehicle, window, unknown_performer)
            partials.append(fold_intervals(intervals))
        except Exception as e:
            logger.error(
                "vehicle_aggregation_failed",
                vehicle_number=vehicle.vehicle_number,
                window=window.name,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
    return merge_aggregates(*partials)


@dataclass(frozen=True)
class LiveOccurrence:
    """An open occurrence as seen at `now`."""

    vehicle_number: str
    stage: str
    stage_name: str
    started_at: datetime
    performed_by: str
    elapsed_ms: int
    active_ms: int
    paused_ms: int
    work_type: str | None = None
    bay_number: str | None = None
    role: str | None = None

    @classmethod
    def from_interval(cls, interval: Interval, now: datetime) -> "LiveOccurrence":
        return cls(
            vehicle_number=interval.vehicle_number,
            stage=interval.stage,
            stage_name=interval.stage_name,
            started_at=interval.started_at,
            performed_by=interval.performed_by,
            elapsed_ms=interval.elapsed_ms(now),
            active_ms=interval.live_active_ms(now),
            paused_ms=interval.live_paused_ms(now),
            work_type=interval.work_type,
            bay_number=interval.bay_number,
            role=interval.role,
        )


def open_occurrences(
    vehicle: Vehicle,
    now: datetime,
    unknown_performer: str = "Unknown",
) -> list[LiveOccurrence]:
    """Currently open occurrences of one vehicle, over its full history."""
    return [
        LiveOccurrence.from_interval(interval, now)
        for interval in reconstruct_vehicle(vehicle, None, unknown_performer)
        if interval.is_open
    ]


def collect_live_occurrences(
    vehicles: Iterable[Vehicle],
    now: datetime,
    unknown_performer: str = "Unknown",
) -> dict[str, list[LiveOccurrence]]:
    """Open occurrences of all active vehicles, grouped by stage in process order."""
    groups: dict[str, list[LiveOccurrence]] = {}
    for vehicle in vehicles:
        if not vehicle.is_active:
            continue
        try:
            live = open_occurrences(vehicle, now, unknown_performer)
        except Exception as e:
            logger.error(
                "vehicle_live_status_failed",
                vehicle_number=vehicle.vehicle_number,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            continue
        for occurrence in live:
            groups.setdefault(occurrence.stage, []).append(occurrence)

    for occurrences in groups.values():
        occurrences.sort(key=lambda o: (o.started_at, o.vehicle_number, o.stage_name))
    return order_by_stage(groups)


# --- Vehicle-level views ---


@dataclass(frozen=True)
class VehicleFlow:
    entered: int = 0
    exited: int = 0


def count_vehicle_flow(vehicles: Iterable[Vehicle], windows: dict[str, TimeWindow]) -> dict[str, VehicleFlow]:
    """Entered/exited counts per window. Stage events play no part."""
    vehicles = list(vehicles)
    return {
        name: VehicleFlow(
            entered=sum(1 for v in vehicles if window.contains(v.entry_time)),
            exited=sum(1 for v in vehicles if v.exit_time is not None and window.contains(v.exit_time)),
        )
        for name, window in windows.items()
    }


def average_time_on_premises_ms(vehicles: Iterable[Vehicle]) -> float:
    """Mean entry-to-exit time of exited vehicles (0 when none have exited)."""
    stays = [
        elapsed_ms(v.entry_time, v.exit_time)
        for v in vehicles
        if v.exit_time is not None and v.exit_time >= v.entry_time
    ]
    return sum(stays) / len(stays) if stays else 0


def last_stage_event(vehicle: Vehicle, include_all: bool = False) -> StageEvent | None:
    """Most recent Start/Resume of the vehicle (any event type if include_all)."""
    candidates = [
        e for e in vehicle.stages
        if include_all or e.event_type in (EventType.START, EventType.RESUME)
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda e: e.timestamp)


@dataclass(frozen=True)
class StageBoard:
    active: tuple[Interval, ...] = ()
    completed: tuple[Interval, ...] = ()


def build_stage_board(
    vehicles: Iterable[Vehicle],
    unknown_performer: str = "Unknown",
) -> dict[str, StageBoard]:
    """Active and completed occurrences per stage over full vehicle histories.

    Every process stage is present, even when empty; transition markers are
    instants and do not appear.
    """
    active: dict[str, list[Interval]] = {name: [] for name in STAGE_ORDER}
    completed: dict[str, list[Interval]] = {name: [] for name in STAGE_ORDER}

    for vehicle in vehicles:
        try:
            intervals = reconstruct_vehicle(vehicle, None, unknown_performer)
        except Exception as e:
            logger.error(
                "vehicle_stage_board_failed",
                vehicle_number=vehicle.vehicle_number,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            continue
        for interval in intervals:
            if classify(interval.stage).kind == StageKind.TRANSITION_MARKER:
                continue
            active.setdefault(interval.stage, [])
            completed.setdefault(interval.stage, [])
            (active if interval.is_open else completed)[interval.stage].append(interval)

    board = {
        name: StageBoard(active=tuple(active[name]), completed=tuple(completed[name]))
        for name in active
    }
    return order_by_stage(board)
