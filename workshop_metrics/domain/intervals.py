"""Interval reconstruction from a vehicle's stage event log.

Pure functions, no I/O. The log is append-only and its order is not
chronological, so every entry point sorts before matching. Each Start is an
occurrence; closers are claimed earliest-Start-first and never reused.
"""

from collections import defaultdict

import structlog

from workshop_metrics.domain.dependencies import (
    resolve_implicit_closed,
    resolve_transition_markers,
    stage_starts,
)
from workshop_metrics.domain.durations import elapsed_ms
from workshop_metrics.domain.occurrence import Interval, sort_events
from workshop_metrics.domain.stages import StageDefinition, StageKind, classify
from workshop_metrics.domain.windows import TimeWindow
from workshop_metrics.schemas.vehicle import EventType, StageEvent, Vehicle

logger = structlog.get_logger(__name__)


def events_in_window(events: list[StageEvent], window: TimeWindow) -> list[StageEvent]:
    return [e for e in events if window.contains(e.timestamp)]


def reconstruct_symmetric(
    definition: StageDefinition,
    events: list[StageEvent],
    vehicle_number: str,
    unknown_performer: str = "Unknown",
) -> list[Interval]:
    """Start/End intervals of one stage; each Start takes the earliest unclaimed later End."""
    ends = [
        i
        for i, e in enumerate(events)
        if e.event_type == EventType.END and classify(e.stage_name) == definition
    ]
    claimed: set[int] = set()
    intervals: list[Interval] = []

    for position in stage_starts(definition, events):
        start = events[position]
        end = None
        for i in ends:
            if i not in claimed and events[i].timestamp > start.timestamp:
                claimed.add(i)
                end = events[i]
                break

        intervals.append(Interval(
            vehicle_number=vehicle_number,
            stage=definition.name,
            stage_name=start.stage_name,
            started_at=start.timestamp,
            ended_at=end.timestamp if end else None,
            performed_by=start.performer_name(unknown_performer),
            active_ms=elapsed_ms(start.timestamp, end.timestamp) if end else 0,
            work_type=start.work_type,
            bay_number=start.bay_number,
            role=start.role,
        ))

    return intervals


def _work_groups(
    definition: StageDefinition,
    events: list[StageEvent],
    vehicle_number: str,
) -> dict[tuple[str, str, str], list[StageEvent]]:
    groups: dict[tuple[str, str, str], list[StageEvent]] = defaultdict(list)
    for event in events:
        if classify(event.stage_name) != definition:
            continue
        if not event.work_type or not event.bay_number:
            logger.debug(
                "stage_event_skipped",
                vehicle_number=vehicle_number,
                stage_name=event.stage_name,
                event_type=event.event_type.value,
                reason="missing_work_type_or_bay",
            )
            continue
        groups[(event.stage_name, event.work_type, event.bay_number)].append(event)
    return groups


def reconstruct_paused_tracking(
    definition: StageDefinition,
    events: list[StageEvent],
    vehicle_number: str,
    unknown_performer: str = "Unknown",
) -> list[Interval]:
    """Start/Pause/Resume/End intervals split into active and paused time.

    Events are grouped by (stage name, work type, bay number). For every
    Start the later Pause/Resume/End events of its group are walked with a
    two-state machine seeded active; elapsed time between markers goes to
    the state that was current. The walk stops at the first unclaimed End.
    """
    intervals: list[Interval] = []

    for (stage_name, work_type, bay_number), group in _work_groups(
        definition, events, vehicle_number
    ).items():
        claimed_ends: set[int] = set()

        for start in (e for e in group if e.event_type == EventType.START):
            last_time = start.timestamp
            active = 0
            paused = 0
            is_paused = False
            end = None

            for i, event in enumerate(group):
                if event.timestamp <= start.timestamp or event.event_type == EventType.START:
                    continue
                if event.event_type == EventType.END and i in claimed_ends:
                    continue

                segment = elapsed_ms(last_time, event.timestamp)
                if is_paused:
                    paused += segment
                else:
                    active += segment
                last_time = event.timestamp

                if event.event_type == EventType.PAUSE:
                    is_paused = True
                elif event.event_type == EventType.RESUME:
                    is_paused = False
                else:
                    claimed_ends.add(i)
                    end = event
                    break

            intervals.append(Interval(
                vehicle_number=vehicle_number,
                stage=definition.name,
                stage_name=stage_name,
                started_at=start.timestamp,
                ended_at=end.timestamp if end else None,
                performed_by=start.performer_name(unknown_performer),
                active_ms=active,
                paused_ms=paused,
                work_type=work_type,
                bay_number=bay_number,
                role=start.role,
                paused=is_paused if end is None else False,
                last_marker_at=last_time,
            ))

    return intervals


def _interval_key(interval: Interval) -> tuple:
    return (
        interval.started_at,
        interval.stage,
        interval.stage_name,
        interval.work_type or "",
        interval.bay_number or "",
    )


_STRATEGIES = {
    StageKind.SYMMETRIC: reconstruct_symmetric,
    StageKind.IMPLICIT_CLOSED: resolve_implicit_closed,
    StageKind.PAUSED_TRACKING: reconstruct_paused_tracking,
    StageKind.TRANSITION_MARKER: resolve_transition_markers,
}


def reconstruct_stage(
    definition: StageDefinition,
    events: list[StageEvent],
    vehicle_number: str,
    unknown_performer: str = "Unknown",
) -> list[Interval]:
    """Run the strategy for one stage over chronologically sorted events."""
    strategy = _STRATEGIES[definition.kind]
    return strategy(definition, events, vehicle_number, unknown_performer)


def reconstruct_vehicle(
    vehicle: Vehicle,
    window: TimeWindow | None = None,
    unknown_performer: str = "Unknown",
) -> list[Interval]:
    """All intervals of one vehicle, optionally restricted to a window.

    With a window, only events inside it take part: an occurrence whose
    closer falls outside the window is open as far as this window is
    concerned. Without a window the full history is used.

    Returns:
        Intervals ordered by start time, then stage
    """
    events = sort_events(vehicle.stages)
    if window is not None:
        events = events_in_window(events, window)

    definitions: dict[str, StageDefinition] = {}
    for event in events:
        definition = classify(event.stage_name)
        definitions.setdefault(definition.name, definition)

    intervals: list[Interval] = []
    for definition in definitions.values():
        intervals.extend(
            reconstruct_stage(definition, events, vehicle.vehicle_number, unknown_performer)
        )

    intervals.sort(key=_interval_key)
    return intervals
