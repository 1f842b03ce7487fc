"""Resolution of stages closed (or opened) by a different stage.

Pure functions, no I/O. The closure and opener rules are data in
`domain.stages`; this module is the single interpreter for them.

All functions expect `events` in chronological order (see
`domain.occurrence.sort_events`). Claims are tracked by position in that
list, so a closing Start used by one occurrence is never reused by a later
occurrence of the same stage.
"""

import structlog

from workshop_metrics.domain.durations import elapsed_ms
from workshop_metrics.domain.occurrence import Interval, sort_events
from workshop_metrics.domain.stages import (
    ClosureRule,
    StageDefinition,
    StageKind,
    classify,
    name_matches,
)
from workshop_metrics.schemas.vehicle import EventType, StageEvent

logger = structlog.get_logger(__name__)


def stage_starts(definition: StageDefinition, events: list[StageEvent]) -> list[int]:
    """Positions of the Start events that belong to `definition`."""
    return [
        i
        for i, e in enumerate(events)
        if e.event_type == EventType.START and classify(e.stage_name) == definition
    ]


def find_closer(
    start: StageEvent,
    events: list[StageEvent],
    rule: ClosureRule,
    claimed: set[int],
) -> list[int] | None:
    """Find the downstream Starts that close an occurrence.

    Args:
        start: The occurrence's Start event
        events: Chronologically sorted events of the vehicle
        rule: Closure rule of the occurrence's stage
        claimed: Positions already used by earlier occurrences of the same stage

    Returns:
        Positions of the first `rule.occurrence` unclaimed matching Starts
        strictly after `start` (the last one is the closer), or None if
        there are not enough of them yet.
    """
    picked: list[int] = []
    for i, event in enumerate(events):
        if i in claimed or event.event_type != EventType.START:
            continue
        if event.timestamp <= start.timestamp:
            continue
        if not name_matches(rule.stage, rule.match, event.stage_name):
            continue
        picked.append(i)
        if len(picked) == rule.occurrence:
            return picked
    return None


def resolve_implicit_closed(
    definition: StageDefinition,
    events: list[StageEvent],
    vehicle_number: str,
    unknown_performer: str = "Unknown",
) -> list[Interval]:
    """Intervals of a stage that is closed by a downstream stage's Start.

    Occurrences are processed earliest first; each claims its closer(s).
    Occurrences without enough unclaimed closers are returned open.
    """
    if definition.closure is None:
        raise ValueError(f"Stage '{definition.name}' has no closure rule")

    intervals: list[Interval] = []
    claimed: set[int] = set()

    for position in stage_starts(definition, events):
        start = events[position]
        picked = find_closer(start, events, definition.closure, claimed)
        closer = None
        if picked is not None:
            claimed.update(picked)
            closer = events[picked[-1]]

        intervals.append(Interval(
            vehicle_number=vehicle_number,
            stage=definition.name,
            stage_name=start.stage_name,
            started_at=start.timestamp,
            ended_at=closer.timestamp if closer else None,
            performed_by=start.performer_name(unknown_performer),
            active_ms=elapsed_ms(start.timestamp, closer.timestamp) if closer else 0,
            work_type=start.work_type,
            bay_number=start.bay_number,
            role=start.role,
        ))

    return intervals


def resolve_transition_markers(
    definition: StageDefinition,
    events: list[StageEvent],
    vehicle_number: str,
    unknown_performer: str = "Unknown",
) -> list[Interval]:
    """Intervals ending at a marker Start, measured from its opener.

    Each marker pairs with the most recent earlier opener Start not already
    used by a previous marker. Markers with no such opener yield nothing.
    """
    if definition.opener is None:
        raise ValueError(f"Stage '{definition.name}' has no opener rule")

    rule = definition.opener
    intervals: list[Interval] = []
    claimed: set[int] = set()

    for position in stage_starts(definition, events):
        marker = events[position]
        opener_position = None
        for i in range(position - 1, -1, -1):
            candidate = events[i]
            if i in claimed or candidate.event_type != EventType.START:
                continue
            if candidate.timestamp >= marker.timestamp:
                continue
            if name_matches(rule.stage, rule.match, candidate.stage_name):
                opener_position = i
                break

        if opener_position is None:
            logger.debug(
                "transition_marker_without_opener",
                vehicle_number=vehicle_number,
                stage=definition.name,
                timestamp=marker.timestamp.isoformat(),
            )
            continue

        claimed.add(opener_position)
        opener = events[opener_position]
        intervals.append(Interval(
            vehicle_number=vehicle_number,
            stage=definition.name,
            stage_name=marker.stage_name,
            started_at=opener.timestamp,
            ended_at=marker.timestamp,
            performed_by=marker.performer_name(unknown_performer),
            active_ms=elapsed_ms(opener.timestamp, marker.timestamp),
            role=marker.role,
        ))

    return intervals


def is_still_open(start: StageEvent, all_events: list[StageEvent], vehicle_number: str = "") -> bool:
    """Whether the occurrence opened by `start` has no qualifying closer yet.

    Evaluated against the vehicle's full history, never a reporting window:
    a closer may fall outside the window that contains the Start.
    Transition markers are instantaneous and never open.
    """
    definition = classify(start.stage_name)
    if definition.kind == StageKind.TRANSITION_MARKER:
        return False

    # Local import: the reconstructor depends on this module for implicit stages
    from workshop_metrics.domain.intervals import reconstruct_stage

    events = sort_events(all_events)
    for interval in reconstruct_stage(definition, events, vehicle_number):
        same_start = interval.stage_name == start.stage_name and interval.started_at == start.timestamp
        same_work = start.work_type is None or interval.work_type == start.work_type
        same_bay = start.bay_number is None or interval.bay_number == start.bay_number
        if same_start and same_work and same_bay:
            return interval.is_open
    return False
