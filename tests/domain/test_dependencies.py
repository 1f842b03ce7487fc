"""Tests for stages closed or opened by a different stage."""
import pytest

from workshop_metrics.domain.dependencies import (
    find_closer,
    is_still_open,
    resolve_implicit_closed,
    resolve_transition_markers,
)
from workshop_metrics.domain.durations import format_duration
from workshop_metrics.domain.intervals import reconstruct_vehicle
from workshop_metrics.domain.occurrence import sort_events
from workshop_metrics.domain.stages import (
    ADDITIONAL_WORK_APPROVAL,
    BAY_ALLOCATION,
    JOB_CARD_CREATION,
    READY_FOR_WASHING,
    RECEIVED_BY_FI,
    RECEIVED_BY_TECHNICIAN,
    StageDefinition,
    StageKind,
    classify,
)

pytestmark = pytest.mark.unit


def by_stage(intervals, stage):
    return [i for i in intervals if i.stage == stage]


class TestImplicitClosure:
    def test_job_card_creation_closed_by_bay_allocation(self, ev, make_vehicle):
        """Job card creation ends when the vehicle is allocated a bay."""
        vehicle = make_vehicle("V3", [
            ev(JOB_CARD_CREATION, "Start", 0),
            ev(BAY_ALLOCATION, "Start", 30),
        ])

        (interval,) = by_stage(reconstruct_vehicle(vehicle), JOB_CARD_CREATION)

        assert format_duration(interval.total_ms) == "00:30:00"

    def test_own_end_event_is_not_the_closer(self, ev, make_vehicle):
        vehicle = make_vehicle("V3", [ev(JOB_CARD_CREATION, "Start", 0), ev(JOB_CARD_CREATION, "End", 10)])
        (interval,) = by_stage(reconstruct_vehicle(vehicle), JOB_CARD_CREATION)
        assert interval.is_open

    def test_closer_at_same_instant_does_not_close(self, ev, make_vehicle):
        vehicle = make_vehicle("V3", [ev(JOB_CARD_CREATION, "Start", 0), ev(BAY_ALLOCATION, "Start", 0)])
        (interval,) = by_stage(reconstruct_vehicle(vehicle), JOB_CARD_CREATION)
        assert interval.is_open

    def test_closer_is_claimed_once(self, ev, make_vehicle):
        vehicle = make_vehicle("V3", [
            ev(JOB_CARD_CREATION, "Start", 0),
            ev(JOB_CARD_CREATION, "Start", 5),
            ev(BAY_ALLOCATION, "Start", 30),
        ])

        first, second = by_stage(reconstruct_vehicle(vehicle), JOB_CARD_CREATION)

        assert first.total_ms == 30 * 60_000
        assert second.is_open

    def test_bay_allocation_closed_by_bay_work(self, ev, make_vehicle):
        vehicle = make_vehicle("V3", [
            ev(BAY_ALLOCATION, "Start", 0),
            ev("Bay Work", "Start", 12, work_type="PM", bay_number="1"),
        ])
        (interval,) = by_stage(reconstruct_vehicle(vehicle), BAY_ALLOCATION)
        assert interval.total_ms == 12 * 60_000

    def test_ready_for_washing_closed_by_washing(self, ev, make_vehicle):
        vehicle = make_vehicle("V3", [ev(READY_FOR_WASHING, "Start", 0), ev("Washing", "Start", 25)])
        (interval,) = by_stage(reconstruct_vehicle(vehicle), READY_FOR_WASHING)
        assert interval.total_ms == 25 * 60_000

    def test_additional_work_approval_needs_second_bay_allocation(self, ev, make_vehicle):
        """First approval claims allocations 1 and 2; the second approval only has allocation 3."""
        vehicle = make_vehicle("V3", [
            ev(ADDITIONAL_WORK_APPROVAL, "Start", 10),
            ev(BAY_ALLOCATION, "Start", 20),
            ev(BAY_ALLOCATION, "Start", 40),
            ev(ADDITIONAL_WORK_APPROVAL, "Start", 50),
            ev(BAY_ALLOCATION, "Start", 60),
        ])

        first, second = by_stage(reconstruct_vehicle(vehicle), ADDITIONAL_WORK_APPROVAL)

        assert first.total_ms == 30 * 60_000
        assert second.is_open

    def test_additional_work_approval_open_after_one_allocation(self, ev, make_vehicle):
        vehicle = make_vehicle("V3", [ev(ADDITIONAL_WORK_APPROVAL, "Start", 0), ev(BAY_ALLOCATION, "Start", 10)])
        (interval,) = by_stage(reconstruct_vehicle(vehicle), ADDITIONAL_WORK_APPROVAL)
        assert interval.is_open

    def test_definition_without_closure_rejected(self):
        with pytest.raises(ValueError, match="no closure rule"):
            resolve_implicit_closed(StageDefinition("X", StageKind.IMPLICIT_CLOSED), [], "V")


class TestFindCloser:
    def test_returns_claimed_positions(self, ev, make_vehicle):
        events = sort_events(make_vehicle("V", [
            ev(ADDITIONAL_WORK_APPROVAL, "Start", 0),
            ev(BAY_ALLOCATION, "Start", 10),
            ev("Washing", "Start", 15),
            ev(BAY_ALLOCATION, "Start", 20),
        ]).stages)
        rule = classify(ADDITIONAL_WORK_APPROVAL).closure

        assert find_closer(events[0], events, rule, set()) == [1, 3]
        assert find_closer(events[0], events, rule, {1}) is None

    def test_prefix_rule_matches_suffixed_names(self, ev, make_vehicle):
        events = sort_events(make_vehicle("V", [
            ev(JOB_CARD_CREATION, "Start", 0),
            ev(BAY_ALLOCATION + " (Additional)", "Start", 5),
        ]).stages)
        assert find_closer(events[0], events, classify(JOB_CARD_CREATION).closure, set()) == [1]


class TestTransitionMarkers:
    def test_technician_marker_measured_from_bay_allocation(self, ev, make_vehicle):
        vehicle = make_vehicle("V", [
            ev(BAY_ALLOCATION, "Start", 0),
            ev(RECEIVED_BY_TECHNICIAN, "Start", 15, user="Anil"),
        ])

        (interval,) = by_stage(reconstruct_vehicle(vehicle), RECEIVED_BY_TECHNICIAN)

        assert interval.total_ms == 15 * 60_000
        assert interval.performed_by == "Anil"

    def test_fi_marker_measured_from_technician_marker(self, ev, make_vehicle):
        vehicle = make_vehicle("V", [
            ev(BAY_ALLOCATION, "Start", 0),
            ev(RECEIVED_BY_TECHNICIAN, "Start", 15),
            ev(RECEIVED_BY_FI, "Start", 40),
        ])
        (interval,) = by_stage(reconstruct_vehicle(vehicle), RECEIVED_BY_FI)
        assert interval.total_ms == 25 * 60_000

    def test_marker_pairs_with_most_recent_opener(self, ev, make_vehicle):
        vehicle = make_vehicle("V", [
            ev(BAY_ALLOCATION, "Start", 0),
            ev(BAY_ALLOCATION, "Start", 20),
            ev(RECEIVED_BY_TECHNICIAN, "Start", 30),
        ])
        (interval,) = by_stage(reconstruct_vehicle(vehicle), RECEIVED_BY_TECHNICIAN)
        assert interval.total_ms == 10 * 60_000

    def test_openers_are_not_reused(self, ev, make_vehicle):
        vehicle = make_vehicle("V", [
            ev(BAY_ALLOCATION, "Start", 0),
            ev(RECEIVED_BY_TECHNICIAN, "Start", 10),
            ev(RECEIVED_BY_TECHNICIAN, "Start", 20),
        ])
        (interval,) = by_stage(reconstruct_vehicle(vehicle), RECEIVED_BY_TECHNICIAN)
        assert interval.total_ms == 10 * 60_000

    def test_marker_without_opener_yields_nothing(self, ev, make_vehicle):
        vehicle = make_vehicle("V", [ev(RECEIVED_BY_FI, "Start", 10)])
        assert reconstruct_vehicle(vehicle) == []

    def test_opener_after_marker_is_ignored(self, ev, make_vehicle):
        vehicle = make_vehicle("V", [ev(RECEIVED_BY_TECHNICIAN, "Start", 0), ev(BAY_ALLOCATION, "Start", 10)])
        assert by_stage(reconstruct_vehicle(vehicle), RECEIVED_BY_TECHNICIAN) == []

    def test_definition_without_opener_rejected(self):
        with pytest.raises(ValueError, match="no opener rule"):
            resolve_transition_markers(StageDefinition("X", StageKind.TRANSITION_MARKER), [], "V")


class TestIsStillOpen:
    def test_closed_by_downstream_start(self, ev, make_vehicle):
        vehicle = make_vehicle("V", [ev(JOB_CARD_CREATION, "Start", 0), ev(BAY_ALLOCATION, "Start", 30)])
        start = vehicle.stages[0]
        assert not is_still_open(start, list(vehicle.stages))

    def test_open_without_closer(self, ev, make_vehicle):
        vehicle = make_vehicle("V", [ev(JOB_CARD_CREATION, "Start", 0)])
        assert is_still_open(vehicle.stages[0], list(vehicle.stages))

    def test_paused_tracking_matches_work_type_and_bay(self, ev, make_vehicle):
        vehicle = make_vehicle("V", [
            ev("Bay Work", "Start", 0, work_type="PM", bay_number="1"),
            ev("Bay Work", "Start", 0, work_type="AC", bay_number="2"),
            ev("Bay Work", "End", 30, work_type="PM", bay_number="1"),
        ])
        pm_start = next(e for e in vehicle.stages if e.work_type == "PM" and e.event_type.value == "Start")
        ac_start = next(e for e in vehicle.stages if e.work_type == "AC")

        assert not is_still_open(pm_start, list(vehicle.stages))
        assert is_still_open(ac_start, list(vehicle.stages))

    def test_transition_markers_are_never_open(self, ev, make_vehicle):
        vehicle = make_vehicle("V", [ev(RECEIVED_BY_TECHNICIAN, "Start", 0)])
        assert not is_still_open(vehicle.stages[0], list(vehicle.stages))

    def test_uses_full_history_in_any_order(self, ev, make_vehicle):
        vehicle = make_vehicle("V", [ev("Washing", "End", 90), ev("Washing", "Start", 0)])
        start = next(e for e in vehicle.stages if e.event_type.value == "Start")
        assert not is_still_open(start, list(vehicle.stages))
