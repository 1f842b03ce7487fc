"""StageMetricsService: stage timing analytics over the vehicle store.

Orchestrates domain functions with vehicle source queries. Every public
call captures one RequestClock, so all windows of a request share the same
`now`, and binds a request_id to the structlog context for its duration.
"""

from datetime import datetime

import structlog

from workshop_metrics.core.config import Settings, get_settings
from workshop_metrics.core.exceptions import InvalidMetricTypeError
from workshop_metrics.core.logging import request_context
from workshop_metrics.db.vehicle_source import VehicleSource
from workshop_metrics.domain.aggregation import (
    WindowAggregate,
    aggregate_window,
    average_time_on_premises_ms,
    build_stage_board,
    collect_live_occurrences,
    count_vehicle_flow,
    last_stage_event,
)
from workshop_metrics.domain.durations import elapsed_ms, format_duration
from workshop_metrics.domain.stages import (
    JOB_CARD_RECEIVED_STAGES,
    KNOWN_STAGES,
    SPECIAL_STAGES,
    STAGE_ORDER,
    StageKind,
    classify,
    order_by_stage,
)
from workshop_metrics.domain.windows import RequestClock, resolve_timezone
from workshop_metrics.schemas.metrics import (
    ActiveStage,
    ActiveStagesResponse,
    BayWorkMetrics,
    DashboardMetricsResponse,
    LastStage,
    LiveOccurrenceResponse,
    LiveStatusResponse,
    StageBoardColumn,
    StageBoardEntry,
    StageBoardResponse,
    StageMetrics,
    TodaysVehicles,
    VehicleActiveStages,
    VehicleFlowCounts,
    VehiclePresence,
    VehicleSummaryResponse,
)
from workshop_metrics.schemas.vehicle import Vehicle

logger = structlog.get_logger(__name__)

STAGE_AVERAGES = "stage-averages"
SPECIAL_STAGE_AVERAGES = "special-stage-averages"
JOB_CARD_RECEIVED = "job-card-received"
BAY_WORK = "bay-work"

METRIC_TYPES = ["all", STAGE_AVERAGES, SPECIAL_STAGE_AVERAGES, JOB_CARD_RECEIVED, BAY_WORK]


def _stage_family(
    aggregate: WindowAggregate,
    stages: list[str],
    include_unrecognized: bool = False,
) -> dict[str, StageMetrics]:
    """Metrics for the listed stages (zeros when absent), in process order.

    With include_unrecognized, stages outside the process table that had
    closed occurrences are appended in the order they were encountered.
    """
    family = {name: StageMetrics.from_totals(aggregate.stage(name)) for name in stages}
    if include_unrecognized:
        for name, totals in aggregate.by_stage.items():
            if name not in KNOWN_STAGES:
                family[name] = StageMetrics.from_totals(totals)
    return order_by_stage(family)


class StageMetricsService:
    """Service layer for stage timing analytics.

    All computation is delegated to pure domain functions; this class only
    fetches snapshots from the injected source and shapes responses.
    """

    def __init__(self, source: VehicleSource, settings: Settings | None = None):
        """Initialize with an injected vehicle source.

        Args:
            source: Storage collaborator returning parsed vehicles
            settings: Defaults to the cached application settings
        """
        self.source = source
        self.settings = settings or get_settings()
        self.tz = resolve_timezone(self.settings.business_timezone)

    def _clock(self, now: datetime | None) -> RequestClock:
        return RequestClock.capture(self.tz, now)

    def _presence(self, vehicle: Vehicle, now: datetime) -> VehiclePresence:
        end = vehicle.exit_time or now
        duration = max(0, elapsed_ms(vehicle.entry_time, end))
        last = last_stage_event(vehicle)
        last_stage = None
        if last is not None:
            last_stage = LastStage(
                stage_name=last.stage_name,
                event_type=last.event_type.value,
                timestamp=last.timestamp,
                performed_by=last.performer_name(self.settings.unknown_performer),
                since=format_duration(max(0, elapsed_ms(last.timestamp, now))),
            )
        return VehiclePresence(
            vehicle_number=vehicle.vehicle_number,
            entry_time=vehicle.entry_time,
            exit_time=vehicle.exit_time,
            is_active=vehicle.is_active,
            duration=format_duration(duration),
            duration_ms=duration,
            last_stage=last_stage,
        )

    async def get_dashboard_metrics(
        self,
        metric_type: str = "all",
        now: datetime | None = None,
    ) -> DashboardMetricsResponse:
        """Closed-occurrence metrics per window for the requested families.

        Args:
            metric_type: "all" or one of the family names in METRIC_TYPES
            now: Reference instant (injectable for testing)

        Raises:
            InvalidMetricTypeError: for an unknown family
            DataFetchError: if the store cannot be read (no partial results)
        """
        if metric_type not in METRIC_TYPES:
            raise InvalidMetricTypeError(metric_type, METRIC_TYPES)

        clock = self._clock(now)
        with request_context("dashboard_metrics"):
            aggregates: dict[str, WindowAggregate] = {}
            for name, window in clock.windows(self.settings.dashboard_windows).items():
                vehicles = await self.source.find_with_events_between(window.start, window.end)
                aggregates[name] = aggregate_window(vehicles, window, self.settings.unknown_performer)
                logger.debug(
                    "window_aggregated",
                    window=name,
                    vehicles=len(vehicles),
                    stages=len(aggregates[name].by_stage),
                )

            def wanted(family: str) -> bool:
                return metric_type in ("all", family)

            response = DashboardMetricsResponse(generated_at=clock.now)
            if wanted(STAGE_AVERAGES):
                response.stage_averages = {
                    name: _stage_family(agg, STAGE_ORDER, include_unrecognized=True)
                    for name, agg in aggregates.items()
                }
            if wanted(SPECIAL_STAGE_AVERAGES):
                response.special_stage_averages = {
                    name: _stage_family(agg, SPECIAL_STAGES) for name, agg in aggregates.items()
                }
            if wanted(JOB_CARD_RECEIVED):
                response.job_card_received = {
                    name: _stage_family(agg, JOB_CARD_RECEIVED_STAGES) for name, agg in aggregates.items()
                }
            if wanted(BAY_WORK):
                response.bay_work = {
                    name: BayWorkMetrics.from_aggregate(agg) for name, agg in aggregates.items()
                }

            logger.info("dashboard_metrics_computed", metric_type=metric_type, windows=list(aggregates))
            return response

    async def get_live_status(self, now: datetime | None = None) -> LiveStatusResponse:
        """Currently open occurrences of vehicles on premises, plus today's entries."""
        clock = self._clock(now)
        with request_context("live_status"):
            active = await self.source.find_active()
            today = clock.window("today")
            todays = await self.source.find_entered_between(today.start, today.end)

            live = collect_live_occurrences(active, clock.now, self.settings.unknown_performer)
            todays_presence = [self._presence(v, clock.now) for v in todays]

            logger.info(
                "live_status_computed",
                active_vehicles=len(active),
                open_occurrences=sum(len(o) for o in live.values()),
            )
            return LiveStatusResponse(
                generated_at=clock.now,
                total_active_vehicles=len(active),
                active_vehicles=[self._presence(v, clock.now) for v in active],
                todays_vehicles=TodaysVehicles(
                    count=len(todays_presence),
                    active_count=sum(1 for p in todays_presence if p.is_active),
                    completed_count=sum(1 for p in todays_presence if not p.is_active),
                    vehicles=todays_presence,
                ),
                live_stage_status={
                    stage: [LiveOccurrenceResponse.from_occurrence(o) for o in occurrences]
                    for stage, occurrences in live.items()
                },
            )

    async def get_vehicle_summary(
        self,
        now: datetime | None = None,
        newest_first: bool = True,
    ) -> VehicleSummaryResponse:
        """Vehicles inside, entered/exited counts, and average time on premises."""
        clock = self._clock(now)
        with request_context("vehicle_summary"):
            windows = clock.windows(self.settings.summary_windows)
            inside = await self.source.find_active()
            exited = await self.source.find_exited()

            span_start = min(w.start for w in windows.values())
            span_end = max(w.end for w in windows.values())
            entered = await self.source.find_entered_between(span_start, span_end)
            left = await self.source.find_exited_between(span_start, span_end)
            in_span = {v.vehicle_number: v for v in entered + left}
            flow = count_vehicle_flow(in_span.values(), windows)

            oldest_first = sorted(inside, key=lambda v: v.entry_time)
            listed = list(reversed(oldest_first)) if newest_first else oldest_first

            logger.info("vehicle_summary_computed", inside=len(inside), exited=len(exited))
            return VehicleSummaryResponse(
                generated_at=clock.now,
                vehicles_inside=[self._presence(v, clock.now) for v in listed],
                flow={
                    name: VehicleFlowCounts(entered=counts.entered, exited=counts.exited)
                    for name, counts in flow.items()
                },
                average_time_spent=format_duration(average_time_on_premises_ms(exited)),
                longest_active=self._presence(oldest_first[0], clock.now) if oldest_first else None,
            )

    async def get_stage_board(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        now: datetime | None = None,
    ) -> StageBoardResponse:
        """Active and completed occurrences per stage for vehicles entering in a range.

        Raises:
            InvalidWindowError: if end is before start (raised before any fetch)
        """
        clock = self._clock(now)
        window = clock.custom(start, end)
        with request_context("stage_board"):
            vehicles = await self.source.find_entered_between(window.start, window.end)
            board = build_stage_board(vehicles, self.settings.unknown_performer)

            def entry(interval) -> StageBoardEntry:
                return StageBoardEntry(
                    vehicle_number=interval.vehicle_number,
                    stage_name=interval.stage_name,
                    start_time=interval.started_at,
                    end_time=interval.ended_at,
                    performed_by=interval.performed_by,
                )

            logger.info("stage_board_computed", vehicles=len(vehicles))
            return StageBoardResponse(
                window_start=window.start,
                window_end=window.end,
                stages={
                    stage: StageBoardColumn(
                        active=[entry(i) for i in column.active],
                        completed=[entry(i) for i in column.completed],
                    )
                    for stage, column in board.items()
                },
            )

    async def get_active_stages(self, now: datetime | None = None) -> ActiveStagesResponse:
        """Per active vehicle, the stages it currently has open (vehicles with none omitted)."""
        clock = self._clock(now)
        with request_context("active_stages"):
            active = sorted(await self.source.find_active(), key=lambda v: v.entry_time, reverse=True)
            live = collect_live_occurrences(active, clock.now, self.settings.unknown_performer)

            per_vehicle: dict[str, list[ActiveStage]] = {}
            for occurrences in live.values():
                for o in occurrences:
                    per_vehicle.setdefault(o.vehicle_number, []).append(ActiveStage(
                        stage_name=o.stage_name,
                        started_at=o.started_at,
                        elapsed=format_duration(o.elapsed_ms),
                        elapsed_ms=o.elapsed_ms,
                        performed_by=o.performed_by,
                        role=o.role,
                        is_dependent_stage=classify(o.stage).kind == StageKind.IMPLICIT_CLOSED,
                        work_type=o.work_type,
                        bay_number=o.bay_number,
                    ))

            vehicles = [
                VehicleActiveStages(
                    vehicle_number=v.vehicle_number,
                    entry_time=v.entry_time,
                    active_stages=per_vehicle[v.vehicle_number],
                    total_active_stages=len(per_vehicle[v.vehicle_number]),
                )
                for v in active
                if v.vehicle_number in per_vehicle
            ]
            return ActiveStagesResponse(generated_at=clock.now, count=len(vehicles), vehicles=vehicles)
