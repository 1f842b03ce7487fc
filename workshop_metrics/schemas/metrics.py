"""Pydantic schemas for stage metrics payloads.

Fields are snake_case in Python and serialise with camelCase aliases
(`model_dump(by_alias=True)`), matching the dashboard's wire format.
All list/map fields default to empty (never null).
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from workshop_metrics.domain.aggregation import (
    LiveOccurrence,
    OccurrenceRecord,
    StageTotals,
    WindowAggregate,
)
from workshop_metrics.domain.durations import ZERO_DURATION, format_duration


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OccurrenceDetail(CamelModel):
    """One closed occurrence listed under a window/stage."""

    vehicle_number: str
    stage_name: str
    start_time: datetime
    end_time: datetime
    duration: str = Field(..., description="HH:MM:SS")
    duration_ms: int

    @classmethod
    def from_record(cls, record: OccurrenceRecord) -> "OccurrenceDetail":
        return cls(
            vehicle_number=record.vehicle_number,
            stage_name=record.stage_name,
            start_time=record.start_time,
            end_time=record.end_time,
            duration=format_duration(record.duration_ms),
            duration_ms=record.duration_ms,
        )


class StageMetrics(CamelModel):
    """Totals for one stage in one window."""

    total_duration: str = ZERO_DURATION
    count: int = Field(0, ge=0)
    average: str = ZERO_DURATION
    total_duration_ms: int = 0
    average_ms: float = 0
    details: list[OccurrenceDetail] = Field(default_factory=list)

    @classmethod
    def from_totals(cls, totals: StageTotals) -> "StageMetrics":
        return cls(
            total_duration=format_duration(totals.total_ms),
            count=totals.count,
            average=format_duration(totals.average_ms),
            total_duration_ms=totals.total_ms,
            average_ms=totals.average_ms,
            details=[OccurrenceDetail.from_record(r) for r in totals.details],
        )


class PausedStageMetrics(StageMetrics):
    """Totals for a paused-tracking stage, split into active and paused time."""

    active_duration: str = ZERO_DURATION
    paused_duration: str = ZERO_DURATION
    average_active: str = ZERO_DURATION

    @classmethod
    def from_totals(cls, totals: StageTotals) -> "PausedStageMetrics":
        base = StageMetrics.from_totals(totals)
        return cls(
            **base.model_dump(),
            active_duration=format_duration(totals.active_ms),
            paused_duration=format_duration(totals.paused_ms),
            average_active=format_duration(totals.average_active_ms),
        )


class BayWorkMetrics(CamelModel):
    by_work_type: dict[str, PausedStageMetrics] = Field(default_factory=dict)
    overall: PausedStageMetrics = Field(default_factory=PausedStageMetrics)

    @classmethod
    def from_aggregate(cls, aggregate: WindowAggregate) -> "BayWorkMetrics":
        return cls(
            by_work_type={
                work_type: PausedStageMetrics.from_totals(aggregate.by_work_type[work_type])
                for work_type in sorted(aggregate.by_work_type)
            },
            overall=PausedStageMetrics.from_totals(aggregate.overall),
        )


# window name -> stage name -> metrics
WindowStageMetrics = dict[str, dict[str, StageMetrics]]


class DashboardMetricsResponse(CamelModel):
    """Requested metric families, keyed by window then stage."""

    generated_at: datetime
    stage_averages: WindowStageMetrics | None = None
    special_stage_averages: WindowStageMetrics | None = None
    job_card_received: WindowStageMetrics | None = None
    bay_work: dict[str, BayWorkMetrics] | None = None


class LiveOccurrenceResponse(CamelModel):
    vehicle_number: str
    stage_name: str
    started_at: datetime
    performed_by: str
    elapsed: str
    elapsed_ms: int
    active_ms: int
    paused_ms: int
    work_type: str | None = None
    bay_number: str | None = None
    role: str | None = None

    @classmethod
    def from_occurrence(cls, occurrence: LiveOccurrence) -> "LiveOccurrenceResponse":
        return cls(
            vehicle_number=occurrence.vehicle_number,
            stage_name=occurrence.stage_name,
            started_at=occurrence.started_at,
            performed_by=occurrence.performed_by,
            elapsed=format_duration(occurrence.elapsed_ms),
            elapsed_ms=occurrence.elapsed_ms,
            active_ms=occurrence.active_ms,
            paused_ms=occurrence.paused_ms,
            work_type=occurrence.work_type,
            bay_number=occurrence.bay_number,
            role=occurrence.role,
        )


class LastStage(CamelModel):
    stage_name: str
    event_type: str
    timestamp: datetime
    performed_by: str
    since: str


class VehiclePresence(CamelModel):
    """A vehicle with its time on premises (so far, if still inside)."""

    vehicle_number: str
    entry_time: datetime
    exit_time: datetime | None = None
    is_active: bool
    duration: str
    duration_ms: int
    last_stage: LastStage | None = None


class TodaysVehicles(CamelModel):
    count: int = 0
    active_count: int = 0
    completed_count: int = 0
    vehicles: list[VehiclePresence] = Field(default_factory=list)


class LiveStatusResponse(CamelModel):
    generated_at: datetime
    total_active_vehicles: int = 0
    active_vehicles: list[VehiclePresence] = Field(default_factory=list)
    todays_vehicles: TodaysVehicles = Field(default_factory=TodaysVehicles)
    live_stage_status: dict[str, list[LiveOccurrenceResponse]] = Field(default_factory=dict)


class VehicleFlowCounts(CamelModel):
    entered: int = 0
    exited: int = 0


class VehicleSummaryResponse(CamelModel):
    generated_at: datetime
    vehicles_inside: list[VehiclePresence] = Field(default_factory=list)
    flow: dict[str, VehicleFlowCounts] = Field(default_factory=dict)
    average_time_spent: str = ZERO_DURATION
    longest_active: VehiclePresence | None = None


class StageBoardEntry(CamelModel):
    vehicle_number: str
    stage_name: str
    start_time: datetime
    end_time: datetime | None = None
    performed_by: str


class StageBoardColumn(CamelModel):
    active: list[StageBoardEntry] = Field(default_factory=list)
    completed: list[StageBoardEntry] = Field(default_factory=list)


class StageBoardResponse(CamelModel):
    window_start: datetime
    window_end: datetime
    stages: dict[str, StageBoardColumn] = Field(default_factory=dict)


class ActiveStage(CamelModel):
    stage_name: str
    started_at: datetime
    elapsed: str
    elapsed_ms: int
    performed_by: str
    role: str | None = None
    is_dependent_stage: bool = False
    work_type: str | None = None
    bay_number: str | None = None


class VehicleActiveStages(CamelModel):
    vehicle_number: str
    entry_time: datetime
    active_stages: list[ActiveStage] = Field(default_factory=list)
    total_active_stages: int = 0


class ActiveStagesResponse(CamelModel):
    generated_at: datetime
    count: int = 0
    vehicles: list[VehicleActiveStages] = Field(default_factory=list)
