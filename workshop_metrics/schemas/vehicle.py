"""Pydantic models for vehicle documents read from the store.

Documents use camelCase keys (vehicleNumber, stageName, ...). Models accept
them as aliases and expose snake_case attributes. Naive timestamps are
treated as UTC, which is how document stores hand them back.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from workshop_metrics.core.exceptions import MalformedRecordError
from workshop_metrics.domain.stages import StageKind, classify

logger = structlog.get_logger(__name__)


def _ensure_aware(value: datetime | None) -> datetime | None:
    """Attach UTC to naive values and truncate to whole milliseconds.

    Durations are measured in milliseconds, so ordering and closure checks
    must see instants at the same resolution.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.replace(microsecond=value.microsecond - value.microsecond % 1000)


class EventType(str, Enum):
    """Lifecycle event kinds an operator can record for a stage."""

    START = "Start"
    PAUSE = "Pause"
    RESUME = "Resume"
    END = "End"


class RecordModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class PerformedBy(RecordModel):
    user_id: str | None = None
    user_name: str | None = None


class StageEvent(RecordModel):
    """A single immutable stage lifecycle event."""

    stage_name: str = Field(..., min_length=1)
    event_type: EventType
    timestamp: datetime
    performed_by: PerformedBy | None = None
    role: str | None = None
    work_type: str | None = None
    bay_number: str | None = None

    @field_validator("timestamp")
    @classmethod
    def _aware_timestamp(cls, value: datetime) -> datetime:
        return _ensure_aware(value)

    @field_validator("work_type", "bay_number", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        if isinstance(value, int):
            return str(value)
        return value

    @property
    def is_unplaceable(self) -> bool:
        """A paused-tracking event without the work type and bay that group it."""
        if self.work_type and self.bay_number:
            return False
        return classify(self.stage_name).kind == StageKind.PAUSED_TRACKING

    def performer_name(self, default: str = "Unknown") -> str:
        if self.performed_by and self.performed_by.user_name:
            return self.performed_by.user_name
        return default


class Vehicle(RecordModel):
    """A vehicle on (or formerly on) the premises with its embedded event log."""

    vehicle_number: str = Field(..., min_length=1)
    entry_time: datetime
    exit_time: datetime | None = None
    stages: tuple[StageEvent, ...] = ()

    @field_validator("entry_time", "exit_time")
    @classmethod
    def _aware_times(cls, value: datetime | None) -> datetime | None:
        return _ensure_aware(value)

    @property
    def is_active(self) -> bool:
        return self.exit_time is None

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "Vehicle":
        """Build a Vehicle from a raw store document.

        Stage events are validated one at a time; malformed events are
        logged and dropped so that one bad scan never hides the rest of
        the vehicle's history.

        Raises:
            MalformedRecordError: if the vehicle-level fields are invalid
        """
        raw_stages = doc.get("stages") or []
        stages: list[StageEvent] = []
        for position, raw in enumerate(raw_stages):
            try:
                event = StageEvent.model_validate(raw)
            except ValidationError as e:
                logger.warning(
                    "stage_event_skipped",
                    vehicle_number=doc.get("vehicleNumber"),
                    position=position,
                    reason="malformed",
                    errors=[err["loc"] for err in e.errors()],
                )
                continue
            if event.is_unplaceable:
                logger.warning(
                    "stage_event_unplaceable",
                    vehicle_number=doc.get("vehicleNumber"),
                    position=position,
                    stage_name=event.stage_name,
                    reason="missing_work_type_or_bay",
                )
            stages.append(event)

        fields = {k: v for k, v in doc.items() if k != "stages"}
        try:
            return cls.model_validate({**fields, "stages": stages})
        except ValidationError as e:
            raise MalformedRecordError(
                f"Invalid vehicle document {doc.get('vehicleNumber')!r}: {e.error_count()} error(s)"
            ) from e


def load_vehicles(docs: list[dict[str, Any]]) -> list[Vehicle]:
    """Parse store documents, dropping (and logging) ones that cannot be read."""
    vehicles: list[Vehicle] = []
    for doc in docs:
        try:
            vehicles.append(Vehicle.from_document(doc))
        except MalformedRecordError as e:
            logger.warning("vehicle_record_skipped", vehicle_number=doc.get("vehicleNumber"), error=str(e))
    return vehicles
