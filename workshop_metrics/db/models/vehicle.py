"""VehicleRecord model: one vehicle visit with its embedded stage event log."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, String, Uuid
from sqlalchemy.types import TypeDecorator

from workshop_metrics.db.base import Base


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetimes stored as UTC.

    Backends such as SQLite drop the offset, so values are converted to UTC
    on write and read back as UTC. Naive values are taken to be UTC already.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class VehicleRecord(Base):
    __tablename__ = "vehicles"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    vehicle_number = Column(String(32), nullable=False, unique=True, index=True)

    entry_time = Column(UTCDateTime, nullable=False, index=True)
    exit_time = Column(UTCDateTime, nullable=True, index=True)  # null while on premises

    # Append-only list of stage event documents (camelCase keys, ISO timestamps)
    stages = Column(JSON, nullable=False, default=list)

    created_at = Column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    def to_document(self) -> dict:
        """The record as a store document, the shape Vehicle.from_document reads."""
        return {
            "vehicleNumber": self.vehicle_number,
            "entryTime": _iso(self.entry_time),
            "exitTime": _iso(self.exit_time),
            "stages": list(self.stages or []),
        }
