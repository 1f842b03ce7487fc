"""Vehicle sources: the storage collaborator the metrics service reads from.

A source returns parsed Vehicles with their full embedded event logs. It
never retries; any storage failure surfaces as DataFetchError so a request
fails as a whole instead of reporting partial numbers.
"""

from datetime import datetime, timezone
from typing import Any, Protocol

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from workshop_metrics.core.exceptions import DataFetchError
from workshop_metrics.db.models.vehicle import VehicleRecord
from workshop_metrics.schemas.vehicle import Vehicle, load_vehicles

logger = structlog.get_logger(__name__)


class VehicleSource(Protocol):
    async def find_with_events_between(self, start: datetime, end: datetime) -> list[Vehicle]:
        """Vehicles with at least one stage event in [start, end)."""
        ...

    async def find_active(self) -> list[Vehicle]:
        """Vehicles still on premises (no exit time)."""
        ...

    async def find_entered_between(self, start: datetime, end: datetime) -> list[Vehicle]:
        ...

    async def find_exited_between(self, start: datetime, end: datetime) -> list[Vehicle]:
        ...

    async def find_exited(self) -> list[Vehicle]:
        ...


def _has_event_between(vehicle: Vehicle, start: datetime, end: datetime) -> bool:
    return any(start <= e.timestamp < end for e in vehicle.stages)


def _by_entry(vehicles: list[Vehicle], newest_first: bool = False) -> list[Vehicle]:
    return sorted(vehicles, key=lambda v: (v.entry_time, v.vehicle_number), reverse=newest_first)


class InMemoryVehicleSource:
    """Source over raw documents held in memory (fixtures, embedding, tests)."""

    def __init__(self, documents: list[dict[str, Any]]):
        self._vehicles = load_vehicles(documents)

    async def find_with_events_between(self, start: datetime, end: datetime) -> list[Vehicle]:
        return [v for v in self._vehicles if _has_event_between(v, start, end)]

    async def find_active(self) -> list[Vehicle]:
        return _by_entry([v for v in self._vehicles if v.exit_time is None])

    async def find_entered_between(self, start: datetime, end: datetime) -> list[Vehicle]:
        return _by_entry(
            [v for v in self._vehicles if start <= v.entry_time < end],
            newest_first=True,
        )

    async def find_exited_between(self, start: datetime, end: datetime) -> list[Vehicle]:
        return [v for v in self._vehicles if v.exit_time is not None and start <= v.exit_time < end]

    async def find_exited(self) -> list[Vehicle]:
        return [v for v in self._vehicles if v.exit_time is not None]


def _utc(value: datetime) -> datetime:
    return value.astimezone(timezone.utc)


class SqlVehicleSource:
    """Source over the `vehicles` table.

    Uses dependency injection (takes session_factory) for testability.
    Event-window queries narrow by visit time in SQL and by event timestamp
    in Python, since events live in an embedded JSON list.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _fetch(self, *criteria, newest_first: bool = False) -> list[Vehicle]:
        order = VehicleRecord.entry_time.desc() if newest_first else VehicleRecord.entry_time.asc()
        try:
            async with self.session_factory() as session:
                result = await session.execute(select(VehicleRecord).where(*criteria).order_by(order))
                documents = [record.to_document() for record in result.scalars().all()]
        except SQLAlchemyError as e:
            logger.error("vehicle_fetch_failed", error=str(e), error_type=type(e).__name__)
            raise DataFetchError("Failed to load vehicles from the store") from e
        return load_vehicles(documents)

    async def find_with_events_between(self, start: datetime, end: datetime) -> list[Vehicle]:
        # An event in the window implies the visit began before the window ended
        candidates = await self._fetch(VehicleRecord.entry_time < _utc(end))
        return [v for v in candidates if _has_event_between(v, start, end)]

    async def find_active(self) -> list[Vehicle]:
        return await self._fetch(VehicleRecord.exit_time.is_(None))

    async def find_entered_between(self, start: datetime, end: datetime) -> list[Vehicle]:
        return await self._fetch(
            VehicleRecord.entry_time >= _utc(start),
            VehicleRecord.entry_time < _utc(end),
            newest_first=True,
        )

    async def find_exited_between(self, start: datetime, end: datetime) -> list[Vehicle]:
        return await self._fetch(
            VehicleRecord.exit_time >= _utc(start),
            VehicleRecord.exit_time < _utc(end),
        )

    async def find_exited(self) -> list[Vehicle]:
        return await self._fetch(VehicleRecord.exit_time.is_not(None))
