"""Shared test fixtures for all test groups.

Timeline used throughout: `now` is Monday 2026-10-19 12:00 UTC (17:30 in
Asia/Kolkata). Event offsets are minutes after `base_time`, 09:30 IST the
same day, so every event lands inside the `today` window.
"""

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from workshop_metrics.core.config import Settings
from workshop_metrics.schemas.vehicle import Vehicle

NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)
BASE_TIME = datetime(2026, 10, 19, 4, 0, 0, tzinfo=timezone.utc)


def at(minute: float) -> datetime:
    return BASE_TIME + timedelta(minutes=minute)


def event_doc(
    stage_name: str,
    event_type: str,
    minute: float,
    user: str | None = "Ravi",
    work_type: str | None = None,
    bay_number: str | None = None,
    role: str | None = None,
) -> dict:
    """A raw stage event document, as stored."""
    doc = {
        "stageName": stage_name,
        "eventType": event_type,
        "timestamp": at(minute),
    }
    if user is not None:
        doc["performedBy"] = {"userId": f"u-{user.lower()}", "userName": user}
    if work_type is not None:
        doc["workType"] = work_type
    if bay_number is not None:
        doc["bayNumber"] = bay_number
    if role is not None:
        doc["role"] = role
    return doc


def vehicle_doc(
    number: str,
    stages: list[dict] | None = None,
    entry_minute: float = -30,
    exit_minute: float | None = None,
) -> dict:
    """A raw vehicle document; exit_minute None means still on premises."""
    return {
        "vehicleNumber": number,
        "entryTime": at(entry_minute),
        "exitTime": at(exit_minute) if exit_minute is not None else None,
        "stages": stages or [],
    }


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def ist():
    return ZoneInfo("Asia/Kolkata")


@pytest.fixture
def settings():
    """Settings isolated from any .env in the working directory."""
    return Settings(_env_file=None)


@pytest.fixture
def ev():
    """Factory for stage event documents: ev(stage, type, minute, **fields)."""
    return event_doc


@pytest.fixture
def make_doc():
    """Factory for vehicle documents."""
    return vehicle_doc


@pytest.fixture
def make_vehicle():
    """Factory for parsed vehicles: make_vehicle(number, stages, ...)."""

    def _make(number: str, stages: list[dict] | None = None, **kwargs) -> Vehicle:
        return Vehicle.from_document(vehicle_doc(number, stages, **kwargs))

    return _make


@pytest.fixture
def minute():
    """Convert a minute offset into an absolute timestamp."""
    return at


@pytest.fixture
def sample_documents():
    """A small mixed fleet covering every stage shape.

    - MH01: Interactive Bay, closed after 45 minutes, exited
    - MH02: Bay Work PM/bay 3, 50 active + 10 paused minutes, exited
    - MH03: Job Card Creation closed by bay allocation after 30 minutes,
      then a technician hand-over 15 minutes later; still inside
    - MH04: Washing started 15 minutes before `now`; still inside
    - MH05: an unrecognised "Road Test" stage of 20 minutes; still inside
    """
    return [
        vehicle_doc(
            "MH01",
            [
                event_doc("Interactive Bay", "Start", 0),
                event_doc("Interactive Bay", "End", 45),
            ],
            entry_minute=-10,
            exit_minute=60,
        ),
        vehicle_doc(
            "MH02",
            [
                event_doc("Bay Work", "Start", 0, work_type="PM", bay_number="3"),
                event_doc("Bay Work", "Pause", 20, work_type="PM", bay_number="3"),
                event_doc("Bay Work", "Resume", 30, work_type="PM", bay_number="3"),
                event_doc("Bay Work", "End", 60, work_type="PM", bay_number="3"),
            ],
            entry_minute=-20,
            exit_minute=90,
        ),
        vehicle_doc(
            "MH03",
            [
                event_doc("Job Card Creation + Customer Approval", "Start", 0, role="SA"),
                event_doc("Job Card Received + Bay Allocation", "Start", 30),
                event_doc("Job Card Received (by Technician)", "Start", 45, user="Anil"),
            ],
            entry_minute=-5,
        ),
        vehicle_doc(
            "MH04",
            [event_doc("Washing", "Start", 465)],
            entry_minute=400,
        ),
        vehicle_doc(
            "MH05",
            [
                event_doc("Road Test", "Start", 100),
                event_doc("Road Test", "End", 120),
            ],
            entry_minute=90,
        ),
    ]
