"""Re-export all models so Base.metadata sees them."""

from workshop_metrics.db.models.vehicle import VehicleRecord

__all__ = [
    "VehicleRecord",
]
