class WorkshopMetricsError(Exception):
    """Base exception for Workshop Metrics."""

    pass


class InvalidWindowError(WorkshopMetricsError):
    """Raised when a reporting window ends before it starts."""

    def __init__(self, start, end):
        self.start = start
        self.end = end
        super().__init__(f"Window end {end.isoformat()} is before start {start.isoformat()}")


class InvalidMetricTypeError(WorkshopMetricsError):
    """Raised when an unknown metric family is requested."""

    def __init__(self, metric_type: str, allowed: list[str]):
        self.metric_type = metric_type
        self.allowed = allowed
        super().__init__(f"Unknown metric type '{metric_type}', expected one of {allowed}")


class DataFetchError(WorkshopMetricsError):
    """Raised when the vehicle store cannot be read."""

    pass


class MalformedRecordError(WorkshopMetricsError):
    """Raised when a vehicle document cannot be interpreted at all."""

    pass
