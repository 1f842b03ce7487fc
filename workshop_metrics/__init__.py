"""Workshop Metrics: stage timing analytics for service-centre vehicles."""

__version__ = "0.1.0"
