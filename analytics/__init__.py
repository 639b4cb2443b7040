"""Visit recording and live aggregation."""

from analytics.aggregator import compute_snapshot
from analytics.recorder import VisitRecorder
from analytics.view import AggregationView, ViewConfig, ViewState, ViewUpdate

__all__ = [
    "compute_snapshot",
    "VisitRecorder",
    "AggregationView",
    "ViewConfig",
    "ViewState",
    "ViewUpdate",
]
