"""Aggregate application use cases."""

from .activity_aggregation import ActivityAggregationService, AggregationPeriod
from .activity_recording import ActivityRecorder, EndpointPolicy, RecordingOptions
from .data_retention import CleanupType, DataRetentionService, RetentionRunResult, RetentionWindows
from .retention_scheduler import PeriodicTask, RetentionScheduler

__all__ = [
    "ActivityAggregationService",
    "ActivityRecorder",
    "AggregationPeriod",
    "CleanupType",
    "DataRetentionService",
    "EndpointPolicy",
    "PeriodicTask",
    "RecordingOptions",
    "RetentionRunResult",
    "RetentionScheduler",
    "RetentionWindows",
]
