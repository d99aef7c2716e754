from __future__ import annotations


class AggregationError(Exception):
    """Base class for failures raised while building an aggregated record."""


class AggregatedRecordFullError(AggregationError):
    """Raised when a user record does not fit in the aggregated record."""

    def __init__(self, *, aggregate_size: int, record_size: int) -> None:
        super().__init__(
            "AggregatedRecord full: unable to add record "
            f"(aggregate_size={aggregate_size}, record_size={record_size})"
        )
        self.aggregate_size = aggregate_size
        self.record_size = record_size


class InvalidPartitionKeyError(AggregationError, ValueError):
    """Raised when a user record is admitted without a partition key."""


class RecordEncodingError(AggregationError):
    """Raised when a payload or aggregate cannot be marshaled."""
