from __future__ import annotations

import logging
from collections.abc import Iterable

from kpl_aggregation import codec
from kpl_aggregation.errors import AggregatedRecordFullError, InvalidPartitionKeyError
from kpl_aggregation.models import Record

LOGGER = logging.getLogger(__name__)

MAX_BYTES_PER_RECORD = 1024 * 1024


class AggregatedRecord:
    """KPL aggregate of user records sharing deduplicated key tables.

    Not thread-safe; one producer owns an aggregate until it is sealed.
    """

    def __init__(self) -> None:
        self._partition_key_table: list[str] = []
        self._explicit_hash_key_table: list[str] = []
        self._records: list[Record] = []
        self._partition_key_indices: dict[str, int] = {}
        self._explicit_hash_key_indices: dict[str, int] = {}
        self._encoded_size = 0

    @classmethod
    def from_parts(
        cls,
        partition_key_table: Iterable[str],
        explicit_hash_key_table: Iterable[str],
        records: Iterable[Record],
    ) -> AggregatedRecord:
        """Assemble an aggregate as-is, without checking indices or size."""
        aggregate = cls()
        aggregate._partition_key_table = list(partition_key_table)
        aggregate._explicit_hash_key_table = list(explicit_hash_key_table)
        aggregate._records = list(records)
        for index, key in enumerate(aggregate._partition_key_table):
            aggregate._partition_key_indices.setdefault(key, index)
        for index, key in enumerate(aggregate._explicit_hash_key_table):
            aggregate._explicit_hash_key_indices.setdefault(key, index)
        aggregate._encoded_size = codec.encoded_size(aggregate)
        return aggregate

    @property
    def partition_key_table(self) -> tuple[str, ...]:
        return tuple(self._partition_key_table)

    @property
    def explicit_hash_key_table(self) -> tuple[str, ...]:
        return tuple(self._explicit_hash_key_table)

    @property
    def records(self) -> tuple[Record, ...]:
        return tuple(self._records)

    @property
    def encoded_size(self) -> int:
        return self._encoded_size

    def __len__(self) -> int:
        return len(self._records)

    def add_user_record(
        self,
        partition_key: str,
        explicit_hash_key: str | None,
        data: bytes,
    ) -> None:
        """Admit a user record, deduplicating its partition and explicit hash keys.

        Raises AggregatedRecordFullError when the payload does not fit and
        InvalidPartitionKeyError for an empty partition key; neither mutates the aggregate.
        """
        # Estimate counts only the payload bytes; key table growth and framing are not included.
        if self._encoded_size + len(data) > MAX_BYTES_PER_RECORD:
            LOGGER.debug(
                "aggregated_record_full",
                extra={
                    "aggregate_size": self._encoded_size,
                    "record_size": len(data),
                    "record_count": len(self._records),
                },
            )
            raise AggregatedRecordFullError(
                aggregate_size=self._encoded_size,
                record_size=len(data),
            )

        if not partition_key:
            LOGGER.warning("invalid_partition_key", extra={"record_size": len(data)})
            raise InvalidPartitionKeyError("Empty partition key is not allowed")

        partition_key_index, new_partition_key = _find_key(
            self._partition_key_indices,
            self._partition_key_table,
            partition_key,
        )

        explicit_hash_key_index: int | None = None
        new_hash_key = False
        if explicit_hash_key:
            explicit_hash_key_index, new_hash_key = _find_key(
                self._explicit_hash_key_indices,
                self._explicit_hash_key_table,
                explicit_hash_key,
            )

        record = Record(
            partition_key_index=partition_key_index,
            explicit_hash_key_index=explicit_hash_key_index,
            data=data,
        )
        added_partition_keys = [partition_key] if new_partition_key else []
        added_hash_keys = [explicit_hash_key] if new_hash_key else []
        size_delta = codec.message_size(
            partition_key_table=added_partition_keys,
            explicit_hash_key_table=added_hash_keys,
            records=(record,),
        )

        for key in added_partition_keys:
            self._partition_key_indices[key] = len(self._partition_key_table)
            self._partition_key_table.append(key)
        for key in added_hash_keys:
            self._explicit_hash_key_indices[key] = len(self._explicit_hash_key_table)
            self._explicit_hash_key_table.append(key)
        self._records.append(record)
        self._encoded_size += size_delta


def _find_key(indices: dict[str, int], table: list[str], key: str) -> tuple[int, bool]:
    """Return the key's index and whether it still has to be appended."""
    index = indices.get(key)
    if index is not None:
        return index, False
    return len(table), True
