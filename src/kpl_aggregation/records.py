from __future__ import annotations

from collections.abc import Iterable

from google.protobuf.message import EncodeError, Message

from kpl_aggregation.errors import RecordEncodingError
from kpl_aggregation.models import Record, Tag


def record_from_message(
    payload: Message,
    *,
    partition_key_index: int | None = None,
    explicit_hash_key_index: int | None = None,
    tags: Iterable[Tag] = (),
) -> Record:
    """Build a record whose data is the serialized protobuf payload.

    Indices are copied through as given; no key table is consulted.
    """
    if not isinstance(payload, Message):
        raise RecordEncodingError(
            f"Error marshaling payload: expected a protobuf message, got {type(payload).__name__}"
        )

    try:
        data = payload.SerializeToString()
    except EncodeError as exc:
        raise RecordEncodingError(f"Error marshaling payload: {exc}") from exc

    return Record(
        partition_key_index=partition_key_index,
        explicit_hash_key_index=explicit_hash_key_index,
        data=data,
        tags=tuple(tags),
    )
