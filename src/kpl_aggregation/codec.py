from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import EncodeError, Message

from kpl_aggregation.errors import RecordEncodingError
from kpl_aggregation.models import Record
from kpl_aggregation.settings import Settings

if TYPE_CHECKING:
    from kpl_aggregation.aggregate import AggregatedRecord

LOGGER = logging.getLogger(__name__)

KPL_MAGIC = b"\xf3\x89\x9a\xc2"
DIGEST_SIZE = hashlib.md5().digest_size

_PROTO_PACKAGE = "kpl_aggregation"
_Field = descriptor_pb2.FieldDescriptorProto


def _build_file_descriptor() -> descriptor_pb2.FileDescriptorProto:
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="kpl_aggregation/messages.proto",
        package=_PROTO_PACKAGE,
        syntax="proto2",
    )

    def add_message(name: str, fields: Sequence[tuple[str, int, int, int, str | None]]) -> None:
        message = file_proto.message_type.add(name=name)
        for field_name, number, label, field_type, type_name in fields:
            field = message.field.add(name=field_name, number=number, label=label, type=field_type)
            if type_name is not None:
                field.type_name = f".{_PROTO_PACKAGE}.{type_name}"

    add_message(
        "AggregatedRecord",
        [
            ("partition_key_table", 1, _Field.LABEL_REPEATED, _Field.TYPE_STRING, None),
            ("explicit_hash_key_table", 2, _Field.LABEL_REPEATED, _Field.TYPE_STRING, None),
            ("records", 3, _Field.LABEL_REPEATED, _Field.TYPE_MESSAGE, "Record"),
        ],
    )
    add_message(
        "Tag",
        [
            ("key", 1, _Field.LABEL_REQUIRED, _Field.TYPE_STRING, None),
            ("value", 2, _Field.LABEL_OPTIONAL, _Field.TYPE_STRING, None),
        ],
    )
    add_message(
        "Record",
        [
            ("partition_key_index", 1, _Field.LABEL_REQUIRED, _Field.TYPE_UINT64, None),
            ("explicit_hash_key_index", 2, _Field.LABEL_OPTIONAL, _Field.TYPE_UINT64, None),
            ("data", 3, _Field.LABEL_REQUIRED, _Field.TYPE_BYTES, None),
            ("tags", 4, _Field.LABEL_REPEATED, _Field.TYPE_MESSAGE, "Tag"),
        ],
    )
    return file_proto


_POOL = descriptor_pool.DescriptorPool()
_POOL.AddSerializedFile(_build_file_descriptor().SerializeToString())

AggregatedRecordMessage = message_factory.GetMessageClass(
    _POOL.FindMessageTypeByName(f"{_PROTO_PACKAGE}.AggregatedRecord")
)
RecordMessage = message_factory.GetMessageClass(
    _POOL.FindMessageTypeByName(f"{_PROTO_PACKAGE}.Record")
)
TagMessage = message_factory.GetMessageClass(_POOL.FindMessageTypeByName(f"{_PROTO_PACKAGE}.Tag"))


def record_to_message(record: Record) -> Message:
    fields: dict[str, object] = {"data": record.data}
    if record.partition_key_index is not None:
        fields["partition_key_index"] = record.partition_key_index
    if record.explicit_hash_key_index is not None:
        fields["explicit_hash_key_index"] = record.explicit_hash_key_index

    message = RecordMessage(**fields)
    for tag in record.tags:
        if tag.value is None:
            message.tags.add(key=tag.key)
        else:
            message.tags.add(key=tag.key, value=tag.value)
    return message


def build_message(
    *,
    partition_key_table: Iterable[str] = (),
    explicit_hash_key_table: Iterable[str] = (),
    records: Iterable[Record] = (),
) -> Message:
    message = AggregatedRecordMessage()
    message.partition_key_table.extend(partition_key_table)
    message.explicit_hash_key_table.extend(explicit_hash_key_table)
    message.records.extend(record_to_message(record) for record in records)
    return message


def message_size(
    *,
    partition_key_table: Iterable[str] = (),
    explicit_hash_key_table: Iterable[str] = (),
    records: Iterable[Record] = (),
) -> int:
    # Repeated proto2 fields encode as concatenated entries, so sizes of disjoint parts add up.
    # Partial serialization: required fields are only enforced by encode_aggregated_record.
    message = build_message(
        partition_key_table=partition_key_table,
        explicit_hash_key_table=explicit_hash_key_table,
        records=records,
    )
    return len(message.SerializePartialToString())


def encoded_size(aggregate: AggregatedRecord) -> int:
    return message_size(
        partition_key_table=aggregate.partition_key_table,
        explicit_hash_key_table=aggregate.explicit_hash_key_table,
        records=aggregate.records,
    )


def encode_aggregated_record(aggregate: AggregatedRecord) -> bytes:
    message = build_message(
        partition_key_table=aggregate.partition_key_table,
        explicit_hash_key_table=aggregate.explicit_hash_key_table,
        records=aggregate.records,
    )
    try:
        return message.SerializeToString()
    except EncodeError as exc:
        raise RecordEncodingError(f"Error marshaling aggregated record: {exc}") from exc


def frame_aggregated_record(body: bytes) -> bytes:
    return KPL_MAGIC + body + hashlib.md5(body).digest()


def seal(aggregate: AggregatedRecord, *, framed: bool | None = None) -> bytes:
    """Encode the aggregate for emission, framed per KPL_AGGREGATION_FRAMED unless given."""
    if framed is None:
        framed = Settings().framed
    body = encode_aggregated_record(aggregate)
    payload = frame_aggregated_record(body) if framed else body
    LOGGER.debug(
        "aggregated_record_sealed",
        extra={
            "record_count": len(aggregate.records),
            "partition_keys": len(aggregate.partition_key_table),
            "size_bytes": len(payload),
            "framed": framed,
        },
    )
    return payload
