from __future__ import annotations

import hashlib
import logging

import pytest

from kpl_aggregation import codec
from kpl_aggregation.aggregate import AggregatedRecord
from kpl_aggregation.errors import RecordEncodingError
from kpl_aggregation.models import Record, Tag
from kpl_aggregation.records import record_from_message


def _aggregate() -> AggregatedRecord:
    aggregate = AggregatedRecord()
    aggregate.add_user_record("user-1", "", b"hello")
    aggregate.add_user_record("user-2", "hash-A", b"world")
    return aggregate


def test_encoded_aggregate_parses_with_kpl_schema() -> None:
    body = codec.encode_aggregated_record(_aggregate())

    parsed = codec.AggregatedRecordMessage.FromString(body)

    assert list(parsed.partition_key_table) == ["user-1", "user-2"]
    assert list(parsed.explicit_hash_key_table) == ["hash-A"]
    assert [r.data for r in parsed.records] == [b"hello", b"world"]
    assert [r.partition_key_index for r in parsed.records] == [0, 1]
    assert not parsed.records[0].HasField("explicit_hash_key_index")
    assert parsed.records[1].explicit_hash_key_index == 0


def test_tags_are_encoded_on_records() -> None:
    record = Record(
        partition_key_index=0,
        data=b"a",
        tags=(Tag(key="source", value="orders"), Tag(key="replayed")),
    )
    aggregate = AggregatedRecord.from_parts(["pk"], [], [record])

    parsed = codec.AggregatedRecordMessage.FromString(codec.encode_aggregated_record(aggregate))

    tags = parsed.records[0].tags
    assert [(t.key, t.value) for t in tags] == [("source", "orders"), ("replayed", "")]
    assert not tags[1].HasField("value")


def test_encoding_record_without_partition_key_index_fails() -> None:
    aggregate = AggregatedRecord.from_parts([], [], [Record(data=b"a")])

    with pytest.raises(RecordEncodingError):
        codec.encode_aggregated_record(aggregate)


def test_empty_aggregate_has_zero_size() -> None:
    aggregate = AggregatedRecord()

    assert aggregate.encoded_size == 0
    assert codec.encode_aggregated_record(aggregate) == b""


def test_seal_frames_body_with_magic_and_md5(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("KPL_AGGREGATION_FRAMED", raising=False)
    aggregate = _aggregate()
    body = codec.encode_aggregated_record(aggregate)

    sealed = codec.seal(aggregate)

    assert sealed[: len(codec.KPL_MAGIC)] == codec.KPL_MAGIC
    assert sealed[len(codec.KPL_MAGIC) : -codec.DIGEST_SIZE] == body
    assert sealed[-codec.DIGEST_SIZE :] == hashlib.md5(body).digest()


def test_seal_without_framing_returns_protobuf_body(caplog: pytest.LogCaptureFixture) -> None:
    aggregate = _aggregate()

    with caplog.at_level(logging.DEBUG, logger="kpl_aggregation.codec"):
        sealed = codec.seal(aggregate, framed=False)

    assert sealed == codec.encode_aggregated_record(aggregate)
    assert any(r.getMessage() == "aggregated_record_sealed" for r in caplog.records)


def test_from_parts_measures_records_built_without_indices() -> None:
    record = record_from_message(codec.TagMessage(key="k"))

    aggregate = AggregatedRecord.from_parts([], [], [record])

    # data (3 bytes) framed as Record.data, then as AggregatedRecord.records
    assert aggregate.encoded_size == 7
    with pytest.raises(RecordEncodingError):
        codec.encode_aggregated_record(aggregate)


def test_seal_reads_framing_from_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    aggregate = _aggregate()
    body = codec.encode_aggregated_record(aggregate)

    monkeypatch.setenv("KPL_AGGREGATION_FRAMED", "false")
    assert codec.seal(aggregate) == body

    monkeypatch.setenv("KPL_AGGREGATION_FRAMED", "true")
    assert codec.seal(aggregate) == codec.frame_aggregated_record(body)
    assert codec.seal(aggregate, framed=False) == body
