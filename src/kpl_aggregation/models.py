from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

UINT64_MAX = 2**64 - 1


class Tag(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str = Field(min_length=1)
    value: str | None = None


class Record(BaseModel):
    """Single user record inside an aggregated record."""

    model_config = ConfigDict(frozen=True)

    partition_key_index: int | None = Field(default=None, ge=0, le=UINT64_MAX)
    explicit_hash_key_index: int | None = Field(default=None, ge=0, le=UINT64_MAX)
    data: bytes
    tags: tuple[Tag, ...] = ()
