"""Deterministic partitioning of participants across independent workers.

Each worker is configured with a shard index and the shard total. A record
belongs to exactly one shard, derived from its folder id (or lower-cased
name when no folder id is cached), so workers never touch the same folder or
sheet row and need no coordination.
"""

from __future__ import annotations

from typing import Iterable, List

from .models import ParticipantRecord

_DJB2_SEED = 5381
_MASK_32 = 0xFFFFFFFF


def djb2(text: str) -> int:
    """Unsigned 32-bit djb2 hash over UTF-16 code units."""

    encoded = (text or "").encode("utf-16-le")
    value = _DJB2_SEED
    for offset in range(0, len(encoded), 2):
        unit = encoded[offset] | (encoded[offset + 1] << 8)
        value = (value * 33 + unit) & _MASK_32
    return value


def shard_key(record: ParticipantRecord) -> str:
    if record.folder_id:
        return record.folder_id
    return record.name.lower()


def shard_of(record: ParticipantRecord, total: int) -> int:
    if total < 1:
        raise ValueError("shard total must be at least 1")
    return djb2(shard_key(record)) % total


def select_shard(
    records: Iterable[ParticipantRecord], index: int, total: int
) -> List[ParticipantRecord]:
    """Keep the records assigned to ``index``, preserving their order."""

    if total < 1:
        raise ValueError("shard total must be at least 1")
    if not 0 <= index < total:
        raise ValueError(f"shard index {index} is outside [0, {total})")
    return [record for record in records if shard_of(record, total) == index]
