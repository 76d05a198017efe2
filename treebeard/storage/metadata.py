"""Parsing of bucket metadata entries and shuffling of slot orders."""

from __future__ import annotations

import random
from collections.abc import Mapping, MutableSequence
from typing import Any

NULL_ENTRY = "__null__"
ACCESS_COUNT_FIELD = "accessCount"


def _as_text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


def parse_metadata_block(block: str) -> tuple[int, str]:
    """Split a metadata entry such as ``"2dummy1"`` into position and key.

    An invalidated entry (``"__null__"``) gives ``(-1, "")``. An entry that
    does not start with digits followed by a key raises ``ValueError``.
    """
    if block == NULL_ENTRY:
        return -1, ""
    index = 0
    for position, char in enumerate(block):
        if not "0" <= char <= "9":
            index = position
            break
    if index == 0:
        raise ValueError(f"invalid metadata entry: {block!r}")
    return int(block[:index]), block[index:]


def parse_metadata_blocks(
    bucket_metadata: Mapping[int, Mapping[Any, Any]],
) -> dict[int, dict[str, int]]:
    """Map each bucket to its valid block keys and their positions.

    The access counter and invalidated entries are left out.
    """
    offsets: dict[int, dict[str, int]] = {}
    for bucket_id, fields in bucket_metadata.items():
        bucket_offsets: dict[str, int] = {}
        for field_name, entry in fields.items():
            if _as_text(field_name) == ACCESS_COUNT_FIELD:
                continue
            pos, key = parse_metadata_block(_as_text(entry))
            if pos == -1:
                continue
            bucket_offsets[key] = pos
        offsets[bucket_id] = bucket_offsets
    return offsets


def shuffle(items: MutableSequence[Any]) -> None:
    """Shuffle ``items`` in place uniformly at random."""
    random.shuffle(items)