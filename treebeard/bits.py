"""Small integer helpers."""

from __future__ import annotations

from collections.abc import Iterable

_INT32_SPAN = 1 << 32
_INT32_MIN = -(1 << 31)


def binary_reverse(x: int, max_bits: int) -> int:
    """Reverse the lowest ``max_bits`` bits of ``x``."""
    result = 0
    for _ in range(max_bits):
        result = (result << 1) + (x & 1)
        x >>= 1
    return result


def _wrap_int32(value: int) -> int:
    return (value - _INT32_MIN) % _INT32_SPAN + _INT32_MIN


def to_int32_list(values: Iterable[int]) -> list[int]:
    """Convert integers to signed 32-bit values, wrapping on overflow."""
    return [_wrap_int32(int(v)) for v in values]


def to_int_list(values: Iterable[int]) -> list[int]:
    """Convert 32-bit integers to plain integers."""
    return [int(v) for v in values]