"""Participant bitmaps — sparse identifier sets paged into 256-bit clusters.

Identifier ``n`` lives in cluster ``n // 256`` at bit ``n % 256``. A set of
identifiers is a ``dict[int, int]`` from cluster index to bit-vector;
clusters with no bits set are simply absent.
"""

from __future__ import annotations

from typing import Iterable, Iterator

# Identifiers are uint16
MAX_MEMBER_ID = 2**16 - 1

CLUSTER_WIDTH = 256
CLUSTER_MASK = (1 << CLUSTER_WIDTH) - 1
MAX_CLUSTER = MAX_MEMBER_ID // CLUSTER_WIDTH


def locate(member_id: int) -> tuple[int, int]:
    """Return the (cluster, bit) pair for an identifier."""
    if not 0 <= member_id <= MAX_MEMBER_ID:
        raise ValueError(f"Identifier out of range [0, {MAX_MEMBER_ID}]: {member_id}")
    return divmod(member_id, CLUSTER_WIDTH)


def identifier(cluster: int, bit: int) -> int:
    return cluster * CLUSTER_WIDTH + bit


def create_bitmaps(member_ids: Iterable[int]) -> dict[int, int]:
    """Group identifiers into per-cluster bitmaps."""
    bitmaps: dict[int, int] = {}
    for member_id in member_ids:
        cluster, bit = locate(member_id)
        bitmaps[cluster] = bitmaps.get(cluster, 0) | (1 << bit)
    return bitmaps


def popcount(bitmap: int) -> int:
    return bitmap.bit_count()


def iter_bits(bitmap: int) -> Iterator[int]:
    """Yield set bit positions in ascending order."""
    while bitmap:
        low = bitmap & -bitmap
        yield low.bit_length() - 1
        bitmap ^= low


def mask_from(offset: int) -> int:
    """Bits at positions >= offset within one cluster."""
    if offset >= CLUSTER_WIDTH:
        return 0
    return CLUSTER_MASK & ~((1 << offset) - 1)


def mask_range(start: int, stop: int) -> int:
    """Bits at positions in [start, stop) within one cluster."""
    return mask_from(start) & ~mask_from(stop)


def to_binary(bitmap: int) -> str:
    """Render a cluster as 256 binary digits, most significant first."""
    return format(bitmap, f"0{CLUSTER_WIDTH}b")


def members_of(bitmaps: dict[int, int]) -> list[int]:
    """Expand cluster bitmaps back into a sorted list of identifiers."""
    return [
        identifier(cluster, bit)
        for cluster in sorted(bitmaps)
        for bit in iter_bits(bitmaps[cluster])
    ]
