"""Distribution engine — pays attendance tokens out of a sealed meeting.

Distribution walks the sealed bitmaps in ascending identifier order and
is split into calls of bounded size so no single call has to touch every
participant. Progress is kept in a DistributionCursor of
``(cluster, offset)``, which is what makes resumption exact: a call can
stop in the middle of a cluster and the next call continues from the
very next bit, so no identifier is ever credited twice and none is
skipped, whatever batch sizes are used.

Batch accounting:
- ``batch_size`` bounds the number of identifier positions scanned. It is
  capped at the configured ``max_batch_size``.
- Scanning starts at the next unprocessed participant; runs of clusters
  (or cluster tails) without any unprocessed participant are skipped
  without consuming quota.
- After a call the cursor rests on the next unprocessed participant, or
  past the last non-empty cluster once everything has been paid.

Planning and committing are separate steps: ``plan`` is pure, ``commit``
applies a plan. The service credits the ledger in between.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from loguru import logger

from saydao.errors import InvalidBatch, NotSealed
from saydao.meeting.bitmap import (
    CLUSTER_WIDTH,
    identifier,
    iter_bits,
    mask_from,
    mask_range,
)
from saydao.meeting.participants import ParticipantTracker
from saydao.models.meeting import DistributionCursor, Meeting


@dataclass(frozen=True)
class DistributionBatch:
    """Outcome of one distribution call, before or after commit."""
    meeting_id: int
    cursor_before: DistributionCursor
    cursor_after: DistributionCursor
    credited: list[int] = field(default_factory=list)
    scanned: int = 0

    @property
    def is_noop(self) -> bool:
        return not self.credited and self.cursor_before == self.cursor_after


def end_cursor(meeting: Meeting) -> DistributionCursor:
    """Cursor position just past the last non-empty cluster."""
    return DistributionCursor(max(meeting.bitmaps, default=-1) + 1, 0)


def settle(meeting: Meeting, cursor: DistributionCursor) -> DistributionCursor:
    """Move ``cursor`` forward onto the next unprocessed participant.

    Returns the end cursor when no participant is left. Never moves
    backwards.
    """
    for cluster in sorted(c for c in meeting.bitmaps if c >= cursor.cluster):
        bits = meeting.bitmaps[cluster]
        if cluster == cursor.cluster:
            bits &= mask_from(cursor.offset)
        if bits:
            return DistributionCursor(cluster, (bits & -bits).bit_length() - 1)
    return max(end_cursor(meeting), cursor)


class DistributionEngine:
    """Plans and commits paginated, exactly-once token distribution.

    Usage:
        engine = DistributionEngine({"max_batch_size": 4096})
        batch = engine.plan(meeting, caller_id=1, batch_size=128)
        for member_id in batch.credited:
            ...  # credit the member
        engine.commit(meeting, batch)
    """

    def __init__(self, config: dict[str, Any]) -> None:
        self._config = config
        self._max_batch = config.get("max_batch_size", 4096)

    def start(self, meeting: Meeting) -> DistributionCursor:
        """Place the cursor on the first participant. Called at sealing."""
        meeting.cursor = settle(meeting, meeting.cursor)
        logger.debug(
            "Meeting {} distribution cursor starts at {}", meeting.meeting_id, meeting.cursor,
        )
        return meeting.cursor

    def plan(
        self,
        meeting: Meeting,
        caller_id: Optional[int],
        batch_size: int,
    ) -> DistributionBatch:
        """Work out which identifiers the next call credits.

        Pure: the meeting is not modified.

        Raises:
            NotSupervisor: Caller is not the meeting supervisor.
            NotSealed: Participant list is still open.
            InvalidBatch: batch_size below 1. Sizes above max_batch_size
                are clamped to it.
        """
        ParticipantTracker.require_supervisor(meeting, caller_id)
        if not meeting.sealed:
            raise NotSealed(
                f"Participants of meeting {meeting.meeting_id} must be sealed first"
            )
        if batch_size < 1:
            raise InvalidBatch(f"Batch size must be at least 1, got {batch_size}")

        before = meeting.cursor
        cursor = settle(meeting, before)
        end = end_cursor(meeting)
        quota = min(batch_size, self._max_batch)
        credited: list[int] = []
        scanned = 0

        while quota > 0 and cursor < end:
            stop = min(cursor.offset + quota, CLUSTER_WIDTH)
            bits = meeting.bitmaps.get(cursor.cluster, 0) & mask_range(cursor.offset, stop)
            credited.extend(identifier(cursor.cluster, bit) for bit in iter_bits(bits))
            span = stop - cursor.offset
            quota -= span
            scanned += span
            if stop < CLUSTER_WIDTH:
                cursor = DistributionCursor(cursor.cluster, stop)
            else:
                cursor = DistributionCursor(cursor.cluster + 1, 0)
            cursor = settle(meeting, cursor)

        return DistributionBatch(
            meeting_id=meeting.meeting_id,
            cursor_before=before,
            cursor_after=cursor,
            credited=credited,
            scanned=scanned,
        )

    def commit(self, meeting: Meeting, batch: DistributionBatch) -> Meeting:
        """Apply a plan produced by ``plan`` for this same meeting state."""
        if batch.meeting_id != meeting.meeting_id or batch.cursor_before != meeting.cursor:
            raise ValueError(
                f"Stale distribution plan for meeting {meeting.meeting_id}"
            )
        if batch.cursor_after < meeting.cursor:
            raise ValueError("Distribution cursor cannot move backwards")
        meeting.cursor = batch.cursor_after
        meeting.distributed += len(batch.credited)
        return meeting

    @staticmethod
    def remaining_clusters(meeting: Meeting) -> int:
        """Clusters at or after the cursor that still hold unpaid participants."""
        cursor = settle(meeting, meeting.cursor)
        count = 0
        for cluster, bits in meeting.bitmaps.items():
            if cluster == cursor.cluster:
                bits &= mask_from(cursor.offset)
            elif cluster < cursor.cluster:
                continue
            if bits:
                count += 1
        return count

    @staticmethod
    def next_bitmap(meeting: Meeting) -> int:
        """Unpaid bits of the cluster the cursor points at (0 when done)."""
        cursor = settle(meeting, meeting.cursor)
        return meeting.bitmaps.get(cursor.cluster, 0) & mask_from(cursor.offset)
