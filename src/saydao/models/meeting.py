"""Meeting data models.

A meeting is created together with its poll and shares its index. After
the meeting ends its supervisor records who attended as per-cluster
bitmaps, seals the list, and then pays out attendance tokens in batches.

Lifecycle:
    OPEN --seal--> SEALED --distribute*--> DISTRIBUTED

OPEN accepts any number of participant updates. SEALED and DISTRIBUTED
are immutable as far as the participant list is concerned.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field


class MeetingState(str, enum.Enum):
    """Where a meeting is in the attendance/distribution lifecycle."""
    OPEN = "open"
    SEALED = "sealed"
    DISTRIBUTED = "distributed"


@dataclass(frozen=True, order=True)
class DistributionCursor:
    """Position of the next identifier to consider for distribution.

    Ordered lexicographically so monotonic progress can be asserted with a
    plain comparison. ``offset`` is the bit position inside ``cluster``.
    """
    cluster: int = 0
    offset: int = 0


@dataclass
class Meeting:
    """A meeting bound to a meeting poll.

    Invariants:
    - end > start
    - total_participants == popcount of all bitmaps
    - sealed goes False -> True once and never back
    - the cursor never moves backwards
    """
    meeting_id: int
    poll_id: int
    supervisor: int  # member identifier
    start: int
    end: int
    total_participants: int = 0
    sealed: bool = False
    bitmaps: dict[int, int] = field(default_factory=dict)  # cluster -> bits
    cursor: DistributionCursor = field(default_factory=DistributionCursor)
    distributed: int = 0  # participants credited so far

    @property
    def state(self) -> MeetingState:
        if not self.sealed:
            return MeetingState.OPEN
        if self.distributed >= self.total_participants:
            return MeetingState.DISTRIBUTED
        return MeetingState.SEALED
