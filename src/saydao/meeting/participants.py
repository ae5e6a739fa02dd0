"""Participant tracker — meeting records and attendance bitmaps.

After a meeting ends its supervisor reports who attended, one cluster at
a time. Reports are merged with bitwise OR, so they can be repeated,
reordered or split arbitrarily: bits only ever turn on, and resubmitting
the same bits changes nothing. ``total_participants`` is always the
popcount over every cluster.

Sealing freezes the list. It is one-way: there is no unseal, and every
update after sealing is rejected with AlreadySealed, whoever sends it and
whenever.

Every method validates fully before touching state, so a rejected call
leaves the meeting exactly as it was.
"""

from __future__ import annotations

from typing import Any, Optional

from saydao.errors import (
    AlreadySealed,
    InvalidBitmap,
    InvalidWindow,
    NotSupervisor,
    TooEarly,
    UnknownMeeting,
)
from saydao.meeting.bitmap import CLUSTER_MASK, MAX_CLUSTER, popcount
from saydao.models.meeting import DistributionCursor, Meeting


class ParticipantTracker:
    """Owns every Meeting and its attendance bitmaps.

    Usage:
        tracker = ParticipantTracker()
        tracker.create_meeting(0, 0, supervisor=1, start=s, end=e, now=t)
        tracker.update_participants(0, caller_id=1, cluster=0, bitmap=0b110, now=t2)
        tracker.seal(0, caller_id=1)
    """

    def __init__(self) -> None:
        self._meetings: dict[int, Meeting] = {}

    @staticmethod
    def validate_window(start: int, end: int, now: int) -> None:
        """Raise InvalidWindow unless now < start < end."""
        if end <= start:
            raise InvalidWindow(f"Meeting must end after it starts ({start} >= {end})")
        if start <= now:
            raise InvalidWindow(f"Meeting must start in the future ({start} <= {now})")

    def create_meeting(
        self,
        meeting_id: int,
        poll_id: int,
        supervisor: int,
        start: int,
        end: int,
        now: int,
    ) -> Meeting:
        self.validate_window(start, end, now)
        if meeting_id in self._meetings:
            raise ValueError(f"Meeting {meeting_id} already exists")
        meeting = Meeting(
            meeting_id=meeting_id,
            poll_id=poll_id,
            supervisor=supervisor,
            start=start,
            end=end,
        )
        self._meetings[meeting_id] = meeting
        return meeting

    def get_meeting(self, meeting_id: int) -> Optional[Meeting]:
        return self._meetings.get(meeting_id)

    def require_meeting(self, meeting_id: int) -> Meeting:
        meeting = self._meetings.get(meeting_id)
        if meeting is None:
            raise UnknownMeeting(f"Meeting not found: {meeting_id}")
        return meeting

    def list_meetings(self) -> list[Meeting]:
        return [self._meetings[k] for k in sorted(self._meetings)]

    @staticmethod
    def require_supervisor(meeting: Meeting, caller_id: Optional[int]) -> None:
        if caller_id is None or caller_id != meeting.supervisor:
            raise NotSupervisor(
                f"Only member {meeting.supervisor} supervises meeting {meeting.meeting_id}"
            )

    def update_participants(
        self,
        meeting_id: int,
        caller_id: Optional[int],
        cluster: int,
        bitmap: int,
        now: int,
    ) -> Meeting:
        """Merge ``bitmap`` into ``cluster`` of the meeting's attendance.

        Raises:
            UnknownMeeting: No such meeting.
            NotSupervisor: Caller is not the meeting supervisor.
            AlreadySealed: Participant list is sealed.
            TooEarly: Chain time has not passed the meeting end.
            InvalidBitmap: Cluster or bitmap out of range.
        """
        meeting = self.require_meeting(meeting_id)
        self.require_supervisor(meeting, caller_id)
        if meeting.sealed:
            raise AlreadySealed(f"Participants of meeting {meeting_id} are sealed")
        if now <= meeting.end:
            raise TooEarly(
                f"Meeting {meeting_id} ends at {meeting.end}, chain time is {now}"
            )
        if not 0 <= cluster <= MAX_CLUSTER:
            raise InvalidBitmap(f"Cluster index out of range: {cluster}")
        if not 0 <= bitmap <= CLUSTER_MASK:
            raise InvalidBitmap("Bitmap must be an unsigned 256-bit value")

        merged = meeting.bitmaps.get(cluster, 0) | bitmap
        if merged:
            meeting.bitmaps[cluster] = merged
        meeting.total_participants = sum(popcount(b) for b in meeting.bitmaps.values())
        return meeting

    def seal(self, meeting_id: int, caller_id: Optional[int]) -> Meeting:
        """Freeze the participant list. Irreversible.

        Raises:
            UnknownMeeting, NotSupervisor, AlreadySealed.
        """
        meeting = self.require_meeting(meeting_id)
        self.require_supervisor(meeting, caller_id)
        if meeting.sealed:
            raise AlreadySealed(f"Participants of meeting {meeting_id} are sealed")
        meeting.sealed = True
        return meeting

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_records(self) -> list[dict[str, Any]]:
        return [
            {
                "meeting_id": m.meeting_id,
                "poll_id": m.poll_id,
                "supervisor": m.supervisor,
                "start": m.start,
                "end": m.end,
                "total_participants": m.total_participants,
                "sealed": m.sealed,
                # hex keeps 256-bit values readable and JSON-safe
                "bitmaps": {str(c): hex(b) for c, b in sorted(m.bitmaps.items())},
                "cursor": [m.cursor.cluster, m.cursor.offset],
                "distributed": m.distributed,
            }
            for m in self.list_meetings()
        ]

    @classmethod
    def from_records(cls, records: list[dict[str, Any]]) -> ParticipantTracker:
        tracker = cls()
        for r in records:
            cursor = r.get("cursor", [0, 0])
            meeting = Meeting(
                meeting_id=r["meeting_id"],
                poll_id=r["poll_id"],
                supervisor=r["supervisor"],
                start=r["start"],
                end=r["end"],
                total_participants=r.get("total_participants", 0),
                sealed=r.get("sealed", False),
                bitmaps={int(c): int(b, 16) for c, b in r.get("bitmaps", {}).items()},
                cursor=DistributionCursor(cursor[0], cursor[1]),
                distributed=r.get("distributed", 0),
            )
            tracker._meetings[meeting.meeting_id] = meeting
        return tracker
