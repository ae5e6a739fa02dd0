"""Core data models for SayDAO."""

from saydao.models.meeting import DistributionCursor, Meeting, MeetingState
from saydao.models.poll import Ballot, Poll

__all__ = [
    "Ballot",
    "DistributionCursor",
    "Meeting",
    "MeetingState",
    "Poll",
]
