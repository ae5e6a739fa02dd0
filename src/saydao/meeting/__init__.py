"""Meeting attendance tracking and attendance-token distribution."""

from saydao.meeting.distribution import DistributionBatch, DistributionEngine
from saydao.meeting.participants import ParticipantTracker

__all__ = [
    "DistributionBatch",
    "DistributionEngine",
    "ParticipantTracker",
]
