"""Poll and ballot data models.

A poll is either plain (any number of options, weighted by current token
balance) or bound to a meeting (two options, weighted by the balance at
the token snapshot taken when the poll was created).

Times are chain seconds (integers), not datetimes: the chain-time oracle
is the only clock the engines trust.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class Poll:
    """A governance poll.

    Mutable — ``voters``, ``supply`` and ``tally`` change as ballots arrive.
    """
    poll_id: int
    cid: str
    author: int  # member identifier
    options: int
    created: int
    end: int
    snapshot: int  # eligible-voter count at creation
    meeting_id: Optional[int] = None
    token_snapshot: Optional[int] = None
    voters: int = 0
    supply: int = 0  # token total supply at the latest ballot
    tally: list[int] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.tally:
            self.tally = [0] * self.options

    @property
    def is_meeting_poll(self) -> bool:
        return self.meeting_id is not None

    def is_open(self, now: int) -> bool:
        return self.created <= now < self.end


@dataclass(frozen=True)
class Ballot:
    """A single ballot. Frozen — ballots are final once cast."""
    poll_id: int
    voter: int
    option: int
    weight: int
    cast_at: int
