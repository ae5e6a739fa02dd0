"""Poll engine — poll creation, ballots and tallies.

Polls are numbered from 0 in creation order. Meeting polls share that
numbering with their meeting, so poll ``n`` of a meeting is meeting ``n``
only when every poll so far was a meeting poll; the link is kept
explicitly in ``Poll.meeting_id`` and ``Meeting.poll_id``.

Membership and vote weight are resolved by the service layer, which owns
the registry and token ledger. This engine only enforces what it can see:
the voting window, one ballot per member, and option bounds.
"""

from __future__ import annotations

import re
from typing import Any, Optional, Union

from saydao.errors import (
    AlreadyVoted,
    InvalidContentId,
    InvalidOption,
    InvalidWindow,
    UnknownPoll,
    VotingClosed,
)
from saydao.models.poll import Ballot, Poll


_CID_RE = re.compile(r"^0x[0-9a-f]{64}$")


def normalize_cid(cid: Union[str, bytes]) -> str:
    """Return ``cid`` as lowercase 0x-prefixed 32-byte hex.

    Raises:
        InvalidContentId: Not exactly 32 bytes.
    """
    if isinstance(cid, bytes):
        if len(cid) != 32:
            raise InvalidContentId(f"Content id must be 32 bytes, got {len(cid)}")
        return "0x" + cid.hex()
    value = cid.strip().lower()
    if not value.startswith("0x"):
        value = "0x" + value
    if not _CID_RE.match(value):
        raise InvalidContentId(f"Content id must be 32 bytes of hex: {cid!r}")
    return value


class PollEngine:
    """Poll lifecycle and tallying.

    Usage:
        engine = PollEngine({"max_options": 256})
        poll = engine.create_poll(author=2, cid=cid, voting_seconds=3600,
                                  options=2, now=t, snapshot=3)
        engine.cast_vote(poll.poll_id, voter=2, option=1, weight=w,
                         supply=s, now=t + 10)
        engine.get_votes(poll.poll_id)
    """

    def __init__(self, config: dict[str, Any]) -> None:
        self._config = config
        self._max_options = config.get("max_options", 256)
        self._polls: dict[int, Poll] = {}
        self._ballots: dict[int, dict[int, Ballot]] = {}  # poll_id -> voter -> ballot

    @property
    def next_poll_id(self) -> int:
        return len(self._polls)

    def validate_poll(self, cid: Union[str, bytes], voting_seconds: int,
                      options: int) -> str:
        """Check poll parameters; return the normalized content id."""
        normalized = normalize_cid(cid)
        if voting_seconds <= 0:
            raise InvalidWindow(
                f"Voting window must be positive, got {voting_seconds}s"
            )
        if not 1 <= options <= self._max_options:
            raise InvalidOption(
                f"Option count must be in [1, {self._max_options}], got {options}"
            )
        return normalized

    def create_poll(
        self,
        author: int,
        cid: Union[str, bytes],
        voting_seconds: int,
        options: int,
        now: int,
        snapshot: int,
        meeting_id: Optional[int] = None,
        token_snapshot: Optional[int] = None,
    ) -> Poll:
        """Open a poll. Voting runs over ``[now, now + voting_seconds)``.

        Raises:
            InvalidContentId, InvalidWindow, InvalidOption.
        """
        normalized = self.validate_poll(cid, voting_seconds, options)
        poll = Poll(
            poll_id=self.next_poll_id,
            cid=normalized,
            author=author,
            options=options,
            created=now,
            end=now + voting_seconds,
            snapshot=snapshot,
            meeting_id=meeting_id,
            token_snapshot=token_snapshot,
        )
        self._polls[poll.poll_id] = poll
        self._ballots[poll.poll_id] = {}
        return poll

    def get_poll(self, poll_id: int) -> Optional[Poll]:
        return self._polls.get(poll_id)

    def require_poll(self, poll_id: int) -> Poll:
        poll = self._polls.get(poll_id)
        if poll is None:
            raise UnknownPoll(f"Poll not found: {poll_id}")
        return poll

    def list_polls(self) -> list[Poll]:
        return [self._polls[k] for k in sorted(self._polls)]

    def has_voted(self, poll_id: int, voter: int) -> bool:
        return voter in self._ballots.get(poll_id, {})

    def check_vote(self, poll_id: int, voter: int, option: int, now: int) -> Poll:
        """Validate a ballot without recording it.

        Raises:
            UnknownPoll, VotingClosed, AlreadyVoted, InvalidOption.
        """
        poll = self.require_poll(poll_id)
        if not poll.is_open(now):
            raise VotingClosed(
                f"Poll {poll_id} accepts votes in [{poll.created}, {poll.end}), "
                f"chain time is {now}"
            )
        if self.has_voted(poll_id, voter):
            raise AlreadyVoted(f"Member {voter} already voted on poll {poll_id}")
        if not 0 <= option < poll.options:
            raise InvalidOption(
                f"Poll {poll_id} has {poll.options} options, got option {option}"
            )
        return poll

    def cast_vote(
        self,
        poll_id: int,
        voter: int,
        option: int,
        weight: int,
        supply: int,
        now: int,
    ) -> Ballot:
        """Record a weighted ballot."""
        poll = self.check_vote(poll_id, voter, option, now)
        ballot = Ballot(
            poll_id=poll_id,
            voter=voter,
            option=option,
            weight=weight,
            cast_at=now,
        )
        self._ballots[poll_id][voter] = ballot
        poll.tally[option] += weight
        poll.voters += 1
        poll.supply = supply
        return ballot

    def get_votes(self, poll_id: int) -> list[int]:
        """Weight sum per option."""
        return list(self.require_poll(poll_id).tally)

    def ballots(self, poll_id: int) -> list[Ballot]:
        return list(self._ballots.get(poll_id, {}).values())

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_records(self) -> dict[str, list[dict[str, Any]]]:
        polls = [
            {
                "poll_id": p.poll_id,
                "cid": p.cid,
                "author": p.author,
                "options": p.options,
                "created": p.created,
                "end": p.end,
                "snapshot": p.snapshot,
                "meeting_id": p.meeting_id,
                "token_snapshot": p.token_snapshot,
                "voters": p.voters,
                "supply": str(p.supply),
                "tally": [str(t) for t in p.tally],
            }
            for p in self.list_polls()
        ]
        ballots = [
            {
                "poll_id": b.poll_id,
                "voter": b.voter,
                "option": b.option,
                "weight": str(b.weight),
                "cast_at": b.cast_at,
            }
            for poll_id in sorted(self._ballots)
            for b in self._ballots[poll_id].values()
        ]
        return {"polls": polls, "ballots": ballots}

    @classmethod
    def from_records(
        cls,
        config: dict[str, Any],
        polls: list[dict[str, Any]],
        ballots: list[dict[str, Any]],
    ) -> PollEngine:
        """Restore engine state from persisted records."""
        engine = cls(config)
        for p in polls:
            poll = Poll(
                poll_id=p["poll_id"],
                cid=p["cid"],
                author=p["author"],
                options=p["options"],
                created=p["created"],
                end=p["end"],
                snapshot=p["snapshot"],
                meeting_id=p.get("meeting_id"),
                token_snapshot=p.get("token_snapshot"),
                voters=p.get("voters", 0),
                supply=int(p.get("supply", "0")),
                tally=[int(t) for t in p.get("tally", [])],
            )
            engine._polls[poll.poll_id] = poll
            engine._ballots[poll.poll_id] = {}
        for b in ballots:
            ballot = Ballot(
                poll_id=b["poll_id"],
                voter=b["voter"],
                option=b["option"],
                weight=int(b["weight"]),
                cast_at=b["cast_at"],
            )
            if ballot.poll_id in engine._ballots:
                engine._ballots[ballot.poll_id][ballot.voter] = ballot
        return engine
