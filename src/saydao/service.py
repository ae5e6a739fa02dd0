"""SayDAO service — unified facade for the governance engine.

This is the primary interface for programmatic access to SayDAO. It
orchestrates all subsystems:
- Membership (signature-gated join, join allocation)
- Polls (plain and meeting polls, token-weighted ballots)
- Meeting attendance (participant bitmaps, sealing)
- Attendance-token distribution (paginated, resumable, exactly-once)
- Persistence (event log, state store, in-memory snapshots)

Every mutating call takes the caller's address, the authenticated
identity the ledger would supply, and returns a ServiceResult. A rejected
call returns ``success=False`` with the failure kind in ``error_kind``
and leaves no trace: preconditions are checked before anything is
written, and if the audit write itself fails the in-memory state is
rolled back to what it was before the call.

Calls are expected to arrive one at a time, in ledger order. The service
holds no locks.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from loguru import logger

from saydao.errors import AuditFailure, NotAMember, SayDAOError
from saydao.governance.poll import PollEngine
from saydao.ledger.clock import Clock, SystemClock
from saydao.ledger.token_ledger import TokenLedger
from saydao.meeting.bitmap import members_of
from saydao.meeting.distribution import DistributionEngine
from saydao.meeting.participants import ParticipantTracker
from saydao.membership.registry import MembershipRegistry, SignaturePart
from saydao.models.meeting import Meeting
from saydao.models.poll import Poll
from saydao.persistence.event_log import EventKind, EventLog
from saydao.persistence.state_store import StateStore
from saydao.policy.resolver import PolicyResolver


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    error_kind: Optional[str] = None


class SayDAOService:
    """Unified DAO facade.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        service = SayDAOService(resolver, inviter=alice.address, clock=clock)

        invite = sign_invite(alice.key, 2)
        service.join(bob.address, 2, invite.v, invite.r, invite.s)

        result = service.create_meeting_poll(bob.address, cid, 604800,
                                             start, end, supervisor=1)
        service.vote(bob.address, 0, 1)

        # after the meeting
        service.update_meeting_participants(alice.address, 0, 0, bitmap)
        service.seal_meeting_participants(alice.address, 0)
        service.distribute_meeting_tokens(alice.address, 0, 128)

    Persistence (optional):
        service = SayDAOService(resolver, inviter=..., event_log=log,
                                state_store=store)
        # State is saved on each mutation and loaded on construction.
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        inviter: Optional[str] = None,
        clock: Optional[Clock] = None,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
    ) -> None:
        self._resolver = resolver
        self._token = resolver.token_policy()
        self._poll_config = resolver.poll_config()
        self._meeting_config = resolver.meeting_config()
        self._clock: Clock = clock if clock is not None else SystemClock()
        self._event_log = event_log
        self._state_store = state_store
        self._distribution = DistributionEngine(self._meeting_config)
        self._snapshots: list[dict[str, Any]] = []

        stored = state_store.load() if state_store is not None else None
        if stored is not None:
            self._restore(stored)
            if inviter is not None and inviter.lower() != self._registry.inviter:
                logger.warning(
                    "Ignoring inviter {}: persisted state was created by {}",
                    inviter, self._registry.inviter,
                )
        else:
            if inviter is None:
                raise ValueError("An inviter address is required for a new DAO")
            self._registry = MembershipRegistry(inviter)
            self._ledger = TokenLedger()
            self._polls = PollEngine(self._poll_config)
            self._tracker = ParticipantTracker()

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def ledger(self) -> TokenLedger:
        return self._ledger

    @property
    def registry(self) -> MembershipRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def join(
        self,
        caller: str,
        member_id: int,
        v: SignaturePart,
        r: SignaturePart,
        s: SignaturePart,
    ) -> ServiceResult:
        """Join with an inviter-signed identifier; mints the join allocation."""
        try:
            self._registry.check_join(caller, member_id, v, r, s)
        except SayDAOError as e:
            return self._rejected("join", e)

        before = self._records()
        self._registry.join(caller, member_id, v, r, s)
        balance = self._ledger.mint(caller, self._token.join_amount)

        error = self._commit(EventKind.MEMBER_JOINED, caller, {
            "member_id": member_id,
            "minted": str(self._token.join_amount),
        }, before)
        if error:
            return self._rejected("join", error)

        logger.info("Member {} joined from {}", member_id, caller)
        return ServiceResult(
            success=True,
            data={"member_id": member_id, "balance": balance},
        )

    def member_id_of(self, address: str) -> Optional[int]:
        return self._registry.member_id_of(address)

    def is_member(self, member_id: int) -> bool:
        return self._registry.is_member(member_id)

    def balance_of(self, address: str) -> int:
        return self._ledger.balance_of(address)

    # ------------------------------------------------------------------
    # Polls
    # ------------------------------------------------------------------

    def create_poll(
        self,
        caller: str,
        cid: Union[str, bytes],
        voting_seconds: int,
        options: int,
    ) -> ServiceResult:
        """Open a plain poll weighted by current token balances."""
        try:
            author = self._registry.require_member(caller)
            self._polls.validate_poll(cid, voting_seconds, options)
        except SayDAOError as e:
            return self._rejected("create_poll", e)

        before = self._records()
        poll = self._polls.create_poll(
            author=author,
            cid=cid,
            voting_seconds=voting_seconds,
            options=options,
            now=self._clock.current_time(),
            snapshot=self._registry.member_count,
        )

        error = self._commit(EventKind.POLL_CREATED, caller, {
            "poll_id": poll.poll_id,
            "cid": poll.cid,
            "options": poll.options,
            "end": poll.end,
        }, before)
        if error:
            return self._rejected("create_poll", error)

        logger.info("Member {} created poll {}", author, poll.poll_id)
        return ServiceResult(success=True, data={"poll_id": poll.poll_id, "end": poll.end})

    def create_meeting_poll(
        self,
        caller: str,
        cid: Union[str, bytes],
        voting_seconds: int,
        start: int,
        end: int,
        supervisor: int,
    ) -> ServiceResult:
        """Open a meeting poll and its co-indexed meeting.

        Snapshots the eligible-voter count and token balances; ballots on
        this poll are weighted by the balance at that snapshot.
        """
        options = self._poll_config.get("meeting_poll_options", 2)
        now = self._clock.current_time()
        try:
            author = self._registry.require_member(caller)
            if not self._registry.is_member(supervisor):
                raise NotAMember(f"Supervisor {supervisor} is not a member")
            self._tracker.validate_window(start, end, now)
            self._polls.validate_poll(cid, voting_seconds, options)
        except SayDAOError as e:
            return self._rejected("create_meeting_poll", e)

        before = self._records()
        meeting_id = self._polls.next_poll_id
        poll = self._polls.create_poll(
            author=author,
            cid=cid,
            voting_seconds=voting_seconds,
            options=options,
            now=now,
            snapshot=self._registry.member_count,
            meeting_id=meeting_id,
            token_snapshot=self._ledger.snapshot(),
        )
        meeting = self._tracker.create_meeting(
            meeting_id=meeting_id,
            poll_id=poll.poll_id,
            supervisor=supervisor,
            start=start,
            end=end,
            now=now,
        )

        error = self._commit(EventKind.MEETING_POLL_CREATED, caller, {
            "poll_id": poll.poll_id,
            "meeting_id": meeting.meeting_id,
            "cid": poll.cid,
            "supervisor": supervisor,
            "start": start,
            "end": end,
        }, before)
        if error:
            return self._rejected("create_meeting_poll", error)

        logger.info(
            "Member {} created meeting poll {} supervised by {}",
            author, poll.poll_id, supervisor,
        )
        return ServiceResult(success=True, data={
            "poll_id": poll.poll_id,
            "meeting_id": meeting.meeting_id,
        })

    def vote(self, caller: str, poll_id: int, option: int) -> ServiceResult:
        """Cast a token-weighted ballot."""
        now = self._clock.current_time()
        try:
            voter = self._registry.require_member(caller)
            poll = self._polls.check_vote(poll_id, voter, option, now)
        except SayDAOError as e:
            return self._rejected("vote", e)

        if poll.token_snapshot is not None:
            weight = self._ledger.balance_at(caller, poll.token_snapshot)
            supply = self._ledger.total_supply_at(poll.token_snapshot)
        else:
            weight = self._ledger.balance_of(caller)
            supply = self._ledger.total_supply()

        before = self._records()
        ballot = self._polls.cast_vote(poll_id, voter, option, weight, supply, now)

        error = self._commit(EventKind.VOTE_CAST, caller, {
            "poll_id": poll_id,
            "voter": voter,
            "option": option,
            "weight": str(ballot.weight),
        }, before)
        if error:
            return self._rejected("vote", error)

        logger.info("Member {} voted {} on poll {}", voter, option, poll_id)
        return ServiceResult(success=True, data={"weight": ballot.weight})

    def polls(self, poll_id: int) -> Optional[Poll]:
        return self._polls.get_poll(poll_id)

    def get_votes(self, poll_id: int) -> list[int]:
        return self._polls.get_votes(poll_id)

    # ------------------------------------------------------------------
    # Meetings
    # ------------------------------------------------------------------

    def meetings(self, meeting_id: int) -> Optional[Meeting]:
        return self._tracker.get_meeting(meeting_id)

    def update_meeting_participants(
        self,
        caller: str,
        meeting_id: int,
        cluster: int,
        bitmap: int,
    ) -> ServiceResult:
        """Merge an attendance bitmap into one cluster (supervisor only)."""
        before = self._records()
        try:
            meeting = self._tracker.update_participants(
                meeting_id,
                self._registry.member_id_of(caller),
                cluster,
                bitmap,
                self._clock.current_time(),
            )
        except SayDAOError as e:
            return self._rejected("update_meeting_participants", e)

        error = self._commit(EventKind.PARTICIPANTS_UPDATED, caller, {
            "meeting_id": meeting_id,
            "cluster": cluster,
            "bitmap": hex(bitmap),
            "total_participants": meeting.total_participants,
        }, before)
        if error:
            return self._rejected("update_meeting_participants", error)

        logger.info(
            "Meeting {} cluster {} updated, {} participants",
            meeting_id, cluster, meeting.total_participants,
        )
        return ServiceResult(success=True, data={
            "total_participants": meeting.total_participants,
        })

    def seal_meeting_participants(self, caller: str, meeting_id: int) -> ServiceResult:
        """Freeze the participant list (supervisor only, irreversible)."""
        before = self._records()
        try:
            meeting = self._tracker.seal(meeting_id, self._registry.member_id_of(caller))
        except SayDAOError as e:
            return self._rejected("seal_meeting_participants", e)
        cursor = self._distribution.start(meeting)

        error = self._commit(EventKind.PARTICIPANTS_SEALED, caller, {
            "meeting_id": meeting_id,
            "total_participants": meeting.total_participants,
            "participants": members_of(meeting.bitmaps),
        }, before)
        if error:
            return self._rejected("seal_meeting_participants", error)

        logger.info(
            "Meeting {} sealed with {} participants",
            meeting_id, meeting.total_participants,
        )
        return ServiceResult(success=True, data={
            "total_participants": meeting.total_participants,
            "cursor": [cursor.cluster, cursor.offset],
        })

    def distribute_meeting_tokens(
        self,
        caller: str,
        meeting_id: int,
        batch_size: int,
    ) -> ServiceResult:
        """Credit the next batch of sealed participants (supervisor only)."""
        try:
            meeting = self._tracker.require_meeting(meeting_id)
            batch = self._distribution.plan(
                meeting, self._registry.member_id_of(caller), batch_size,
            )
        except SayDAOError as e:
            return self._rejected("distribute_meeting_tokens", e)

        if batch.is_noop:
            logger.debug("Meeting {} has nothing left to distribute", meeting_id)
            return ServiceResult(success=True, data={
                "credited": [],
                "remaining_clusters": 0,
            })

        before = self._records()
        skipped: list[int] = []
        for member_id in batch.credited:
            address = self._registry.address_of(member_id)
            if address is None:
                logger.warning(
                    "Meeting {} participant {} is not a member, nothing credited",
                    meeting_id, member_id,
                )
                skipped.append(member_id)
                continue
            self._ledger.mint(address, self._token.meeting_amount)
        self._distribution.commit(meeting, batch)
        remaining = self._distribution.remaining_clusters(meeting)

        error = self._commit(EventKind.MEETING_TOKENS_DISTRIBUTED, caller, {
            "meeting_id": meeting_id,
            "credited": batch.credited,
            "skipped": skipped,
            "amount": str(self._token.meeting_amount),
            "cursor": [batch.cursor_after.cluster, batch.cursor_after.offset],
        }, before)
        if error:
            return self._rejected("distribute_meeting_tokens", error)

        logger.info(
            "Meeting {} distributed to {} participants, {} clusters remaining",
            meeting_id, len(batch.credited) - len(skipped), remaining,
        )
        return ServiceResult(success=True, data={
            "credited": batch.credited,
            "skipped": skipped,
            "remaining_clusters": remaining,
        })

    def get_remaining_distribution_clusters(self, meeting_id: int) -> int:
        return self._distribution.remaining_clusters(
            self._tracker.require_meeting(meeting_id)
        )

    def get_next_distribution_bitmap(self, meeting_id: int) -> int:
        return self._distribution.next_bitmap(
            self._tracker.require_meeting(meeting_id)
        )

    # ------------------------------------------------------------------
    # Status & snapshots
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        meetings = self._tracker.list_meetings()
        return {
            "chain_time": self._clock.current_time(),
            "inviter": self._registry.inviter,
            "members": self._registry.member_count,
            "total_supply": str(self._ledger.total_supply()),
            "token": self._token.symbol,
            "polls": len(self._polls.list_polls()),
            "meetings": {m.meeting_id: m.state.value for m in meetings},
            "events": self._event_log.count if self._event_log is not None else 0,
        }

    def take_snapshot(self) -> int:
        """Capture the full DAO state; returns a snapshot id."""
        self._snapshots.append(self._records())
        return len(self._snapshots) - 1

    def revert_snapshot(self, snapshot_id: int) -> None:
        """Restore a snapshot. It and every later snapshot are consumed."""
        if not 0 <= snapshot_id < len(self._snapshots):
            raise KeyError(f"Unknown snapshot: {snapshot_id}")
        records = self._snapshots[snapshot_id]
        del self._snapshots[snapshot_id:]
        self._restore(records)
        self._persist_state()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _records(self) -> dict[str, Any]:
        polls = self._polls.to_records()
        return copy.deepcopy({
            "registry": self._registry.to_records(),
            "ledger": self._ledger.to_records(),
            "polls": polls["polls"],
            "ballots": polls["ballots"],
            "meetings": self._tracker.to_records(),
        })

    def _restore(self, records: dict[str, Any]) -> None:
        self._registry = MembershipRegistry.from_records(records["registry"])
        self._ledger = TokenLedger.from_records(records["ledger"])
        self._polls = PollEngine.from_records(
            self._poll_config, records["polls"], records["ballots"],
        )
        self._tracker = ParticipantTracker.from_records(records["meetings"])

    def _rejected(self, operation: str, error: SayDAOError) -> ServiceResult:
        logger.warning("{} rejected ({}): {}", operation, error.kind, error)
        return ServiceResult(success=False, errors=[str(error)], error_kind=error.kind)

    def _persist_state(self) -> None:
        if self._state_store is not None:
            self._state_store.save(self._records())

    def _commit(
        self,
        kind: EventKind,
        actor: str,
        payload: dict[str, Any],
        before: dict[str, Any],
    ) -> Optional[AuditFailure]:
        """Save the new state, then extend the audit chain.

        Returns None on success. On failure the in-memory state, and the
        state file if one was already rewritten, go back to ``before`` and
        the returned AuditFailure describes what could not be written.
        """
        try:
            self._persist_state()
        except OSError as e:
            self._restore(before)
            logger.error("State save for {} failed, rolled back: {}", kind.value, e)
            return AuditFailure(f"State store failure: {e}")

        if self._event_log is None:
            return None
        try:
            self._event_log.record(kind, actor, payload, self._clock.current_time())
        except OSError as e:
            self._restore(before)
            logger.error("Event log write for {} failed, rolled back: {}", kind.value, e)
            try:
                self._persist_state()
            except OSError as save_error:
                logger.critical(
                    "State file still holds the undone {}: {}", kind.value, save_error,
                )
            return AuditFailure(f"Event log failure: {e}")
        return None
