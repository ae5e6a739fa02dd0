"""Tests for SayDAOService — end-to-end DAO flows.

Mirrors the integration scenarios the DAO was specified against:
- Members create polls and vote once, weighted by their tokens.
- Non-members cannot create polls.
- A meeting poll's supervisor records attendance after the meeting,
  seals it, and distributes attendance tokens in batches of 128.

Also proves rejected calls are atomic, snapshots revert exactly, and
persisted state reloads.
"""

import pytest
from pathlib import Path
from eth_account import Account

from saydao.ledger.clock import ManualClock
from saydao.meeting.bitmap import create_bitmaps
from saydao.membership.registry import sign_invite
from saydao.models.meeting import MeetingState
from saydao.persistence.event_log import EventKind, EventLog
from saydao.persistence.state_store import StateStore
from saydao.policy.resolver import PolicyResolver
from saydao.service import SayDAOService


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"

CID = "0x5f9921586542097d33e99dabc8ef759b122f20b9a77ead6a86f70e9b0af20f05"
GENESIS_TIME = 1_700_000_000
ONE_DAY = 60 * 60 * 24
ONE_WEEK = ONE_DAY * 7
ONE_MONTH = ONE_DAY * 30
TOKEN = 10**18


def _account(index: int):
    return Account.from_key("0x" + f"{index:064x}")


ALICE = _account(1)
BOB = _account(2)
CAROL = _account(3)
DAN = _account(4)
ERIN = _account(5)
MALLORY = _account(6)


@pytest.fixture
def resolver() -> PolicyResolver:
    return PolicyResolver.from_config_dir(CONFIG_DIR)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(GENESIS_TIME)


@pytest.fixture
def service(resolver: PolicyResolver, clock: ManualClock) -> SayDAOService:
    return SayDAOService(resolver, inviter=ALICE.address, clock=clock)


def _add(service: SayDAOService, member, member_id: int) -> None:
    """Helper: ALICE invites ``member`` under ``member_id`` and it joins."""
    invite = sign_invite(ALICE.key, member_id)
    result = service.join(member.address, member_id, invite.v, invite.r, invite.s)
    assert result.success, result.errors


@pytest.fixture
def meeting_dao(service: SayDAOService) -> SayDAOService:
    _add(service, ALICE, 1)
    _add(service, BOB, 2)
    _add(service, CAROL, 3)
    _add(service, DAN, 4)
    _add(service, ERIN, 666)
    # Sorry Mallory you are not invited.
    return service


def _create_meeting(service: SayDAOService, clock: ManualClock, supervisor: int = 1):
    start = clock.current_time() + ONE_MONTH
    end = start + ONE_DAY
    result = service.create_meeting_poll(BOB.address, CID, ONE_WEEK, start, end, supervisor)
    assert result.success, result.errors
    return result.data["meeting_id"], start, end


# ======================================================================
# Membership
# ======================================================================


class TestJoin:
    def test_join_mints_allocation(self, service: SayDAOService) -> None:
        _add(service, BOB, 1)
        assert service.member_id_of(BOB.address) == 1
        assert service.balance_of(BOB.address) == 100 * TOKEN
        assert service.ledger.total_supply() == 100 * TOKEN

    def test_forged_invite_rejected(self, service: SayDAOService) -> None:
        invite = sign_invite(MALLORY.key, 9)
        result = service.join(MALLORY.address, 9, invite.v, invite.r, invite.s)
        assert not result.success
        assert result.error_kind == "InvalidSignature"
        assert service.balance_of(MALLORY.address) == 0

    def test_double_join_rejected(self, service: SayDAOService) -> None:
        _add(service, BOB, 1)
        invite = sign_invite(ALICE.key, 1)
        result = service.join(CAROL.address, 1, invite.v, invite.r, invite.s)
        assert result.error_kind == "AlreadyMember"
        assert service.ledger.total_supply() == 100 * TOKEN

    def test_new_dao_needs_inviter(self, resolver: PolicyResolver) -> None:
        with pytest.raises(ValueError, match="inviter"):
            SayDAOService(resolver)


# ======================================================================
# Plain polls
# ======================================================================


class TestPoll:
    @pytest.fixture
    def poll_dao(self, service: SayDAOService) -> SayDAOService:
        _add(service, BOB, 1)
        _add(service, CAROL, 2)
        _add(service, DAN, 3)
        return service

    def test_member_creates_poll_and_votes(self, poll_dao: SayDAOService) -> None:
        result = poll_dao.create_poll(BOB.address, CID, 3600, 2)
        assert result.success

        poll = poll_dao.polls(0)
        assert poll.cid == CID
        assert poll.options == 2
        assert poll.voters == 0
        assert poll.supply == 0
        assert poll.snapshot == 3

        assert poll_dao.vote(BOB.address, 0, 1).success
        assert poll_dao.vote(CAROL.address, 0, 0).success

        votes = poll_dao.get_votes(0)
        assert votes[0] == poll_dao.balance_of(CAROL.address)
        assert votes[1] == poll_dao.balance_of(BOB.address)

        again = poll_dao.vote(BOB.address, 0, 1)
        assert not again.success
        assert again.error_kind == "AlreadyVoted"

        poll = poll_dao.polls(0)
        assert poll.voters == 2
        assert poll.supply == poll_dao.ledger.total_supply()

    def test_non_member_cannot_create_poll(self, poll_dao: SayDAOService) -> None:
        result = poll_dao.create_poll(MALLORY.address, CID, 1, 2)
        assert not result.success
        assert result.error_kind == "NotAMember"
        assert poll_dao.polls(0) is None

    def test_non_member_cannot_vote(self, poll_dao: SayDAOService) -> None:
        poll_dao.create_poll(BOB.address, CID, 3600, 2)
        assert poll_dao.vote(MALLORY.address, 0, 0).error_kind == "NotAMember"

    def test_voting_closes(self, poll_dao: SayDAOService, clock: ManualClock) -> None:
        poll_dao.create_poll(BOB.address, CID, 3600, 2)
        clock.increase_time(3600)
        result = poll_dao.vote(CAROL.address, 0, 0)
        assert result.error_kind == "VotingClosed"
        assert poll_dao.get_votes(0) == [0, 0]

    def test_bad_content_id(self, poll_dao: SayDAOService) -> None:
        assert poll_dao.create_poll(BOB.address, "0xdead", 3600, 2).error_kind == "InvalidContentId"


# ======================================================================
# Meeting polls
# ======================================================================


class TestMeetingPoll:
    def test_create_meeting_poll(self, meeting_dao: SayDAOService, clock: ManualClock) -> None:
        meeting_id, start, end = _create_meeting(meeting_dao, clock)
        poll = meeting_dao.polls(0)
        meeting = meeting_dao.meetings(0)

        assert meeting_id == 0
        assert poll.meeting_id == 0
        assert poll.options == 2
        assert poll.voters == 0
        assert poll.snapshot == 5
        assert meeting.poll_id == 0
        assert meeting.supervisor == 1
        assert meeting.start == start
        assert meeting.end == end
        assert meeting.total_participants == 0
        assert not meeting.sealed

    def test_meeting_and_poll_share_index(self, meeting_dao: SayDAOService, clock: ManualClock) -> None:
        meeting_dao.create_poll(BOB.address, CID, 3600, 3)
        meeting_id, _, _ = _create_meeting(meeting_dao, clock)
        assert meeting_id == 1
        assert meeting_dao.polls(1).meeting_id == 1
        assert meeting_dao.meetings(1).poll_id == 1
        assert meeting_dao.meetings(0) is None

    def test_non_member_rejected(self, meeting_dao: SayDAOService, clock: ManualClock) -> None:
        start = clock.current_time() + ONE_MONTH
        result = meeting_dao.create_meeting_poll(
            MALLORY.address, CID, ONE_WEEK, start, start + ONE_DAY, 1,
        )
        assert result.error_kind == "NotAMember"

    def test_supervisor_must_be_member(self, meeting_dao: SayDAOService, clock: ManualClock) -> None:
        start = clock.current_time() + ONE_MONTH
        result = meeting_dao.create_meeting_poll(
            BOB.address, CID, ONE_WEEK, start, start + ONE_DAY, 99,
        )
        assert result.error_kind == "NotAMember"

    def test_invalid_windows(self, meeting_dao: SayDAOService, clock: ManualClock) -> None:
        now = clock.current_time()
        past = meeting_dao.create_meeting_poll(BOB.address, CID, ONE_WEEK, now, now + 10, 1)
        backwards = meeting_dao.create_meeting_poll(
            BOB.address, CID, ONE_WEEK, now + 100, now + 50, 1,
        )
        assert past.error_kind == "InvalidWindow"
        assert backwards.error_kind == "InvalidWindow"
        assert meeting_dao.polls(0) is None
        assert meeting_dao.meetings(0) is None

    def test_weight_uses_creation_snapshot(self, meeting_dao: SayDAOService, clock: ManualClock) -> None:
        _create_meeting(meeting_dao, clock)
        # MALLORY joins after the poll was created: no weight at the snapshot
        _add(meeting_dao, MALLORY, 7)
        assert meeting_dao.vote(MALLORY.address, 0, 1).data["weight"] == 0
        assert meeting_dao.vote(BOB.address, 0, 1).data["weight"] == 100 * TOKEN
        assert meeting_dao.get_votes(0) == [0, 100 * TOKEN]
        assert meeting_dao.polls(0).supply == 500 * TOKEN


class TestParticipantDistribution:
    def test_supervisor_creates_participant_list(
        self, meeting_dao: SayDAOService, clock: ManualClock,
    ) -> None:
        _, _, end = _create_meeting(meeting_dao, clock)

        # Alice, Bob and Carol vote "yes"
        for member in (ALICE, BOB, CAROL):
            assert meeting_dao.vote(member.address, 0, 1).success

        clock.set_time(end + ONE_DAY)

        # alice, bob, dan, erin
        for cluster, bitmap in create_bitmaps([1, 2, 4, 666]).items():
            result = meeting_dao.update_meeting_participants(ALICE.address, 0, cluster, bitmap)
            assert result.success, result.errors

        assert meeting_dao.meetings(0).total_participants == 4
        assert meeting_dao.seal_meeting_participants(ALICE.address, 0).success
        assert meeting_dao.get_next_distribution_bitmap(0) == 0b10110

        assert meeting_dao.distribute_meeting_tokens(ALICE.address, 0, 128).success
        assert meeting_dao.get_remaining_distribution_clusters(0) == 1
        assert meeting_dao.get_next_distribution_bitmap(0) == 1 << 154

        assert meeting_dao.distribute_meeting_tokens(ALICE.address, 0, 128).success
        assert meeting_dao.get_remaining_distribution_clusters(0) == 0
        assert meeting_dao.meetings(0).state == MeetingState.DISTRIBUTED

        for member in (ALICE, BOB, DAN, ERIN):
            assert meeting_dao.balance_of(member.address) == 110 * TOKEN
        assert meeting_dao.balance_of(CAROL.address) == 100 * TOKEN

    def test_repeat_distribution_credits_nothing(
        self, meeting_dao: SayDAOService, clock: ManualClock,
    ) -> None:
        _, _, end = _create_meeting(meeting_dao, clock)
        clock.set_time(end + 1)
        meeting_dao.update_meeting_participants(ALICE.address, 0, 0, 0b110)
        meeting_dao.seal_meeting_participants(ALICE.address, 0)
        meeting_dao.distribute_meeting_tokens(ALICE.address, 0, 4096)
        supply = meeting_dao.ledger.total_supply()

        result = meeting_dao.distribute_meeting_tokens(ALICE.address, 0, 4096)
        assert result.success
        assert result.data["credited"] == []
        assert meeting_dao.ledger.total_supply() == supply

    def test_update_before_end_too_early(
        self, meeting_dao: SayDAOService, clock: ManualClock,
    ) -> None:
        _create_meeting(meeting_dao, clock)
        result = meeting_dao.update_meeting_participants(ALICE.address, 0, 0, 0b110)
        assert result.error_kind == "TooEarly"
        assert meeting_dao.meetings(0).total_participants == 0

    def test_update_after_seal_rejected(
        self, meeting_dao: SayDAOService, clock: ManualClock,
    ) -> None:
        _, _, end = _create_meeting(meeting_dao, clock)
        clock.set_time(end + 1)
        meeting_dao.update_meeting_participants(ALICE.address, 0, 0, 0b110)
        meeting_dao.seal_meeting_participants(ALICE.address, 0)

        result = meeting_dao.update_meeting_participants(ALICE.address, 0, 0, 0b1)
        assert result.error_kind == "AlreadySealed"
        assert meeting_dao.seal_meeting_participants(ALICE.address, 0).error_kind == "AlreadySealed"
        assert meeting_dao.meetings(0).total_participants == 2

    def test_only_supervisor(self, meeting_dao: SayDAOService, clock: ManualClock) -> None:
        _, _, end = _create_meeting(meeting_dao, clock)
        clock.set_time(end + 1)
        assert meeting_dao.update_meeting_participants(BOB.address, 0, 0, 1).error_kind == "NotSupervisor"
        assert meeting_dao.update_meeting_participants(MALLORY.address, 0, 0, 1).error_kind == "NotSupervisor"
        assert meeting_dao.seal_meeting_participants(BOB.address, 0).error_kind == "NotSupervisor"
        meeting_dao.seal_meeting_participants(ALICE.address, 0)
        assert meeting_dao.distribute_meeting_tokens(BOB.address, 0, 10).error_kind == "NotSupervisor"

    def test_distribute_before_seal(self, meeting_dao: SayDAOService, clock: ManualClock) -> None:
        _, _, end = _create_meeting(meeting_dao, clock)
        clock.set_time(end + 1)
        meeting_dao.update_meeting_participants(ALICE.address, 0, 0, 0b110)
        result = meeting_dao.distribute_meeting_tokens(ALICE.address, 0, 10)
        assert result.error_kind == "NotSealed"
        assert meeting_dao.balance_of(BOB.address) == 100 * TOKEN

    def test_non_member_bit_is_skipped(self, meeting_dao: SayDAOService, clock: ManualClock) -> None:
        _, _, end = _create_meeting(meeting_dao, clock)
        clock.set_time(end + 1)
        # identifier 9 never joined
        meeting_dao.update_meeting_participants(ALICE.address, 0, 0, (1 << 2) | (1 << 9))
        meeting_dao.seal_meeting_participants(ALICE.address, 0)
        supply = meeting_dao.ledger.total_supply()

        result = meeting_dao.distribute_meeting_tokens(ALICE.address, 0, 256)
        assert result.data["credited"] == [2, 9]
        assert result.data["skipped"] == [9]
        assert meeting_dao.ledger.total_supply() == supply + 10 * TOKEN
        assert meeting_dao.get_remaining_distribution_clusters(0) == 0

    def test_unknown_meeting(self, meeting_dao: SayDAOService) -> None:
        assert meeting_dao.seal_meeting_participants(ALICE.address, 3).error_kind == "UnknownMeeting"


# ======================================================================
# Audit trail, persistence, snapshots
# ======================================================================


class TestAuditAndPersistence:
    def test_events_recorded(self, resolver: PolicyResolver, clock: ManualClock) -> None:
        log = EventLog()
        service = SayDAOService(resolver, inviter=ALICE.address, clock=clock, event_log=log)
        _add(service, ALICE, 1)
        clock.increase_time(12)
        service.create_poll(ALICE.address, CID, 60, 2)
        service.create_poll(MALLORY.address, CID, 60, 2)

        events = log.events()
        assert [e.event_kind for e in events] == [EventKind.MEMBER_JOINED, EventKind.POLL_CREATED]
        assert events[0].payload["member_id"] == 1
        assert events[0].actor == ALICE.address
        assert [e.chain_time for e in events] == [GENESIS_TIME, GENESIS_TIME + 12]

    def test_state_reloads(self, resolver: PolicyResolver, clock: ManualClock, tmp_path: Path) -> None:
        store = StateStore(tmp_path / "state.json")
        log_path = tmp_path / "events.jsonl"
        service = SayDAOService(
            resolver, inviter=ALICE.address, clock=clock,
            event_log=EventLog(log_path), state_store=store,
        )
        _add(service, ALICE, 1)
        _add(service, BOB, 2)
        _create_meeting(service, clock)
        service.vote(BOB.address, 0, 1)

        reloaded = SayDAOService(
            resolver, clock=clock, event_log=EventLog(log_path), state_store=store,
        )
        assert reloaded.member_id_of(BOB.address) == 2
        assert reloaded.get_votes(0) == [0, 100 * TOKEN]
        assert reloaded.meetings(0).supervisor == 1
        assert reloaded.vote(BOB.address, 0, 1).error_kind == "AlreadyVoted"
        # the chain continues after reload
        _add(reloaded, CAROL, 3)
        assert reloaded.status()["events"] == 5
        assert EventLog(log_path).last_event.sequence == 5

    def test_state_save_failure_leaves_no_event(
        self, resolver: PolicyResolver, clock: ManualClock, tmp_path: Path,
    ) -> None:
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("", encoding="utf-8")
        log_path = tmp_path / "events.jsonl"
        service = SayDAOService(
            resolver, inviter=ALICE.address, clock=clock,
            event_log=EventLog(log_path),
            state_store=StateStore(blocker / "state.json"),
        )
        invite = sign_invite(ALICE.key, 1)
        result = service.join(ALICE.address, 1, invite.v, invite.r, invite.s)

        assert not result.success
        assert result.error_kind == "AuditFailure"
        assert "State store failure" in result.errors[0]
        assert service.member_id_of(ALICE.address) is None
        assert service.ledger.total_supply() == 0
        assert EventLog(log_path).count == 0

    def test_event_log_failure_restores_state_file(
        self, resolver: PolicyResolver, clock: ManualClock, tmp_path: Path,
    ) -> None:
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("", encoding="utf-8")
        store = StateStore(tmp_path / "state.json")
        service = SayDAOService(
            resolver, inviter=ALICE.address, clock=clock,
            event_log=EventLog(blocker / "events.jsonl"), state_store=store,
        )
        invite = sign_invite(ALICE.key, 1)
        result = service.join(ALICE.address, 1, invite.v, invite.r, invite.s)

        assert not result.success
        assert result.error_kind == "AuditFailure"
        assert "Event log failure" in result.errors[0]
        assert service.member_id_of(ALICE.address) is None
        reloaded = SayDAOService(resolver, clock=clock, state_store=store)
        assert reloaded.member_id_of(ALICE.address) is None
        assert reloaded.ledger.total_supply() == 0

    def test_snapshot_revert(self, meeting_dao: SayDAOService, clock: ManualClock) -> None:
        snapshot = meeting_dao.take_snapshot()
        _create_meeting(meeting_dao, clock)
        meeting_dao.vote(BOB.address, 0, 1)
        assert meeting_dao.polls(0) is not None

        meeting_dao.revert_snapshot(snapshot)
        assert meeting_dao.polls(0) is None
        assert meeting_dao.meetings(0) is None
        assert meeting_dao.member_id_of(ERIN.address) == 666
        with pytest.raises(KeyError):
            meeting_dao.revert_snapshot(snapshot)

    def test_status(self, meeting_dao: SayDAOService, clock: ManualClock) -> None:
        _create_meeting(meeting_dao, clock)
        status = meeting_dao.status()
        assert status["members"] == 5
        assert status["polls"] == 1
        assert status["meetings"] == {0: "open"}
        assert status["total_supply"] == str(500 * TOKEN)
