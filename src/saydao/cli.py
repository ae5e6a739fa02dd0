"""SayDAO CLI — command-line interface for the governance engine.

Usage:
    python -m saydao.cli status
    python -m saydao.cli sign-invite --id 2
    python -m saydao.cli join --caller 0xBob... --id 2 --v 27 --r 0x... --s 0x...
    python -m saydao.cli create-meeting-poll --caller 0xBob... --cid 0x5f99... \
        --seconds 604800 --start 1767225600 --end 1767312000 --supervisor 1
    python -m saydao.cli update-participants --caller 0xAlice... --meeting 0 --ids 1,2,4,666
    python -m saydao.cli seal-participants --caller 0xAlice... --meeting 0
    python -m saydao.cli distribute --caller 0xAlice... --meeting 0 --batch 128
    python -m saydao.cli check-invariants

Configuration comes from a ``.env`` file in the working directory:
    SAYDAO_PRIVATE_KEY  inviter/caller key (sign-invite, default --caller)
    SAYDAO_RPC_URL      if set, chain time is read from this node
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from eth_account import Account

from saydao.ledger.clock import Clock, ManualClock, SystemClock, Web3Clock
from saydao.meeting.bitmap import create_bitmaps, to_binary
from saydao.membership.registry import sign_invite
from saydao.persistence.event_log import EventLog
from saydao.persistence.state_store import StateStore
from saydao.policy.resolver import PolicyResolver
from saydao.service import SayDAOService, ServiceResult


DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config"
DEFAULT_DATA = Path(__file__).resolve().parents[2] / "data"


def _env_address() -> Optional[str]:
    key = os.getenv("SAYDAO_PRIVATE_KEY")
    return Account.from_key(key).address if key else None


def _make_clock(args: argparse.Namespace) -> Clock:
    if args.now is not None:
        return ManualClock(args.now)
    rpc_url = os.getenv("SAYDAO_RPC_URL")
    if rpc_url:
        return Web3Clock(rpc_url)
    return SystemClock()


def _make_service(args: argparse.Namespace) -> SayDAOService:
    """Create a SayDAOService with durable persistence."""
    data_dir: Path = args.data
    data_dir.mkdir(parents=True, exist_ok=True)
    resolver = PolicyResolver.from_config_dir(args.config)
    return SayDAOService(
        resolver,
        inviter=args.inviter or _env_address(),
        clock=_make_clock(args),
        event_log=EventLog(storage_path=data_dir / "events.jsonl"),
        state_store=StateStore(data_dir / "state.json"),
    )


def _caller(args: argparse.Namespace) -> str:
    caller = args.caller or _env_address()
    if not caller:
        raise SystemExit("No caller: pass --caller or set SAYDAO_PRIVATE_KEY")
    return caller


def _report(result: ServiceResult) -> int:
    if result.success:
        print(json.dumps(result.data, indent=2, default=str))
        return 0
    kind = f"[{result.error_kind}] " if result.error_kind else ""
    print(f"Failed: {kind}{'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_status(args: argparse.Namespace) -> int:
    service = _make_service(args)
    print(json.dumps(service.status(), indent=2))
    return 0


def cmd_sign_invite(args: argparse.Namespace) -> int:
    key = os.getenv("SAYDAO_PRIVATE_KEY")
    if not key:
        print("ERROR: Missing SAYDAO_PRIVATE_KEY in .env", file=sys.stderr)
        return 1
    invite = sign_invite(key, args.id)
    print(json.dumps({
        "id": invite.member_id,
        "v": invite.v,
        "r": invite.r_hex,
        "s": invite.s_hex,
    }, indent=2))
    return 0


def cmd_join(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.join(_caller(args), args.id, args.v, args.r, args.s))


def cmd_create_poll(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.create_poll(_caller(args), args.cid, args.seconds, args.options))


def cmd_create_meeting_poll(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.create_meeting_poll(
        _caller(args), args.cid, args.seconds, args.start, args.end, args.supervisor,
    ))


def cmd_vote(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.vote(_caller(args), args.poll, args.option))


def cmd_update_participants(args: argparse.Namespace) -> int:
    service = _make_service(args)
    caller = _caller(args)
    if args.ids:
        bitmaps = create_bitmaps(int(i) for i in args.ids.split(","))
    else:
        bitmaps = {args.cluster: int(args.bitmap, 0)}
    recorded: list[int] = []
    for cluster, bitmap in sorted(bitmaps.items()):
        code = _report(service.update_meeting_participants(
            caller, args.meeting, cluster, bitmap,
        ))
        if code:
            if recorded:
                print(
                    f"Partial update: clusters {recorded} of meeting {args.meeting} "
                    f"were recorded before cluster {cluster} failed",
                    file=sys.stderr,
                )
            return code
        recorded.append(cluster)
    return 0


def cmd_seal_participants(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.seal_meeting_participants(_caller(args), args.meeting))


def cmd_distribute(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.distribute_meeting_tokens(_caller(args), args.meeting, args.batch))


def cmd_show_meeting(args: argparse.Namespace) -> int:
    service = _make_service(args)
    meeting = service.meetings(args.meeting)
    if meeting is None:
        print(f"Failed: meeting {args.meeting} not found", file=sys.stderr)
        return 1
    print(json.dumps({
        "meeting_id": meeting.meeting_id,
        "poll_id": meeting.poll_id,
        "supervisor": meeting.supervisor,
        "start": meeting.start,
        "end": meeting.end,
        "total_participants": meeting.total_participants,
        "sealed": meeting.sealed,
        "state": meeting.state.value,
        "remaining_clusters": service.get_remaining_distribution_clusters(args.meeting),
        "next_bitmap": to_binary(service.get_next_distribution_bitmap(args.meeting)),
    }, indent=2))
    return 0


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Run configuration invariant checks."""
    tools_dir = Path(__file__).resolve().parents[2] / "tools"
    sys.path.insert(0, str(tools_dir))
    from check_invariants import check
    return check(args.config)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="saydao",
        description="SayDAO — governance engine CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--data",
        type=Path,
        default=DEFAULT_DATA,
        help="Path to state directory (default: data/)",
    )
    parser.add_argument("--inviter", help="Inviter address for a new DAO")
    parser.add_argument("--now", type=int, help="Fixed chain time (seconds)")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("status", help="Show DAO status")

    p_sign = sub.add_parser("sign-invite", help="Sign an invitation with SAYDAO_PRIVATE_KEY")
    p_sign.add_argument("--id", type=int, required=True, help="Member identifier")

    p_join = sub.add_parser("join", help="Join with a signed invitation")
    p_join.add_argument("--caller", help="Caller address")
    p_join.add_argument("--id", type=int, required=True, help="Member identifier")
    p_join.add_argument("--v", type=int, required=True)
    p_join.add_argument("--r", required=True, help="Signature r (hex)")
    p_join.add_argument("--s", required=True, help="Signature s (hex)")

    p_poll = sub.add_parser("create-poll", help="Create a poll")
    p_poll.add_argument("--caller", help="Caller address")
    p_poll.add_argument("--cid", required=True, help="32-byte content id (hex)")
    p_poll.add_argument("--seconds", type=int, required=True, help="Voting window")
    p_poll.add_argument("--options", type=int, default=2)

    p_mpoll = sub.add_parser("create-meeting-poll", help="Create a meeting poll")
    p_mpoll.add_argument("--caller", help="Caller address")
    p_mpoll.add_argument("--cid", required=True, help="32-byte content id (hex)")
    p_mpoll.add_argument("--seconds", type=int, required=True, help="Voting window")
    p_mpoll.add_argument("--start", type=int, required=True, help="Meeting start")
    p_mpoll.add_argument("--end", type=int, required=True, help="Meeting end")
    p_mpoll.add_argument("--supervisor", type=int, required=True, help="Supervisor id")

    p_vote = sub.add_parser("vote", help="Vote on a poll")
    p_vote.add_argument("--caller", help="Caller address")
    p_vote.add_argument("--poll", type=int, required=True)
    p_vote.add_argument("--option", type=int, required=True)

    p_upd = sub.add_parser("update-participants", help="Record meeting attendance")
    p_upd.add_argument("--caller", help="Caller address")
    p_upd.add_argument("--meeting", type=int, required=True)
    group = p_upd.add_mutually_exclusive_group(required=True)
    group.add_argument("--ids", help="Comma-separated member ids")
    group.add_argument("--bitmap", help="Raw cluster bitmap (int or 0x hex)")
    p_upd.add_argument("--cluster", type=int, default=0, help="Cluster for --bitmap")

    p_seal = sub.add_parser("seal-participants", help="Seal meeting attendance")
    p_seal.add_argument("--caller", help="Caller address")
    p_seal.add_argument("--meeting", type=int, required=True)

    p_dist = sub.add_parser("distribute", help="Distribute attendance tokens")
    p_dist.add_argument("--caller", help="Caller address")
    p_dist.add_argument("--meeting", type=int, required=True)
    p_dist.add_argument("--batch", type=int, default=128)

    p_show = sub.add_parser("show-meeting", help="Show meeting and distribution state")
    p_show.add_argument("--meeting", type=int, required=True)

    sub.add_parser("check-invariants", help="Validate the DAO parameter file")

    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "status": cmd_status,
        "sign-invite": cmd_sign_invite,
        "join": cmd_join,
        "create-poll": cmd_create_poll,
        "create-meeting-poll": cmd_create_meeting_poll,
        "vote": cmd_vote,
        "update-participants": cmd_update_participants,
        "seal-participants": cmd_seal_participants,
        "distribute": cmd_distribute,
        "show-meeting": cmd_show_meeting,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        return handler(args)
    except ValueError as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
