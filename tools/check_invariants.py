#!/usr/bin/env python3
"""SayDAO invariant checks against the DAO parameter file."""

import json
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
PARAMS_FILE = "dao_params.json"

# Identifiers are uint16
MAX_MEMBER_ID = 2**16 - 1


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def check_token(token: dict, errors: list[str]) -> None:
    decimals = token.get("decimals")
    if not isinstance(decimals, int) or not 0 <= decimals <= 36:
        errors.append("token.decimals must be an integer in [0, 36]")
    for key in ("join_allocation", "meeting_allocation"):
        value = token.get(key)
        if not isinstance(value, int) or value < 0:
            errors.append(f"token.{key} must be a non-negative integer")
    if token.get("meeting_allocation") == 0:
        errors.append("token.meeting_allocation of 0 makes distribution a no-op")


def check_polls(polls: dict, errors: list[str]) -> None:
    max_options = polls.get("max_options")
    if not isinstance(max_options, int) or max_options < 2:
        errors.append("polls.max_options must be an integer >= 2")
        return
    meeting_options = polls.get("meeting_poll_options", 2)
    if meeting_options != 2:
        errors.append("polls.meeting_poll_options must be 2 (yes/no)")
    if meeting_options > max_options:
        errors.append("polls.meeting_poll_options cannot exceed polls.max_options")


def check_meetings(meetings: dict, errors: list[str]) -> None:
    max_batch = meetings.get("max_batch_size")
    if not isinstance(max_batch, int) or max_batch < 1:
        errors.append("meetings.max_batch_size must be a positive integer")
    elif max_batch > MAX_MEMBER_ID + 1:
        errors.append(
            f"meetings.max_batch_size cannot exceed the identifier space ({MAX_MEMBER_ID + 1})"
        )


def check(config_dir: Path = ROOT / "config") -> int:
    params = load_json(Path(config_dir) / PARAMS_FILE)
    errors: list[str] = []

    for section in ("token", "polls", "meetings"):
        if not isinstance(params.get(section), dict):
            errors.append(f"missing section: {section}")
    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    check_token(params["token"], errors)
    check_polls(params["polls"], errors)
    check_meetings(params["meetings"], errors)

    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    print("Invariant check passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(check(Path(sys.argv[1]) if len(sys.argv) > 1 else ROOT / "config"))
