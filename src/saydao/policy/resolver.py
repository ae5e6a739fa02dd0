"""Policy resolver — loads and validates the DAO parameter file.

All tunables live in ``config/dao_params.json``. Engines receive either
the resolver or the plain dict section they need, never the raw file.
A malformed file is rejected at load time, not on first use.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any


PARAMS_FILE = "dao_params.json"


@dataclass(frozen=True)
class TokenPolicy:
    """Token economics for membership and attendance."""
    name: str
    symbol: str
    decimals: int
    join_allocation: int
    meeting_allocation: int

    @property
    def unit(self) -> int:
        return 10 ** self.decimals

    @property
    def join_amount(self) -> int:
        """Base units minted when a member joins."""
        return self.join_allocation * self.unit

    @property
    def meeting_amount(self) -> int:
        """Base units minted per attended meeting."""
        return self.meeting_allocation * self.unit


class PolicyResolver:
    """Read-only view over the DAO parameters.

    Usage:
        resolver = PolicyResolver.from_config_dir(Path("config"))
        resolver.token_policy().meeting_amount
    """

    def __init__(self, params: dict[str, Any]) -> None:
        self._params = params
        self._validate()

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PolicyResolver:
        path = Path(config_dir) / PARAMS_FILE
        if not path.exists():
            raise FileNotFoundError(f"DAO parameters not found: {path}")
        with path.open("r", encoding="utf-8") as handle:
            return cls(json.load(handle))

    @classmethod
    def from_dict(cls, params: dict[str, Any]) -> PolicyResolver:
        return cls(params)

    def _validate(self) -> None:
        for section in ("token", "polls", "meetings"):
            if not isinstance(self._params.get(section), dict):
                raise ValueError(f"DAO parameters missing '{section}' section")

        token = self._params["token"]
        for key in ("decimals", "join_allocation", "meeting_allocation"):
            value = token.get(key)
            if not isinstance(value, int) or value < 0:
                raise ValueError(f"token.{key} must be a non-negative integer")

        max_options = self._params["polls"].get("max_options")
        if not isinstance(max_options, int) or max_options < 2:
            raise ValueError("polls.max_options must be an integer >= 2")
        meeting_options = self._params["polls"].get("meeting_poll_options", 2)
        if not isinstance(meeting_options, int) or not 2 <= meeting_options <= max_options:
            raise ValueError("polls.meeting_poll_options must be in [2, max_options]")

        max_batch = self._params["meetings"].get("max_batch_size")
        if not isinstance(max_batch, int) or max_batch < 1:
            raise ValueError("meetings.max_batch_size must be a positive integer")

    @property
    def params(self) -> dict[str, Any]:
        return self._params

    def token_policy(self) -> TokenPolicy:
        token = self._params["token"]
        return TokenPolicy(
            name=token.get("name", "SayToken"),
            symbol=token.get("symbol", "SAY"),
            decimals=token["decimals"],
            join_allocation=token["join_allocation"],
            meeting_allocation=token["meeting_allocation"],
        )

    def poll_config(self) -> dict[str, Any]:
        return dict(self._params["polls"])

    def meeting_config(self) -> dict[str, Any]:
        return dict(self._params["meetings"])
