"""Token ledger — the SayToken balances the DAO weighs votes with.

In production balances live in the token contract; this in-memory ledger
stands in for it behind the same narrow interface the engines need:
mint, balance lookups, total supply and balance snapshots.

Snapshots work like ERC-20 snapshots: ``snapshot()`` returns an id, and
``balance_at(address, id)`` returns the balance as it was when the id was
taken, no matter what has been minted since. Only the first write to an
account after a snapshot records a checkpoint, so cost is proportional to
activity, not to the number of snapshots.
"""

from __future__ import annotations

import bisect
from typing import Any


class TokenLedger:
    """In-memory, mint-only token ledger keyed by address.

    Usage:
        ledger = TokenLedger()
        ledger.mint("0xabc...", 100 * 10**18)
        snap = ledger.snapshot()
        ledger.balance_at("0xabc...", snap)
    """

    def __init__(self) -> None:
        self._balances: dict[str, int] = {}
        self._total_supply = 0
        self._current_snapshot = 0
        # address -> ([snapshot ids], [balances]) checkpoints
        self._account_checkpoints: dict[str, tuple[list[int], list[int]]] = {}
        self._supply_checkpoints: tuple[list[int], list[int]] = ([], [])

    @staticmethod
    def _key(address: str) -> str:
        return address.lower()

    def balance_of(self, address: str) -> int:
        return self._balances.get(self._key(address), 0)

    def total_supply(self) -> int:
        return self._total_supply

    def snapshot(self) -> int:
        """Take a balance snapshot and return its id (ids start at 1)."""
        self._current_snapshot += 1
        return self._current_snapshot

    def balance_at(self, address: str, snapshot_id: int) -> int:
        key = self._key(address)
        found, value = self._lookup(
            self._account_checkpoints.get(key, ([], [])), snapshot_id
        )
        return value if found else self.balance_of(key)

    def total_supply_at(self, snapshot_id: int) -> int:
        found, value = self._lookup(self._supply_checkpoints, snapshot_id)
        return value if found else self._total_supply

    def mint(self, address: str, amount: int) -> int:
        """Credit ``amount`` base units to ``address``. Returns new balance."""
        if amount < 0:
            raise ValueError(f"Mint amount must be non-negative, got {amount}")
        key = self._key(address)
        self._checkpoint(self._account_checkpoints.setdefault(key, ([], [])),
                         self.balance_of(key))
        self._checkpoint(self._supply_checkpoints, self._total_supply)
        self._balances[key] = self.balance_of(key) + amount
        self._total_supply += amount
        return self._balances[key]

    def _lookup(
        self, checkpoints: tuple[list[int], list[int]], snapshot_id: int,
    ) -> tuple[bool, int]:
        if snapshot_id < 1 or snapshot_id > self._current_snapshot:
            raise ValueError(f"Unknown token snapshot: {snapshot_id}")
        ids, values = checkpoints
        # First checkpoint written after the snapshot holds the value at it
        index = bisect.bisect_left(ids, snapshot_id)
        if index == len(ids):
            return False, 0
        return True, values[index]

    def _checkpoint(
        self, checkpoints: tuple[list[int], list[int]], current_value: int,
    ) -> None:
        if self._current_snapshot == 0:
            return
        ids, values = checkpoints
        if ids and ids[-1] >= self._current_snapshot:
            return
        ids.append(self._current_snapshot)
        values.append(current_value)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_records(self) -> dict[str, Any]:
        return {
            "balances": dict(self._balances),
            "total_supply": self._total_supply,
            "current_snapshot": self._current_snapshot,
            "account_checkpoints": {
                k: [list(ids), list(vals)]
                for k, (ids, vals) in self._account_checkpoints.items()
            },
            "supply_checkpoints": [
                list(self._supply_checkpoints[0]),
                list(self._supply_checkpoints[1]),
            ],
        }

    @classmethod
    def from_records(cls, data: dict[str, Any]) -> TokenLedger:
        ledger = cls()
        ledger._balances = {k: int(v) for k, v in data.get("balances", {}).items()}
        ledger._total_supply = int(data.get("total_supply", 0))
        ledger._current_snapshot = int(data.get("current_snapshot", 0))
        ledger._account_checkpoints = {
            k: ([int(i) for i in ids], [int(v) for v in vals])
            for k, (ids, vals) in data.get("account_checkpoints", {}).items()
        }
        ids, vals = data.get("supply_checkpoints", [[], []])
        ledger._supply_checkpoints = ([int(i) for i in ids], [int(v) for v in vals])
        return ledger
