"""Chain-time oracles.

Every time-dependent rule (voting windows, "meeting has ended") reads the
time from a clock object rather than from the host. Three are provided:

- ManualClock: deterministic, advanced explicitly. Used by tests and
  simulations.
- SystemClock: wall-clock seconds.
- Web3Clock: timestamp of the latest block on an Ethereum node. On
  development nodes (Hardhat, Anvil, Ganache) it can also warp time with
  ``evm_increaseTime`` + ``evm_mine``.
"""

from __future__ import annotations

import time
from typing import Any, Optional, Protocol


class Clock(Protocol):
    def current_time(self) -> int: ...


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: Optional[int] = None) -> None:
        self._now = int(time.time()) if start is None else int(start)

    def current_time(self) -> int:
        return self._now

    def increase_time(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError(f"Time only moves forward, got {seconds}")
        self._now += seconds
        return self._now

    def set_time(self, timestamp: int) -> int:
        if timestamp < self._now:
            raise ValueError(
                f"Time only moves forward: {timestamp} < {self._now}"
            )
        self._now = timestamp
        return self._now


class SystemClock:
    """Wall-clock seconds since the epoch."""

    def current_time(self) -> int:
        return int(time.time())


class Web3Clock:
    """Chain time read from the latest block of an Ethereum node.

    Args:
        rpc_url: HTTP RPC endpoint. Ignored if ``web3`` is given.
        web3: A pre-built Web3 instance (lets callers reuse a session).
    """

    def __init__(self, rpc_url: Optional[str] = None, web3: Any = None) -> None:
        if web3 is None:
            if not rpc_url:
                raise ValueError("Web3Clock needs an rpc_url or a web3 instance")
            from web3 import Web3, HTTPProvider

            web3 = Web3(HTTPProvider(rpc_url))
        self._w3 = web3

    def current_time(self) -> int:
        block = self._w3.eth.get_block("latest")
        return int(block["timestamp"])

    def increase_time(self, seconds: int) -> int:
        """Warp a development chain forward and mine a block.

        Only works against nodes exposing the ``evm_*`` test RPC methods.
        """
        if seconds < 0:
            raise ValueError(f"Time only moves forward, got {seconds}")
        response = self._w3.provider.make_request("evm_increaseTime", [seconds])
        if response.get("error"):
            raise RuntimeError(f"evm_increaseTime failed: {response['error']}")
        response = self._w3.provider.make_request("evm_mine", [])
        if response.get("error"):
            raise RuntimeError(f"evm_mine failed: {response['error']}")
        return self.current_time()
