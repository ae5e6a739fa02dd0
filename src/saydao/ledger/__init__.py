"""External collaborators: token balances and chain time."""

from saydao.ledger.clock import Clock, ManualClock, SystemClock, Web3Clock
from saydao.ledger.token_ledger import TokenLedger

__all__ = [
    "Clock",
    "ManualClock",
    "SystemClock",
    "TokenLedger",
    "Web3Clock",
]
