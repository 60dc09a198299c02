"""Fund custody — moves the base resource between parties and campaigns.

The lifecycle engine never touches balances directly. It talks to a
FundCustody implementation; swapping the in-memory ledger for a chain
adapter (see collaborators.evm) requires zero changes to campaign logic.

Account naming: every campaign holds contributed resource in its custody
account, ``custody:<campaign_id>``.
"""

from __future__ import annotations

import threading
from typing import Dict, Mapping, Protocol, runtime_checkable

import structlog

from fairlaunch.errors import TransferError

logger = structlog.get_logger(__name__)


def custody_account(campaign_id: str) -> str:
    return f"custody:{campaign_id}"


@runtime_checkable
class FundCustody(Protocol):
    """Abstract contract for base-resource transfers.

    transfer() either moves the full amount or raises TransferError; it
    never moves part of it.
    """

    def transfer(self, from_id: str, to_id: str, amount: int) -> None:
        ...

    def balance_of(self, account_id: str) -> int:
        ...


class InMemoryCustody:
    """Balance table held in process memory.

    Usage:
        custody = InMemoryCustody({"alice": 50})
        custody.transfer("alice", custody_account("c1"), 10)
    """

    def __init__(self, balances: Mapping[str, int] | None = None) -> None:
        self._balances: Dict[str, int] = dict(balances or {})
        self._lock = threading.Lock()

    def deposit(self, account_id: str, amount: int) -> None:
        """Credit an external account (faucet for tests and the CLI)."""
        if amount < 0:
            raise ValueError("deposit amount must be non-negative")
        with self._lock:
            self._balances[account_id] = self._balances.get(account_id, 0) + amount

    def transfer(self, from_id: str, to_id: str, amount: int) -> None:
        if amount <= 0:
            raise TransferError(f"Transfer amount must be positive, got {amount}")
        if from_id == to_id:
            raise TransferError(f"Transfer source and destination are both {from_id}")
        with self._lock:
            available = self._balances.get(from_id, 0)
            if available < amount:
                raise TransferError(
                    f"Insufficient balance in {from_id}: {available} < {amount}"
                )
            self._balances[from_id] = available - amount
            self._balances[to_id] = self._balances.get(to_id, 0) + amount
        logger.debug("custody.transfer", from_id=from_id, to_id=to_id, amount=amount)

    def balance_of(self, account_id: str) -> int:
        return self._balances.get(account_id, 0)

    def balances(self) -> Dict[str, int]:
        return dict(self._balances)

    def restore(self, balances: Mapping[str, int]) -> None:
        with self._lock:
            self._balances = dict(balances)
