"""Token service and the pool authority capability.

Each campaign's token supply is minted into its treasury account,
``treasury:<campaign_id>``. Moving tokens out of a treasury requires a
PoolAuthority: a capability scoped to one campaign, issued by an
AuthorityIssuer and verifiable without ever exposing the issuer's key.
Holding an authority for campaign A grants nothing over campaign B.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import threading
from dataclasses import dataclass
from typing import Dict, Optional, Protocol, runtime_checkable

import structlog

from fairlaunch.errors import TransferError

logger = structlog.get_logger(__name__)


def treasury_account(campaign_id: str) -> str:
    return f"treasury:{campaign_id}"


@dataclass(frozen=True)
class PoolAuthority:
    """Proof of authorization to move one campaign's pooled funds."""
    campaign_id: str
    proof: str

    def __repr__(self) -> str:
        return f"PoolAuthority(campaign_id={self.campaign_id!r})"


class AuthorityIssuer:
    """Issues and verifies PoolAuthority capabilities with an HMAC key."""

    def __init__(self, key: Optional[bytes] = None) -> None:
        self._key = key or secrets.token_bytes(32)

    def _proof(self, campaign_id: str) -> str:
        return hmac.new(self._key, campaign_id.encode("utf-8"), hashlib.sha256).hexdigest()

    def issue(self, campaign_id: str) -> PoolAuthority:
        return PoolAuthority(campaign_id=campaign_id, proof=self._proof(campaign_id))

    def verify(self, authority: PoolAuthority, campaign_id: str) -> bool:
        if authority.campaign_id != campaign_id:
            return False
        return hmac.compare_digest(authority.proof, self._proof(campaign_id))


@runtime_checkable
class TokenService(Protocol):
    """Abstract contract for issuing and moving a campaign's token."""

    def mint_initial_supply(self, campaign_id: str, total_supply: int) -> None:
        ...

    def transfer(self, authority: PoolAuthority, recipient: str, amount: int) -> None:
        ...

    def balance_of(self, campaign_id: str, holder: str) -> int:
        ...


class InMemoryTokenService:
    """Per-campaign token balances held in process memory."""

    def __init__(self, issuer: AuthorityIssuer) -> None:
        self._issuer = issuer
        self._balances: Dict[str, Dict[str, int]] = {}
        self._lock = threading.Lock()

    def mint_initial_supply(self, campaign_id: str, total_supply: int) -> None:
        with self._lock:
            if campaign_id in self._balances:
                raise TransferError(f"Supply for {campaign_id} already minted")
            self._balances[campaign_id] = {treasury_account(campaign_id): total_supply}
        logger.info("tokens.minted", campaign_id=campaign_id, total_supply=total_supply)

    def transfer(self, authority: PoolAuthority, recipient: str, amount: int) -> None:
        campaign_id = authority.campaign_id
        if not self._issuer.verify(authority, campaign_id):
            raise TransferError(f"Authority rejected for {campaign_id}")
        if amount <= 0:
            raise TransferError(f"Token transfer amount must be positive, got {amount}")
        treasury = treasury_account(campaign_id)
        with self._lock:
            ledger = self._balances.get(campaign_id)
            if ledger is None:
                raise TransferError(f"No token supply minted for {campaign_id}")
            available = ledger.get(treasury, 0)
            if available < amount:
                raise TransferError(
                    f"Treasury of {campaign_id} holds {available}, cannot send {amount}"
                )
            ledger[treasury] = available - amount
            ledger[recipient] = ledger.get(recipient, 0) + amount
        logger.debug("tokens.transfer", campaign_id=campaign_id, recipient=recipient, amount=amount)

    def balance_of(self, campaign_id: str, holder: str) -> int:
        return self._balances.get(campaign_id, {}).get(holder, 0)

    def balances(self) -> Dict[str, Dict[str, int]]:
        return {cid: dict(ledger) for cid, ledger in self._balances.items()}

    def restore(self, balances: Dict[str, Dict[str, int]]) -> None:
        with self._lock:
            self._balances = {cid: dict(ledger) for cid, ledger in balances.items()}
