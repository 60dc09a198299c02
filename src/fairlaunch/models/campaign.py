"""Campaign models — campaign ledger entries, contribution records, pools.

All amounts are integers in base units (resource) or token units. No
floats in accounting.

Invariants enforced by the ledger and store that own these records:
- total_contributed <= target, always
- total_contributed == sum(record.amount) + total_refunded
- contribution_count rises by exactly one per accepted contribution
- is_finalized flips false → true once and never back
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Optional


class CampaignState(str, enum.Enum):
    """Stored lifecycle state of a campaign.

    State machine:
        OPEN → FINALIZED

    There is no stored expired state. Expiry is computed from the clock
    (see Campaign.is_expired) and only gates contributions and refunds.
    """
    OPEN = "open"
    FINALIZED = "finalized"


CAMPAIGN_TRANSITIONS: Dict[CampaignState, frozenset] = {
    CampaignState.OPEN: frozenset({CampaignState.FINALIZED}),
    CampaignState.FINALIZED: frozenset(),
}


@dataclass(frozen=True)
class LiquidityPool:
    """A seeded liquidity pool as reported by the liquidity collaborator."""
    pool_id: str
    campaign_id: str
    resource_reserve: int
    token_reserve: int
    total_shares: int


@dataclass
class FinalizeProgress:
    """Which finalize steps have completed.

    Finalize is resumable: each step records its completion here so a
    retry after a collaborator failure skips work already done and never
    charges the fee twice.
    """
    fee_paid: bool = False
    fee_amount: int = 0
    pool: Optional[LiquidityPool] = None
    distribution_planned: bool = False
    distribution_pool: int = 0


@dataclass
class Campaign:
    """One funding round with a fixed target and token supply.

    Mutable: counters and the finalize flag change during the lifecycle.
    Only CampaignLedger mutates a campaign.
    """
    campaign_id: str
    creator_id: str
    name: str
    ticker: str
    total_supply: int
    target: int
    decimals: int
    creation_time: datetime
    refund_window: timedelta
    total_contributed: int = 0
    total_refunded: int = 0
    contribution_count: int = 0
    is_finalized: bool = False
    finalized_utc: Optional[datetime] = None
    progress: FinalizeProgress = field(default_factory=FinalizeProgress)

    @property
    def state(self) -> CampaignState:
        return CampaignState.FINALIZED if self.is_finalized else CampaignState.OPEN

    @property
    def is_virtual(self) -> bool:
        """Allocations are claims only until the campaign is finalized."""
        return not self.is_finalized

    @property
    def deadline(self) -> datetime:
        return self.creation_time + self.refund_window

    @property
    def target_reached(self) -> bool:
        return self.total_contributed >= self.target

    def is_expired(self, now: datetime) -> bool:
        """Past the refund deadline without reaching the target."""
        return now > self.deadline and self.total_contributed < self.target

    def transition_to(self, new_state: CampaignState) -> None:
        """Validate a state change against CAMPAIGN_TRANSITIONS."""
        allowed = CAMPAIGN_TRANSITIONS.get(self.state, frozenset())
        if new_state not in allowed:
            raise ValueError(
                f"Invalid campaign transition: {self.state.value} → {new_state.value}. "
                f"Allowed: {', '.join(s.value for s in allowed) or 'none'}"
            )
        self.is_finalized = new_state == CampaignState.FINALIZED


@dataclass
class ContributionRecord:
    """The single live record for one (contributor, campaign) pair.

    ``amount`` is a running total updated in place. ``sequence_index`` is
    the campaign's contribution count when the record was created; the
    index of the latest contribution event is kept separately.
    """
    contributor_id: str
    campaign_id: str
    amount: int
    allocated_tokens: int
    sequence_index: int
    timestamp: datetime
    last_sequence_index: int = 0
    refunded: int = 0
    distribution_amount: int = 0
    distributed: bool = False

    @property
    def key(self) -> tuple[str, str]:
        return (self.contributor_id, self.campaign_id)


@dataclass(frozen=True)
class LedgerSnapshot:
    """Immutable copy of a contribution record at one accepted event."""
    contributor_id: str
    campaign_id: str
    delta: int
    amount: int
    allocated_tokens: int
    sequence_index: int
    timestamp: datetime
