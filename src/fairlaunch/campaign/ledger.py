"""Campaign ledger — the authoritative record of campaign totals and state.

The ledger is a pure bookkeeping component: it validates and applies
changes to Campaign records and performs no transfers. Locking and
collaborator calls are the lifecycle engine's job.

Every mutation validates first and assigns last, so a raised error
leaves the campaign exactly as it was.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Iterable, Optional
from uuid import uuid4

from fairlaunch.allocation.arithmetic import (
    U8_MAX,
    U32_MAX,
    checked_add,
    require_u64,
)
from fairlaunch.config import LaunchConfig
from fairlaunch.errors import (
    AlreadyFinalized,
    CampaignNotFound,
    DuplicateCampaign,
    InvalidParameter,
    TargetExceeded,
)
from fairlaunch.models.campaign import Campaign, CampaignState


class CampaignLedger:
    """Holds Campaign records keyed by campaign id.

    Usage:
        ledger = CampaignLedger(config)
        campaign = ledger.create_campaign("Moon", "MOON", 1_000_000, 200, 9, creator_id="alice")
        ledger.record_contribution(campaign, 10)
        ledger.mark_finalized(campaign)
    """

    def __init__(self, config: LaunchConfig) -> None:
        self._config = config
        self._campaigns: Dict[str, Campaign] = {}

    def create_campaign(
        self,
        name: str,
        ticker: str,
        total_supply: int,
        target: int,
        decimals: int,
        creator_id: str = "",
        campaign_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Campaign:
        """Validate parameters and register a new OPEN campaign.

        Raises:
            InvalidParameter: zero or over-ceiling target, out-of-range
                integers, empty or over-long name/ticker.
            DuplicateCampaign: campaign_id already registered.
        """
        self.validate_parameters(name, ticker, total_supply, target, decimals)
        if now is None:
            now = datetime.now(timezone.utc)
        if campaign_id is None:
            campaign_id = f"campaign_{uuid4().hex[:12]}"
        if campaign_id in self._campaigns:
            raise DuplicateCampaign(f"Campaign ID already exists: {campaign_id}")

        campaign = Campaign(
            campaign_id=campaign_id,
            creator_id=creator_id,
            name=name,
            ticker=ticker,
            total_supply=total_supply,
            target=target,
            decimals=decimals,
            creation_time=now,
            refund_window=self._config.refund_window,
        )
        self._campaigns[campaign_id] = campaign
        return campaign

    def validate_parameters(
        self,
        name: str,
        ticker: str,
        total_supply: int,
        target: int,
        decimals: int,
    ) -> None:
        """Raise InvalidParameter unless the campaign parameters are usable."""
        if not name or len(name) > self._config.max_name_length:
            raise InvalidParameter(
                f"name must be 1..{self._config.max_name_length} characters"
            )
        if not ticker or len(ticker) > self._config.max_ticker_length:
            raise InvalidParameter(
                f"ticker must be 1..{self._config.max_ticker_length} characters"
            )
        require_u64(total_supply, "total_supply")
        if total_supply < 2:
            raise InvalidParameter(
                "total_supply must be at least 2 so both halves are non-empty"
            )
        require_u64(target, "target")
        if target == 0:
            raise InvalidParameter("target must be positive")
        if target > self._config.max_target:
            raise InvalidParameter(
                f"target {target} exceeds per-campaign ceiling {self._config.max_target}"
            )
        if isinstance(decimals, bool) or not isinstance(decimals, int) or not 0 <= decimals <= U8_MAX:
            raise InvalidParameter(f"decimals must be a u8, got {decimals!r}")

    def check_contribution(self, campaign: Campaign, amount: int) -> tuple[int, int]:
        """Compute the post-contribution (total, count) without applying it.

        Raises:
            AlreadyFinalized: campaign is closed.
            TargetExceeded: total would pass the target.
            ArithmeticOverflow: total leaves u64 or count leaves u32.
        """
        if campaign.is_finalized:
            raise AlreadyFinalized(f"Campaign {campaign.campaign_id} is finalized")
        require_u64(amount, "amount")
        new_total = checked_add(campaign.total_contributed, amount)
        if new_total > campaign.target:
            raise TargetExceeded(
                f"Contribution of {amount} would raise total to {new_total}, "
                f"above target {campaign.target}"
            )
        new_count = checked_add(campaign.contribution_count, 1, limit=U32_MAX)
        return new_total, new_count

    def record_contribution(self, campaign: Campaign, amount: int) -> None:
        """Add *amount* to the total and bump the sequence counter together."""
        new_total, new_count = self.check_contribution(campaign, amount)
        campaign.total_contributed = new_total
        campaign.contribution_count = new_count

    def record_refund(self, campaign: Campaign, amount: int) -> None:
        """Account for resource paid back to a contributor."""
        require_u64(amount, "amount")
        campaign.total_refunded = checked_add(campaign.total_refunded, amount)

    def mark_finalized(self, campaign: Campaign, now: Optional[datetime] = None) -> Campaign:
        """Flip the one-way finalize flag.

        Raises AlreadyFinalized if the flag is already set.
        """
        if campaign.is_finalized:
            raise AlreadyFinalized(f"Campaign {campaign.campaign_id} is already finalized")
        if now is None:
            now = datetime.now(timezone.utc)
        campaign.transition_to(CampaignState.FINALIZED)
        campaign.finalized_utc = now
        return campaign

    def get(self, campaign_id: str) -> Campaign:
        campaign = self._campaigns.get(campaign_id)
        if campaign is None:
            raise CampaignNotFound(f"Unknown campaign ID: {campaign_id}")
        return campaign

    def __contains__(self, campaign_id: object) -> bool:
        return campaign_id in self._campaigns

    def campaigns(self) -> list[Campaign]:
        return list(self._campaigns.values())

    def restore(self, campaigns: Iterable[Campaign]) -> None:
        """Load previously persisted campaigns (replaces current contents)."""
        self._campaigns = {c.campaign_id: c for c in campaigns}
