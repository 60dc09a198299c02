"""Core data models for Fairlaunch."""

from fairlaunch.models.campaign import (
    CAMPAIGN_TRANSITIONS,
    Campaign,
    CampaignState,
    ContributionRecord,
    FinalizeProgress,
    LedgerSnapshot,
    LiquidityPool,
)

__all__ = [
    "CAMPAIGN_TRANSITIONS",
    "Campaign",
    "CampaignState",
    "ContributionRecord",
    "FinalizeProgress",
    "LedgerSnapshot",
    "LiquidityPool",
]
