"""Campaign components — ledger, contribution store, lifecycle engine."""

from fairlaunch.campaign.contributions import ContributionStore
from fairlaunch.campaign.ledger import CampaignLedger
from fairlaunch.campaign.lifecycle import FinalizeReport, LifecycleEngine

__all__ = ["CampaignLedger", "ContributionStore", "FinalizeReport", "LifecycleEngine"]
