"""Lifecycle engine — open, contribute, refund, finalize.

State machine:
    OPEN → FINALIZED        (target reached, finalize completed)

Expiry is not stored. A campaign is expired when the refund window has
elapsed and the target was not reached; expired campaigns accept no new
contributions and pay refunds on request. Because total_contributed
never decreases, an expired campaign stays expired.

Ordering rules:
- Every validation runs before any transfer or mutation.
- Contribute moves the resource first and updates bookkeeping only after
  the transfer succeeded. A bookkeeping failure after that point cannot
  be undone here and surfaces as UnrecoverableStateError.
- Refund pays out first and zeroes the record after, so a failed payout
  leaves the record intact for a retry.
- Finalize is resumable. Fee, pool seeding, distribution plan and each
  recipient's payout are recorded as they complete; a failed call leaves
  the campaign OPEN and the next call continues where it stopped.

Each operation holds the campaign's lock for its whole duration, so two
operations on the same campaign never interleave.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from uuid import uuid4

import structlog

from fairlaunch.allocation.arithmetic import (
    checked_sub,
    pro_rata_plan,
    protocol_fee,
    split_supply,
)
from fairlaunch.campaign.contributions import ContributionStore
from fairlaunch.campaign.ledger import CampaignLedger
from fairlaunch.collaborators.custody import FundCustody, custody_account
from fairlaunch.collaborators.liquidity import LiquidityProvisioner
from fairlaunch.collaborators.tokens import AuthorityIssuer, TokenService
from fairlaunch.config import LaunchConfig
from fairlaunch.errors import (
    AlreadyFinalized,
    CampaignExpired,
    DuplicateCampaign,
    InvalidParameter,
    LaunchError,
    NoContributionToRefund,
    RefundNotAvailable,
    TargetNotReached,
    TransferError,
    UnrecoverableStateError,
)
from fairlaunch.models.campaign import Campaign, ContributionRecord, LiquidityPool
from fairlaunch.persistence.event_log import EventKind

logger = structlog.get_logger(__name__)

EventSink = Callable[[EventKind, str, Dict[str, Any]], None]


@dataclass(frozen=True)
class FinalizeReport:
    """Outcome of a completed finalize call."""
    campaign_id: str
    fee_amount: int
    pool: LiquidityPool
    distribution_pool: int
    distributions: Dict[str, int] = field(default_factory=dict)


class LifecycleEngine:
    """Runs the campaign operations against ledger, store and collaborators.

    Usage:
        engine = LifecycleEngine(config, custody, tokens, provisioner, issuer)
        campaign = engine.open_campaign("alice", "Moon", "MOON", 1_000_000, 20, 9)
        engine.contribute(campaign.campaign_id, "bob", 10)
        engine.contribute(campaign.campaign_id, "carol", 10)
        report = engine.finalize(campaign.campaign_id)
    """

    def __init__(
        self,
        config: LaunchConfig,
        custody: FundCustody,
        tokens: TokenService,
        liquidity: LiquidityProvisioner,
        issuer: AuthorityIssuer,
        ledger: Optional[CampaignLedger] = None,
        store: Optional[ContributionStore] = None,
        event_sink: Optional[EventSink] = None,
    ) -> None:
        self._config = config
        self._custody = custody
        self._tokens = tokens
        self._liquidity = liquidity
        self._issuer = issuer
        self._ledger = ledger or CampaignLedger(config)
        self._store = store or ContributionStore(
            contributor_cap=config.contributor_cap,
            ledger_capacity=config.ledger_capacity,
        )
        self._event_sink = event_sink
        self._locks: Dict[str, threading.RLock] = {}
        self._global_lock = threading.Lock()

    @property
    def ledger(self) -> CampaignLedger:
        return self._ledger

    @property
    def store(self) -> ContributionStore:
        return self._store

    def _lock_for(self, campaign_id: str) -> threading.RLock:
        with self._global_lock:
            if campaign_id not in self._locks:
                self._locks[campaign_id] = threading.RLock()
            return self._locks[campaign_id]

    def _emit(self, kind: EventKind, actor_id: str, payload: Dict[str, Any]) -> None:
        if self._event_sink is not None:
            self._event_sink(kind, actor_id, payload)

    # ------------------------------------------------------------------
    # Open
    # ------------------------------------------------------------------

    def open_campaign(
        self,
        creator_id: str,
        name: str,
        ticker: str,
        total_supply: int,
        target: int,
        decimals: int,
        initial_contribution: int = 0,
        campaign_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Campaign:
        """Create a campaign, charge the creation fee and mint its supply.

        An optional initial_contribution from the creator is recorded as
        contribution 0 through the normal contribute path.
        """
        if not creator_id:
            raise InvalidParameter("creator_id is required")
        self._ledger.validate_parameters(name, ticker, total_supply, target, decimals)
        if initial_contribution:
            if initial_contribution < 0 or initial_contribution > self._config.contributor_cap:
                raise InvalidParameter(
                    f"initial_contribution must be within [0, {self._config.contributor_cap}]"
                )
            if initial_contribution > target:
                raise InvalidParameter("initial_contribution exceeds the target")
        if now is None:
            now = datetime.now(timezone.utc)
        if campaign_id is None:
            campaign_id = f"campaign_{uuid4().hex[:12]}"

        with self._lock_for(campaign_id):
            if campaign_id in self._ledger:
                raise DuplicateCampaign(f"Campaign ID already exists: {campaign_id}")

            fee = self._config.creation_fee
            required = fee + initial_contribution
            if required > 0:
                available = self._custody.balance_of(creator_id)
                if available < required:
                    raise TransferError(
                        f"{creator_id} holds {available}, needs {required} "
                        f"(creation fee {fee} + initial contribution {initial_contribution})"
                    )
            if fee > 0:
                self._custody.transfer(creator_id, self._config.fee_recipient, fee)
                self._emit(EventKind.CREATION_FEE_PAID, creator_id, {
                    "campaign_id": campaign_id,
                    "amount": fee,
                    "recipient": self._config.fee_recipient,
                })
            try:
                self._tokens.mint_initial_supply(campaign_id, total_supply)
            except LaunchError as e:
                if fee > 0:
                    logger.critical(
                        "lifecycle.open.mint_failed_after_fee",
                        campaign_id=campaign_id,
                        creator_id=creator_id,
                        fee=fee,
                        error=str(e),
                    )
                    raise UnrecoverableStateError(
                        f"Creation fee paid but minting failed for {campaign_id}: {e}"
                    ) from e
                raise

            campaign = self._ledger.create_campaign(
                name, ticker, total_supply, target, decimals,
                creator_id=creator_id, campaign_id=campaign_id, now=now,
            )
            self._emit(EventKind.CAMPAIGN_CREATED, creator_id, {
                "campaign_id": campaign_id,
                "name": name,
                "ticker": ticker,
                "total_supply": total_supply,
                "target": target,
                "decimals": decimals,
            })
            logger.info(
                "lifecycle.open.created",
                campaign_id=campaign_id,
                creator_id=creator_id,
                target=target,
                total_supply=total_supply,
            )

            if initial_contribution:
                self._contribute_locked(campaign, creator_id, initial_contribution, now)
            return campaign

    # ------------------------------------------------------------------
    # Contribute
    # ------------------------------------------------------------------

    def contribute(
        self,
        campaign_id: str,
        contributor_id: str,
        amount: int,
        now: Optional[datetime] = None,
    ) -> ContributionRecord:
        """Accept *amount* of the base resource from *contributor_id*.

        Raises:
            AlreadyFinalized, CampaignExpired: campaign not accepting funds.
            InvalidParameter: non-positive amount.
            PerContributorCapExceeded: contributor's total would pass the cap.
            TargetExceeded, ArithmeticOverflow: campaign total checks.
            LedgerCapacityExceeded: bounded ledger is full.
            TransferError: custody refused the transfer (nothing recorded).
            UnrecoverableStateError: bookkeeping failed after payment.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        with self._lock_for(campaign_id):
            campaign = self._ledger.get(campaign_id)
            return self._contribute_locked(campaign, contributor_id, amount, now)

    def _contribute_locked(
        self,
        campaign: Campaign,
        contributor_id: str,
        amount: int,
        now: datetime,
    ) -> ContributionRecord:
        campaign_id = campaign.campaign_id
        if campaign.is_finalized:
            raise AlreadyFinalized(f"Campaign {campaign_id} is finalized")
        if campaign.is_expired(now):
            raise CampaignExpired(
                f"Campaign {campaign_id} passed its deadline {campaign.deadline.isoformat()} "
                f"below target"
            )
        # Per-contributor cap is checked before the campaign target
        self._store.check_contribution(contributor_id, campaign, amount)
        self._ledger.check_contribution(campaign, amount)
        self._store.check_capacity(campaign_id)

        self._custody.transfer(contributor_id, custody_account(campaign_id), amount)

        try:
            index = campaign.contribution_count
            record = self._store.upsert_contribution(contributor_id, campaign, amount, now=now)
            self._ledger.record_contribution(campaign, amount)
            self._store.append_ledger_snapshot(record, amount, index)
        except LaunchError as e:
            logger.critical(
                "lifecycle.contribute.bookkeeping_failed",
                campaign_id=campaign_id,
                contributor_id=contributor_id,
                amount=amount,
                error=str(e),
            )
            raise UnrecoverableStateError(
                f"{amount} received from {contributor_id} for {campaign_id} "
                f"but could not be recorded: {e}"
            ) from e

        self._emit(EventKind.CONTRIBUTION_ACCEPTED, contributor_id, {
            "campaign_id": campaign_id,
            "amount": amount,
            "cumulative_amount": record.amount,
            "allocated_tokens": record.allocated_tokens,
            "sequence_index": index,
            "total_contributed": campaign.total_contributed,
        })
        logger.info(
            "lifecycle.contribute.accepted",
            campaign_id=campaign_id,
            contributor_id=contributor_id,
            amount=amount,
            sequence_index=index,
            total_contributed=campaign.total_contributed,
        )
        return record

    # ------------------------------------------------------------------
    # Refund
    # ------------------------------------------------------------------

    def refund(
        self,
        campaign_id: str,
        contributor_id: str,
        now: Optional[datetime] = None,
    ) -> int:
        """Pay a contributor's full recorded amount back. Returns the amount.

        Raises:
            RefundNotAvailable: campaign not expired.
            NoContributionToRefund: nothing recorded (or already refunded).
            TransferError: custody refused the payout (record untouched).
        """
        if now is None:
            now = datetime.now(timezone.utc)
        with self._lock_for(campaign_id):
            campaign = self._ledger.get(campaign_id)
            if not campaign.is_expired(now):
                raise RefundNotAvailable(
                    f"Campaign {campaign_id} is not eligible for refunds "
                    f"(deadline {campaign.deadline.isoformat()}, "
                    f"{campaign.total_contributed}/{campaign.target} raised)"
                )
            record = self._store.get(contributor_id, campaign_id)
            if record is None or record.amount == 0:
                raise NoContributionToRefund(
                    f"No contribution to refund for {contributor_id} in {campaign_id}"
                )
            amount = record.amount

            self._custody.transfer(custody_account(campaign_id), contributor_id, amount)

            self._store.clear_contribution(contributor_id, campaign_id)
            self._ledger.record_refund(campaign, amount)
            self._emit(EventKind.REFUND_PAID, contributor_id, {
                "campaign_id": campaign_id,
                "amount": amount,
            })
            logger.info(
                "lifecycle.refund.paid",
                campaign_id=campaign_id,
                contributor_id=contributor_id,
                amount=amount,
            )
            return amount

    # ------------------------------------------------------------------
    # Finalize
    # ------------------------------------------------------------------

    def finalize(self, campaign_id: str, now: Optional[datetime] = None) -> FinalizeReport:
        """Take the fee, seed the pool, distribute tokens, close the campaign.

        Raises:
            AlreadyFinalized: finalize already completed.
            TargetNotReached: total below target.
            TransferError, LiquidityProvisioningError: a step failed; the
                campaign stays OPEN and a retry resumes at that step.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        with self._lock_for(campaign_id):
            campaign = self._ledger.get(campaign_id)
            if campaign.is_finalized:
                raise AlreadyFinalized(f"Campaign {campaign_id} is already finalized")
            if not campaign.target_reached:
                raise TargetNotReached(
                    f"Campaign {campaign_id} raised {campaign.total_contributed} "
                    f"of {campaign.target}"
                )

            progress = campaign.progress
            authority = self._issuer.issue(campaign_id)
            custody = custody_account(campaign_id)
            liquidity_tokens, distribution_tokens = split_supply(campaign.total_supply)

            if not progress.fee_paid:
                fee = protocol_fee(campaign.total_contributed, self._config.fee_bps)
                if fee > 0:
                    self._custody.transfer(custody, self._config.fee_recipient, fee)
                progress.fee_amount = fee
                progress.fee_paid = True
                self._emit(EventKind.PROTOCOL_FEE_PAID, campaign.creator_id, {
                    "campaign_id": campaign_id,
                    "amount": fee,
                    "recipient": self._config.fee_recipient,
                })
                logger.info("lifecycle.finalize.fee_paid", campaign_id=campaign_id, fee=fee)

            if progress.pool is None:
                remaining = checked_sub(campaign.total_contributed, progress.fee_amount)
                pool = self._liquidity.seed_pool(authority, remaining, liquidity_tokens)
                progress.pool = pool
                self._emit(EventKind.POOL_SEEDED, campaign.creator_id, {
                    "campaign_id": campaign_id,
                    "pool_id": pool.pool_id,
                    "resource_reserve": pool.resource_reserve,
                    "token_reserve": pool.token_reserve,
                    "total_shares": pool.total_shares,
                })
                logger.info(
                    "lifecycle.finalize.pool_seeded",
                    campaign_id=campaign_id,
                    resource=remaining,
                    tokens=liquidity_tokens,
                )

            records = self._store.records_for(campaign_id)
            if not progress.distribution_planned:
                plan = pro_rata_plan([r.amount for r in records], distribution_tokens)
                for record, share in zip(records, plan):
                    record.distribution_amount = share
                progress.distribution_pool = distribution_tokens
                progress.distribution_planned = True
                self._emit(EventKind.DISTRIBUTION_PLANNED, campaign.creator_id, {
                    "campaign_id": campaign_id,
                    "distribution_pool": distribution_tokens,
                    "plan": {r.contributor_id: r.distribution_amount for r in records},
                })

            paid: Dict[str, int] = {}
            for record in records:
                if record.distributed:
                    continue
                if record.distribution_amount > 0:
                    self._tokens.transfer(authority, record.contributor_id, record.distribution_amount)
                    self._emit(EventKind.TOKENS_DISTRIBUTED, record.contributor_id, {
                        "campaign_id": campaign_id,
                        "amount": record.distribution_amount,
                    })
                record.distributed = True
                paid[record.contributor_id] = record.distribution_amount

            self._ledger.mark_finalized(campaign, now=now)
            self._emit(EventKind.CAMPAIGN_FINALIZED, campaign.creator_id, {
                "campaign_id": campaign_id,
                "total_contributed": campaign.total_contributed,
                "fee_amount": progress.fee_amount,
            })
            logger.info(
                "lifecycle.finalize.completed",
                campaign_id=campaign_id,
                recipients=len(records),
                distribution_pool=progress.distribution_pool,
            )
            return FinalizeReport(
                campaign_id=campaign_id,
                fee_amount=progress.fee_amount,
                pool=progress.pool,
                distribution_pool=progress.distribution_pool,
                distributions=paid,
            )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_campaign(self, campaign_id: str) -> Campaign:
        return self._ledger.get(campaign_id)

    def is_expired(self, campaign_id: str, now: Optional[datetime] = None) -> bool:
        if now is None:
            now = datetime.now(timezone.utc)
        return self._ledger.get(campaign_id).is_expired(now)
