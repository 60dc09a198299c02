"""Fairlaunch service — unified facade over the campaign engine.

This is the primary interface for programmatic access. It wires the
lifecycle engine to its collaborators and adds the ambient concerns:
- Typed results (ServiceResult) instead of raised LaunchErrors
- Audit trail (every committed step appended to the EventLog)
- Persistence (state saved after every operation, loaded on construction)

Transfers to custody, tokens and the pool cannot be rolled back, so the
service never rolls in-memory state back on a persistence failure. It
flags the store as degraded and reports a warning instead.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional
from uuid import uuid4

import structlog

from fairlaunch import __version__
from fairlaunch.campaign.contributions import ContributionStore
from fairlaunch.campaign.ledger import CampaignLedger
from fairlaunch.campaign.lifecycle import LifecycleEngine
from fairlaunch.collaborators.custody import FundCustody, InMemoryCustody, custody_account
from fairlaunch.collaborators.liquidity import ConstantProductProvisioner, LiquidityProvisioner
from fairlaunch.collaborators.tokens import (
    AuthorityIssuer,
    InMemoryTokenService,
    TokenService,
    treasury_account,
)
from fairlaunch.config import LaunchConfig
from fairlaunch.errors import LaunchError
from fairlaunch.models.campaign import Campaign, ContributionRecord
from fairlaunch.persistence.event_log import EventKind, EventLog, EventRecord
from fairlaunch.persistence.state_store import StateStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    error_kind: Optional[str] = None


def campaign_summary(campaign: Campaign, now: datetime) -> dict[str, Any]:
    progress = campaign.progress
    return {
        "campaign_id": campaign.campaign_id,
        "creator_id": campaign.creator_id,
        "name": campaign.name,
        "ticker": campaign.ticker,
        "state": campaign.state.value,
        "is_virtual": campaign.is_virtual,
        "expired": campaign.is_expired(now),
        "total_supply": campaign.total_supply,
        "target": campaign.target,
        "decimals": campaign.decimals,
        "total_contributed": campaign.total_contributed,
        "total_refunded": campaign.total_refunded,
        "contribution_count": campaign.contribution_count,
        "creation_time": campaign.creation_time.isoformat(),
        "deadline": campaign.deadline.isoformat(),
        "finalized_utc": campaign.finalized_utc.isoformat() if campaign.finalized_utc else None,
        "finalize_progress": {
            "fee_paid": progress.fee_paid,
            "fee_amount": progress.fee_amount,
            "pool_seeded": progress.pool is not None,
            "distribution_planned": progress.distribution_planned,
        },
    }


def record_summary(record: ContributionRecord) -> dict[str, Any]:
    return {
        "contributor_id": record.contributor_id,
        "amount": record.amount,
        "allocated_tokens": record.allocated_tokens,
        "sequence_index": record.sequence_index,
        "last_sequence_index": record.last_sequence_index,
        "refunded": record.refunded,
        "distribution_amount": record.distribution_amount,
        "distributed": record.distributed,
    }


class LaunchService:
    """Campaign engine facade.

    Usage:
        config = LaunchConfig.from_config_dir(config_dir)
        service = LaunchService(config)
        result = service.initialize("alice", "Moon", "MOON", 1_000_000, 20 * 10**9, 9)
        service.contribute(result.data["campaign_id"], "bob", 10**9)

    Persistence (optional):
        service = LaunchService(config, event_log=log, state_store=store)
        # State is persisted after each operation and loaded on construction.
        # In-memory collaborators have their balances persisted too.
    """

    def __init__(
        self,
        config: LaunchConfig,
        custody: Optional[FundCustody] = None,
        tokens: Optional[TokenService] = None,
        liquidity: Optional[LiquidityProvisioner] = None,
        issuer: Optional[AuthorityIssuer] = None,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._config = config
        self._issuer = issuer or AuthorityIssuer()
        self._custody = custody if custody is not None else InMemoryCustody()
        self._tokens = tokens if tokens is not None else InMemoryTokenService(self._issuer)
        self._liquidity = (
            liquidity if liquidity is not None
            else ConstantProductProvisioner(self._custody, self._tokens)
        )
        self._event_log = event_log
        self._state_store = state_store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._ledger = CampaignLedger(config)
        self._store = ContributionStore(
            contributor_cap=config.contributor_cap,
            ledger_capacity=config.ledger_capacity,
        )
        if state_store is not None:
            self._load_state(state_store)

        self._engine = LifecycleEngine(
            config,
            self._custody,
            self._tokens,
            self._liquidity,
            self._issuer,
            ledger=self._ledger,
            store=self._store,
            event_sink=self._record_event,
        )
        # Continue numbering from the persisted log to avoid ID collisions
        self._event_counter = event_log.count if event_log is not None else 0
        self._persistence_degraded = False

    @property
    def engine(self) -> LifecycleEngine:
        return self._engine

    @property
    def custody(self) -> FundCustody:
        return self._custody

    @property
    def tokens(self) -> TokenService:
        return self._tokens

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def initialize(
        self,
        creator_id: str,
        name: str,
        ticker: str,
        total_supply: int,
        target: int,
        decimals: int,
        initial_contribution: int = 0,
        campaign_id: Optional[str] = None,
    ) -> ServiceResult:
        """Open a new campaign."""
        now = self._clock()
        if campaign_id is None:
            campaign_id = f"campaign_{uuid4().hex[:12]}"
        try:
            campaign = self._engine.open_campaign(
                creator_id, name, ticker, total_supply, target, decimals,
                initial_contribution=initial_contribution,
                campaign_id=campaign_id,
                now=now,
            )
        except LaunchError as e:
            return self._failed("initialize", creator_id, e, {"campaign_id": campaign_id})
        return self._succeeded(campaign_summary(campaign, now))

    def contribute(self, campaign_id: str, contributor_id: str, amount: int) -> ServiceResult:
        """Contribute *amount* base units to a campaign."""
        now = self._clock()
        try:
            record = self._engine.contribute(campaign_id, contributor_id, amount, now=now)
        except LaunchError as e:
            return self._failed("contribute", contributor_id, e, {"campaign_id": campaign_id})
        campaign = self._ledger.get(campaign_id)
        data = record_summary(record)
        data["campaign_id"] = campaign_id
        data["total_contributed"] = campaign.total_contributed
        data["target_reached"] = campaign.target_reached
        return self._succeeded(data)

    def refund(self, campaign_id: str, contributor_id: str) -> ServiceResult:
        """Refund a contributor of an expired campaign."""
        now = self._clock()
        try:
            amount = self._engine.refund(campaign_id, contributor_id, now=now)
        except LaunchError as e:
            return self._failed("refund", contributor_id, e, {"campaign_id": campaign_id})
        return self._succeeded({
            "campaign_id": campaign_id,
            "contributor_id": contributor_id,
            "refunded": amount,
        })

    def finalize(self, campaign_id: str) -> ServiceResult:
        """Finalize a funded campaign (resumable after partial failure)."""
        now = self._clock()
        try:
            report = self._engine.finalize(campaign_id, now=now)
        except LaunchError as e:
            # Completed finalize steps are recorded even when a later one fails
            return self._failed("finalize", campaign_id, e, {"campaign_id": campaign_id})
        return self._succeeded({
            "campaign_id": campaign_id,
            "fee_amount": report.fee_amount,
            "pool": {
                "pool_id": report.pool.pool_id,
                "resource_reserve": report.pool.resource_reserve,
                "token_reserve": report.pool.token_reserve,
                "total_shares": report.pool.total_shares,
            },
            "distribution_pool": report.distribution_pool,
            "distributions": dict(report.distributions),
        })

    def deposit(self, account_id: str, amount: int) -> ServiceResult:
        """Credit an account in the in-memory custody (faucet)."""
        if not isinstance(self._custody, InMemoryCustody):
            return ServiceResult(
                success=False,
                errors=["Deposits are only available with in-memory custody"],
                error_kind="InvalidParameter",
            )
        try:
            self._custody.deposit(account_id, amount)
        except ValueError as e:
            return ServiceResult(success=False, errors=[str(e)], error_kind="InvalidParameter")
        return self._succeeded({
            "account_id": account_id,
            "balance": self._custody.balance_of(account_id),
        })

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def show(self, campaign_id: str) -> ServiceResult:
        """Campaign details with its contribution records and balances."""
        try:
            campaign = self._ledger.get(campaign_id)
        except LaunchError as e:
            return ServiceResult(success=False, errors=[str(e)], error_kind=e.kind)
        data = campaign_summary(campaign, self._clock())
        data["records"] = [record_summary(r) for r in self._store.records_for(campaign_id)]
        data["ledger_entries"] = len(self._store.snapshots(campaign_id))
        data["custody_balance"] = self._custody.balance_of(custody_account(campaign_id))
        data["treasury_tokens"] = self._tokens.balance_of(
            campaign_id, treasury_account(campaign_id)
        )
        return ServiceResult(success=True, data=data)

    def status(self) -> dict[str, Any]:
        """Return system-wide status summary."""
        now = self._clock()
        campaigns = self._ledger.campaigns()
        return {
            "version": __version__,
            "campaigns": {
                "total": len(campaigns),
                "open": sum(1 for c in campaigns if not c.is_finalized and not c.is_expired(now)),
                "expired": sum(1 for c in campaigns if c.is_expired(now)),
                "finalized": sum(1 for c in campaigns if c.is_finalized),
            },
            "events": self._event_log.count if self._event_log is not None else 0,
            "persistence_degraded": self._persistence_degraded,
        }

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _record_event(self, kind: EventKind, actor_id: str, payload: dict[str, Any]) -> None:
        self._event_counter += 1
        if self._event_log is None:
            return
        event = EventRecord.create(
            event_id=f"evt_{self._event_counter:08d}",
            event_kind=kind,
            actor_id=actor_id,
            payload=payload,
            timestamp_utc=self._clock(),
        )
        self._event_log.append(event)

    def _succeeded(self, data: dict[str, Any]) -> ServiceResult:
        warning = self._safe_persist()
        return ServiceResult(success=True, errors=[warning] if warning else [], data=data)

    def _failed(
        self,
        operation: str,
        actor_id: str,
        error: LaunchError,
        context: dict[str, Any],
    ) -> ServiceResult:
        logger.warning(
            "service.operation_failed",
            operation=operation,
            actor_id=actor_id,
            error_kind=error.kind,
            error=str(error),
            **context,
        )
        self._record_event(EventKind.OPERATION_FAILED, actor_id, {
            "operation": operation,
            "error_kind": error.kind,
            "error": str(error),
            **context,
        })
        errors = [str(error)]
        warning = self._safe_persist()
        if warning:
            errors.append(warning)
        return ServiceResult(
            success=False, errors=errors, data=dict(context), error_kind=error.kind,
        )

    def _safe_persist(self) -> Optional[str]:
        """Persist state after a committed operation.

        Never rolls back: transfers already happened and the audit trail
        records them. On failure the store is stale, the service is marked
        degraded and a warning string is returned.
        """
        if self._state_store is None:
            return None
        try:
            self._persist_state()
            return None
        except OSError as e:
            self._persistence_degraded = True
            logger.error("service.persist_failed", error=str(e))
            return f"Persistence degraded: {e} (state committed in audit trail but store is stale)"

    def _persist_state(self) -> None:
        campaigns = self._ledger.campaigns()
        records = [r for c in campaigns for r in self._store.records_for(c.campaign_id)]
        snapshots = [s for c in campaigns for s in self._store.snapshots(c.campaign_id)]
        self._state_store.save(
            campaigns=campaigns,
            records=records,
            snapshots=snapshots,
            custody_balances=(
                self._custody.balances() if isinstance(self._custody, InMemoryCustody) else None
            ),
            token_balances=(
                self._tokens.balances() if isinstance(self._tokens, InMemoryTokenService) else None
            ),
            pools=(
                self._liquidity.pools()
                if isinstance(self._liquidity, ConstantProductProvisioner) else None
            ),
        )

    def _load_state(self, state_store: StateStore) -> None:
        self._ledger.restore(state_store.load_campaigns())
        self._store.restore(state_store.load_records(), state_store.load_snapshots())
        # An empty store leaves caller-supplied collaborator balances alone
        balances = state_store.load_custody_balances()
        if balances and isinstance(self._custody, InMemoryCustody):
            self._custody.restore(balances)
        token_balances = state_store.load_token_balances()
        if token_balances and isinstance(self._tokens, InMemoryTokenService):
            self._tokens.restore(token_balances)
        pools = state_store.load_pools()
        if pools and isinstance(self._liquidity, ConstantProductProvisioner):
            self._liquidity.restore(pools)
