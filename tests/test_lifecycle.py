"""Tests for the lifecycle engine — proves open/contribute/refund/finalize end to end."""

import threading
import pytest
from datetime import datetime, timedelta, timezone

from fairlaunch.campaign.lifecycle import LifecycleEngine
from fairlaunch.collaborators import (
    AuthorityIssuer,
    ConstantProductProvisioner,
    InMemoryCustody,
    InMemoryTokenService,
    custody_account,
    pool_account,
    treasury_account,
)
from fairlaunch.config import LaunchConfig
from fairlaunch.errors import (
    AlreadyFinalized,
    CampaignExpired,
    CampaignNotFound,
    DuplicateCampaign,
    InvalidParameter,
    LiquidityProvisioningError,
    NoContributionToRefund,
    PerContributorCapExceeded,
    RefundNotAvailable,
    TargetExceeded,
    TargetNotReached,
    TransferError,
    UnrecoverableStateError,
)
from fairlaunch.persistence.event_log import EventKind


SUPPLY = 1_000_000
FEE_RECIPIENT = "treasury"


def _now() -> datetime:
    return datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _after_deadline() -> datetime:
    return _now() + timedelta(days=8)


class FlakyTokenService(InMemoryTokenService):
    """Token service whose transfers to chosen recipients fail a set number of times."""

    def __init__(self, issuer: AuthorityIssuer) -> None:
        super().__init__(issuer)
        self.failures: dict[str, int] = {}

    def transfer(self, authority, recipient, amount) -> None:
        if self.failures.get(recipient, 0) > 0:
            self.failures[recipient] -= 1
            raise TransferError(f"simulated outage sending to {recipient}")
        super().transfer(authority, recipient, amount)


class FlakyProvisioner(ConstantProductProvisioner):
    """Provisioner that fails its first N seeding attempts before touching funds."""

    def __init__(self, custody, tokens, failures: int = 1) -> None:
        super().__init__(custody, tokens)
        self.failures = failures

    def seed_pool(self, authority, resource_amount, token_amount):
        if self.failures > 0:
            self.failures -= 1
            raise LiquidityProvisioningError("simulated pool outage")
        return super().seed_pool(authority, resource_amount, token_amount)


class PoolRefusingCustody(InMemoryCustody):
    """Custody that refuses the first transfer into any pool account."""

    def __init__(self, balances=None) -> None:
        super().__init__(balances)
        self.refusals = 1

    def transfer(self, from_id: str, to_id: str, amount: int) -> None:
        if to_id.startswith("pool:") and self.refusals > 0:
            self.refusals -= 1
            raise TransferError(f"simulated outage sending to {to_id}")
        super().transfer(from_id, to_id, amount)


@pytest.fixture
def config() -> LaunchConfig:
    return LaunchConfig(
        base_unit=1,
        contributor_cap=10,
        max_target=1_000,
        fee_bps=500,
        fee_recipient=FEE_RECIPIENT,
        creation_fee=1,
    )


@pytest.fixture
def custody() -> InMemoryCustody:
    return InMemoryCustody({"alice": 100, "bob": 100, "carol": 100, "dave": 100})


@pytest.fixture
def issuer() -> AuthorityIssuer:
    return AuthorityIssuer(b"k" * 32)


@pytest.fixture
def tokens(issuer: AuthorityIssuer) -> FlakyTokenService:
    return FlakyTokenService(issuer)


@pytest.fixture
def events() -> list:
    return []


def _engine(config, custody, tokens, issuer, events, provisioner=None) -> LifecycleEngine:
    return LifecycleEngine(
        config,
        custody,
        tokens,
        provisioner or ConstantProductProvisioner(custody, tokens),
        issuer,
        event_sink=lambda kind, actor, payload: events.append((kind, actor, payload)),
    )


@pytest.fixture
def engine(config, custody, tokens, issuer, events) -> LifecycleEngine:
    return _engine(config, custody, tokens, issuer, events)


def _open(engine: LifecycleEngine, target: int = 20, **kwargs):
    return engine.open_campaign(
        "alice", "Moon", "MOON", SUPPLY, target, 9,
        campaign_id="c1", now=_now(), **kwargs,
    )


def _kinds(events: list) -> list[EventKind]:
    return [kind for kind, _, _ in events]


class TestOpenCampaign:
    def test_open_charges_fee_and_mints(self, engine, custody, tokens) -> None:
        c = _open(engine)
        assert c.campaign_id == "c1"
        assert custody.balance_of("alice") == 99
        assert custody.balance_of(FEE_RECIPIENT) == 1
        assert tokens.balance_of("c1", treasury_account("c1")) == SUPPLY

    def test_open_emits_events(self, engine, events) -> None:
        _open(engine)
        assert _kinds(events) == [EventKind.CREATION_FEE_PAID, EventKind.CAMPAIGN_CREATED]

    def test_invalid_parameters_charge_nothing(self, engine, custody) -> None:
        with pytest.raises(InvalidParameter):
            _open(engine, target=0)
        assert custody.balance_of("alice") == 100

    def test_duplicate_id_charges_nothing(self, engine, custody) -> None:
        _open(engine)
        with pytest.raises(DuplicateCampaign):
            _open(engine)
        assert custody.balance_of("alice") == 99

    def test_creator_without_funds(self, engine, tokens) -> None:
        with pytest.raises(TransferError):
            engine.open_campaign("nobody", "Moon", "MOON", SUPPLY, 20, 9, campaign_id="c1", now=_now())
        with pytest.raises(CampaignNotFound):
            engine.get_campaign("c1")
        assert tokens.balance_of("c1", treasury_account("c1")) == 0

    def test_mint_failure_after_fee_is_unrecoverable(self, engine, tokens) -> None:
        tokens.mint_initial_supply("c1", 5)
        with pytest.raises(UnrecoverableStateError, match="minting failed"):
            _open(engine)

    def test_initial_contribution_is_sequence_zero(self, engine, custody) -> None:
        c = _open(engine, initial_contribution=5)
        record = engine.store.get("alice", "c1")
        assert record.sequence_index == 0
        assert record.amount == 5
        assert c.total_contributed == 5
        assert custody.balance_of("alice") == 100 - 1 - 5

    def test_initial_contribution_above_cap_rejected(self, engine, custody) -> None:
        with pytest.raises(InvalidParameter, match="initial_contribution"):
            _open(engine, initial_contribution=11)
        assert custody.balance_of("alice") == 100

    def test_initial_contribution_beyond_balance_charges_nothing(
        self, engine, custody, tokens, events,
    ) -> None:
        custody.transfer("alice", "bob", 97)
        with pytest.raises(TransferError, match="needs 6"):
            _open(engine, initial_contribution=5)
        with pytest.raises(CampaignNotFound):
            engine.get_campaign("c1")
        assert custody.balance_of("alice") == 3
        assert custody.balance_of(FEE_RECIPIENT) == 0
        assert tokens.balance_of("c1", treasury_account("c1")) == 0
        assert events == []

    def test_single_unit_supply_rejected(self, engine, custody) -> None:
        with pytest.raises(InvalidParameter, match="total_supply must be at least 2"):
            engine.open_campaign("alice", "One", "ONE", 1, 20, 0, campaign_id="c1", now=_now())
        assert custody.balance_of("alice") == 100

    def test_free_creation(self, custody, tokens, issuer, events) -> None:
        config = LaunchConfig(base_unit=1, contributor_cap=10, max_target=1_000, creation_fee=0)
        engine = _engine(config, custody, tokens, issuer, events)
        _open(engine)
        assert custody.balance_of("alice") == 100
        assert _kinds(events) == [EventKind.CAMPAIGN_CREATED]


class TestContribute:
    def test_contribution_moves_funds_to_custody(self, engine, custody) -> None:
        _open(engine)
        record = engine.contribute("c1", "bob", 10, now=_now())
        assert record.amount == 10
        assert record.allocated_tokens == SUPPLY // 2
        assert custody.balance_of("bob") == 90
        assert custody.balance_of(custody_account("c1")) == 10

    def test_per_contributor_cap(self, engine) -> None:
        _open(engine)
        engine.contribute("c1", "bob", 10, now=_now())
        with pytest.raises(PerContributorCapExceeded):
            engine.contribute("c1", "bob", 1, now=_now())

    def test_target_exceeded(self, engine, custody) -> None:
        _open(engine, target=15)
        engine.contribute("c1", "bob", 10, now=_now())
        with pytest.raises(TargetExceeded):
            engine.contribute("c1", "carol", 6, now=_now())
        assert custody.balance_of("carol") == 100

    def test_cap_reported_before_target(self, engine) -> None:
        _open(engine, target=10)
        with pytest.raises(PerContributorCapExceeded):
            engine.contribute("c1", "bob", 11, now=_now())

    def test_insufficient_funds_records_nothing(self, engine, custody) -> None:
        _open(engine)
        custody.transfer("dave", "elsewhere", 95)
        with pytest.raises(TransferError):
            engine.contribute("c1", "dave", 10, now=_now())
        c = engine.get_campaign("c1")
        assert c.total_contributed == 0
        assert c.contribution_count == 0
        assert engine.store.get("dave", "c1") is None

    def test_unknown_campaign(self, engine) -> None:
        with pytest.raises(CampaignNotFound):
            engine.contribute("missing", "bob", 1, now=_now())

    def test_expired_campaign_rejects(self, engine) -> None:
        _open(engine)
        with pytest.raises(CampaignExpired):
            engine.contribute("c1", "bob", 1, now=_after_deadline())

    def test_counters_and_sequence(self, engine, events) -> None:
        _open(engine)
        engine.contribute("c1", "bob", 3, now=_now())
        engine.contribute("c1", "carol", 3, now=_now())
        engine.contribute("c1", "bob", 3, now=_now())
        c = engine.get_campaign("c1")
        assert c.contribution_count == 3
        assert c.total_contributed == 9
        assert [s.sequence_index for s in engine.store.snapshots("c1")] == [0, 1, 2]
        accepted = [p for k, _, p in events if k == EventKind.CONTRIBUTION_ACCEPTED]
        assert [p["sequence_index"] for p in accepted] == [0, 1, 2]

    def test_concurrent_contributions_never_pass_target(self, engine, custody) -> None:
        _open(engine, target=10)
        contributors = [f"user{i}" for i in range(25)]
        for name in contributors:
            custody.deposit(name, 5)
        outcomes: list = []
        lock = threading.Lock()

        def _go(name: str) -> None:
            try:
                engine.contribute("c1", name, 1, now=_now())
                result = "ok"
            except TargetExceeded:
                result = "full"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=_go, args=(n,)) for n in contributors]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        c = engine.get_campaign("c1")
        assert outcomes.count("ok") == 10
        assert outcomes.count("full") == 15
        assert c.total_contributed == 10
        assert c.contribution_count == 10
        assert custody.balance_of(custody_account("c1")) == 10
        assert sorted(s.sequence_index for s in engine.store.snapshots("c1")) == list(range(10))


class TestRefund:
    def test_expired_campaign_refunds(self, engine, custody) -> None:
        _open(engine)
        engine.contribute("c1", "bob", 5, now=_now())
        amount = engine.refund("c1", "bob", now=_after_deadline())
        assert amount == 5
        assert custody.balance_of("bob") == 100
        assert custody.balance_of(custody_account("c1")) == 0
        c = engine.get_campaign("c1")
        assert c.total_refunded == 5
        assert engine.store.get("bob", "c1").amount == 0

    def test_refund_twice_rejected(self, engine, custody) -> None:
        _open(engine)
        engine.contribute("c1", "bob", 5, now=_now())
        engine.refund("c1", "bob", now=_after_deadline())
        with pytest.raises(NoContributionToRefund):
            engine.refund("c1", "bob", now=_after_deadline())
        assert custody.balance_of("bob") == 100

    def test_refund_before_deadline_rejected(self, engine) -> None:
        _open(engine)
        engine.contribute("c1", "bob", 5, now=_now())
        with pytest.raises(RefundNotAvailable):
            engine.refund("c1", "bob", now=_now() + timedelta(days=1))

    def test_funded_campaign_never_refunds(self, engine) -> None:
        _open(engine)
        engine.contribute("c1", "bob", 10, now=_now())
        engine.contribute("c1", "carol", 10, now=_now())
        with pytest.raises(RefundNotAvailable):
            engine.refund("c1", "bob", now=_after_deadline())

    def test_non_contributor(self, engine) -> None:
        _open(engine)
        with pytest.raises(NoContributionToRefund):
            engine.refund("c1", "dave", now=_after_deadline())

    def test_totals_balance_after_refunds(self, engine) -> None:
        _open(engine)
        engine.contribute("c1", "bob", 5, now=_now())
        engine.contribute("c1", "carol", 7, now=_now())
        engine.refund("c1", "bob", now=_after_deadline())
        c = engine.get_campaign("c1")
        assert c.total_contributed == engine.store.total_recorded("c1") + c.total_refunded


class TestFailedCampaign:
    def test_underfunded_campaign_refunds_after_deadline(self, engine, custody) -> None:
        _open(engine, target=200)
        engine.contribute("c1", "bob", 10, now=_now())
        with pytest.raises(TargetNotReached):
            engine.finalize("c1", now=_now())

        assert engine.refund("c1", "bob", now=_after_deadline()) == 10
        assert engine.store.get("bob", "c1").amount == 0
        assert custody.balance_of("bob") == 100
        assert not engine.get_campaign("c1").is_finalized


class TestFinalize:
    def _fund(self, engine) -> None:
        _open(engine)
        engine.contribute("c1", "bob", 10, now=_now())
        engine.contribute("c1", "carol", 10, now=_now())

    def test_successful_campaign(self, engine, custody, tokens) -> None:
        self._fund(engine)
        report = engine.finalize("c1", now=_now())

        assert report.fee_amount == 1
        assert custody.balance_of(FEE_RECIPIENT) == 1 + 1
        assert report.pool.resource_reserve == 19
        assert report.pool.token_reserve == SUPPLY // 2
        assert custody.balance_of(pool_account("c1")) == 19
        assert custody.balance_of(custody_account("c1")) == 0
        assert tokens.balance_of("c1", pool_account("c1")) == SUPPLY // 2
        assert report.distributions == {"bob": 250_000, "carol": 250_000}
        assert tokens.balance_of("c1", "bob") == 250_000
        assert tokens.balance_of("c1", treasury_account("c1")) == 0

        c = engine.get_campaign("c1")
        assert c.is_finalized
        assert c.finalized_utc == _now()

    def test_finalize_event_sequence(self, engine, events) -> None:
        self._fund(engine)
        events.clear()
        engine.finalize("c1", now=_now())
        assert _kinds(events) == [
            EventKind.PROTOCOL_FEE_PAID,
            EventKind.POOL_SEEDED,
            EventKind.DISTRIBUTION_PLANNED,
            EventKind.TOKENS_DISTRIBUTED,
            EventKind.TOKENS_DISTRIBUTED,
            EventKind.CAMPAIGN_FINALIZED,
        ]

    def test_rounding_dust_goes_to_last_contributor(self, engine, custody, tokens) -> None:
        engine.open_campaign("alice", "Odd", "ODD", 9, 3, 0, campaign_id="c2", now=_now())
        for name in ("bob", "carol", "dave"):
            engine.contribute("c2", name, 1, now=_now())
        report = engine.finalize("c2", now=_now())
        # 9 // 2 = 4 to the pool, 5 distributed as 1/1/3
        assert report.pool.token_reserve == 4
        assert report.distributions == {"bob": 1, "carol": 1, "dave": 3}
        assert tokens.balance_of("c2", treasury_account("c2")) == 0

    def test_below_target_rejected(self, engine) -> None:
        _open(engine)
        engine.contribute("c1", "bob", 10, now=_now())
        with pytest.raises(TargetNotReached):
            engine.finalize("c1", now=_now())

    def test_finalize_twice_rejected(self, engine, custody) -> None:
        self._fund(engine)
        engine.finalize("c1", now=_now())
        with pytest.raises(AlreadyFinalized):
            engine.finalize("c1", now=_now())
        assert custody.balance_of(FEE_RECIPIENT) == 2

    def test_contribute_after_finalize_rejected(self, engine, custody) -> None:
        self._fund(engine)
        engine.finalize("c1", now=_now())
        custody.deposit("erin", 5)
        with pytest.raises(AlreadyFinalized):
            engine.contribute("c1", "erin", 1, now=_now())

    def test_refund_after_finalize_rejected(self, engine) -> None:
        self._fund(engine)
        engine.finalize("c1", now=_now())
        with pytest.raises(RefundNotAvailable):
            engine.refund("c1", "bob", now=_after_deadline())

    def test_finalize_after_deadline_when_funded(self, engine) -> None:
        self._fund(engine)
        report = engine.finalize("c1", now=_after_deadline())
        assert report.fee_amount == 1

    def test_pool_failure_is_retryable_without_second_fee(
        self, config, custody, tokens, issuer, events,
    ) -> None:
        provisioner = FlakyProvisioner(custody, tokens, failures=1)
        engine = _engine(config, custody, tokens, issuer, events, provisioner=provisioner)
        self._fund(engine)

        with pytest.raises(LiquidityProvisioningError):
            engine.finalize("c1", now=_now())
        c = engine.get_campaign("c1")
        assert not c.is_finalized
        assert c.progress.fee_paid
        assert custody.balance_of(FEE_RECIPIENT) == 2

        engine.finalize("c1", now=_now())
        assert c.is_finalized
        assert custody.balance_of(FEE_RECIPIENT) == 2
        assert _kinds(events).count(EventKind.PROTOCOL_FEE_PAID) == 1

    def test_refused_pool_deposit_keeps_tokens_for_contributors(
        self, config, tokens, issuer, events,
    ) -> None:
        custody = PoolRefusingCustody({"alice": 100, "bob": 100, "carol": 100})
        engine = _engine(config, custody, tokens, issuer, events)
        self._fund(engine)

        with pytest.raises(LiquidityProvisioningError, match="simulated outage"):
            engine.finalize("c1", now=_now())
        assert tokens.balance_of("c1", pool_account("c1")) == 0
        assert tokens.balance_of("c1", treasury_account("c1")) == SUPPLY
        assert custody.balance_of(custody_account("c1")) == 19

        report = engine.finalize("c1", now=_now())
        assert report.pool.token_reserve == SUPPLY // 2
        assert tokens.balance_of("c1", "bob") == 250_000
        assert tokens.balance_of("c1", "carol") == 250_000
        assert tokens.balance_of("c1", treasury_account("c1")) == 0
        assert custody.balance_of(pool_account("c1")) == 19
        assert custody.balance_of(FEE_RECIPIENT) == 2
        assert _kinds(events).count(EventKind.PROTOCOL_FEE_PAID) == 1

    def test_distribution_failure_resumes_where_it_stopped(self, engine, tokens, events) -> None:
        self._fund(engine)
        tokens.failures["carol"] = 1

        with pytest.raises(TransferError):
            engine.finalize("c1", now=_now())
        c = engine.get_campaign("c1")
        assert not c.is_finalized
        assert tokens.balance_of("c1", "bob") == 250_000
        assert tokens.balance_of("c1", "carol") == 0

        report = engine.finalize("c1", now=_now())
        assert report.distributions == {"carol": 250_000}
        assert tokens.balance_of("c1", "bob") == 250_000
        assert tokens.balance_of("c1", "carol") == 250_000
        assert _kinds(events).count(EventKind.POOL_SEEDED) == 1
        assert _kinds(events).count(EventKind.DISTRIBUTION_PLANNED) == 1

    def test_zero_fee_configuration(self, custody, tokens, issuer, events) -> None:
        config = LaunchConfig(
            base_unit=1, contributor_cap=10, max_target=1_000, fee_bps=0, creation_fee=0,
        )
        engine = _engine(config, custody, tokens, issuer, events)
        self._fund(engine)
        report = engine.finalize("c1", now=_now())
        assert report.fee_amount == 0
        assert report.pool.resource_reserve == 20
        assert custody.balance_of(config.fee_recipient) == 0


class TestIsolation:
    def test_campaigns_are_independent(self, engine, custody, tokens) -> None:
        _open(engine)
        engine.open_campaign("alice", "Sun", "SUN", SUPPLY, 20, 9, campaign_id="c2", now=_now())
        engine.contribute("c1", "bob", 10, now=_now())
        engine.contribute("c2", "bob", 10, now=_now())
        engine.contribute("c1", "carol", 10, now=_now())
        engine.finalize("c1", now=_now())

        c2 = engine.get_campaign("c2")
        assert not c2.is_finalized
        assert custody.balance_of(custody_account("c2")) == 10
        assert tokens.balance_of("c2", treasury_account("c2")) == SUPPLY

    def test_is_expired_query(self, engine) -> None:
        _open(engine)
        assert not engine.is_expired("c1", now=_now())
        assert engine.is_expired("c1", now=_after_deadline())
