"""Tests for the JSON state store — proves campaign state survives a reload."""

import json
import pytest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from fairlaunch.models.campaign import (
    Campaign,
    ContributionRecord,
    FinalizeProgress,
    LedgerSnapshot,
    LiquidityPool,
)
from fairlaunch.persistence.state_store import StateStore


def _now() -> datetime:
    return datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _pool() -> LiquidityPool:
    return LiquidityPool("pool:c1", "c1", 19, 500, 97)


def _campaign() -> Campaign:
    return Campaign(
        campaign_id="c1",
        creator_id="alice",
        name="Moon",
        ticker="MOON",
        total_supply=1_000,
        target=20,
        decimals=9,
        creation_time=_now(),
        refund_window=timedelta(days=7),
        total_contributed=20,
        contribution_count=2,
        progress=FinalizeProgress(fee_paid=True, fee_amount=1, pool=_pool()),
    )


def _record() -> ContributionRecord:
    return ContributionRecord(
        contributor_id="bob",
        campaign_id="c1",
        amount=10,
        allocated_tokens=500,
        sequence_index=0,
        timestamp=_now(),
        last_sequence_index=1,
        distribution_amount=250,
        distributed=True,
    )


def _snapshot() -> LedgerSnapshot:
    return LedgerSnapshot("bob", "c1", 10, 10, 500, 0, _now())


class TestStateStore:
    def test_empty_store(self, tmp_path: Path) -> None:
        store = StateStore(tmp_path / "state.json")
        assert store.load_campaigns() == []
        assert store.load_records() == []
        assert store.load_custody_balances() == {}

    def test_save_and_reload(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        StateStore(path).save(
            campaigns=[_campaign()],
            records=[_record()],
            snapshots=[_snapshot()],
            custody_balances={"bob": 90},
            token_balances={"c1": {"bob": 250}},
            pools={"c1": _pool()},
        )

        store = StateStore(path)
        assert store.load_campaigns() == [_campaign()]
        assert store.load_records() == [_record()]
        assert store.load_snapshots() == [_snapshot()]
        assert store.load_custody_balances() == {"bob": 90}
        assert store.load_token_balances() == {"c1": {"bob": 250}}
        assert store.load_pools() == {"c1": _pool()}

    def test_datetimes_keep_timezone(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        StateStore(path).save(campaigns=[_campaign()], records=[], snapshots=[])
        loaded = StateStore(path).load_campaigns()[0]
        assert loaded.creation_time.tzinfo is not None
        assert loaded.deadline == _now() + timedelta(days=7)

    def test_no_temp_file_left(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        StateStore(path).save(campaigns=[], records=[], snapshots=[])
        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]

    def test_unknown_version_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"version": 99}), encoding="utf-8")
        with pytest.raises(ValueError, match="Unsupported state version"):
            StateStore(path)
