"""JSON state store — campaign state that survives process restarts.

Holds one JSON document with campaigns (including finalize progress),
contribution records, ledger snapshots and the balances of the
in-process collaborators. Writes go to a temporary file that replaces
the store atomically, so a crash mid-write leaves the previous state.

The event log remains the audit trail; this file is the working copy
the service reloads on construction.
"""

from __future__ import annotations

import json
import os
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from fairlaunch.models.campaign import (
    Campaign,
    ContributionRecord,
    FinalizeProgress,
    LedgerSnapshot,
    LiquidityPool,
)

STATE_VERSION = 1


def _dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value is not None else None


def _pool_to_dict(pool: LiquidityPool) -> dict[str, Any]:
    return {
        "pool_id": pool.pool_id,
        "campaign_id": pool.campaign_id,
        "resource_reserve": pool.resource_reserve,
        "token_reserve": pool.token_reserve,
        "total_shares": pool.total_shares,
    }


def _campaign_to_dict(c: Campaign) -> dict[str, Any]:
    return {
        "campaign_id": c.campaign_id,
        "creator_id": c.creator_id,
        "name": c.name,
        "ticker": c.ticker,
        "total_supply": c.total_supply,
        "target": c.target,
        "decimals": c.decimals,
        "creation_time": _dt(c.creation_time),
        "refund_window_seconds": int(c.refund_window.total_seconds()),
        "total_contributed": c.total_contributed,
        "total_refunded": c.total_refunded,
        "contribution_count": c.contribution_count,
        "is_finalized": c.is_finalized,
        "finalized_utc": _dt(c.finalized_utc),
        "progress": {
            "fee_paid": c.progress.fee_paid,
            "fee_amount": c.progress.fee_amount,
            "pool": _pool_to_dict(c.progress.pool) if c.progress.pool else None,
            "distribution_planned": c.progress.distribution_planned,
            "distribution_pool": c.progress.distribution_pool,
        },
    }


def _campaign_from_dict(d: dict[str, Any]) -> Campaign:
    p = d.get("progress") or {}
    return Campaign(
        campaign_id=d["campaign_id"],
        creator_id=d.get("creator_id", ""),
        name=d["name"],
        ticker=d["ticker"],
        total_supply=d["total_supply"],
        target=d["target"],
        decimals=d["decimals"],
        creation_time=_parse_dt(d["creation_time"]),
        refund_window=timedelta(seconds=d["refund_window_seconds"]),
        total_contributed=d["total_contributed"],
        total_refunded=d.get("total_refunded", 0),
        contribution_count=d["contribution_count"],
        is_finalized=d["is_finalized"],
        finalized_utc=_parse_dt(d.get("finalized_utc")),
        progress=FinalizeProgress(
            fee_paid=p.get("fee_paid", False),
            fee_amount=p.get("fee_amount", 0),
            pool=LiquidityPool(**p["pool"]) if p.get("pool") else None,
            distribution_planned=p.get("distribution_planned", False),
            distribution_pool=p.get("distribution_pool", 0),
        ),
    )


def _record_to_dict(r: ContributionRecord) -> dict[str, Any]:
    return {
        "contributor_id": r.contributor_id,
        "campaign_id": r.campaign_id,
        "amount": r.amount,
        "allocated_tokens": r.allocated_tokens,
        "sequence_index": r.sequence_index,
        "timestamp": _dt(r.timestamp),
        "last_sequence_index": r.last_sequence_index,
        "refunded": r.refunded,
        "distribution_amount": r.distribution_amount,
        "distributed": r.distributed,
    }


def _record_from_dict(d: dict[str, Any]) -> ContributionRecord:
    return ContributionRecord(
        contributor_id=d["contributor_id"],
        campaign_id=d["campaign_id"],
        amount=d["amount"],
        allocated_tokens=d["allocated_tokens"],
        sequence_index=d["sequence_index"],
        timestamp=_parse_dt(d["timestamp"]),
        last_sequence_index=d.get("last_sequence_index", d["sequence_index"]),
        refunded=d.get("refunded", 0),
        distribution_amount=d.get("distribution_amount", 0),
        distributed=d.get("distributed", False),
    )


def _snapshot_to_dict(s: LedgerSnapshot) -> dict[str, Any]:
    return {
        "contributor_id": s.contributor_id,
        "campaign_id": s.campaign_id,
        "delta": s.delta,
        "amount": s.amount,
        "allocated_tokens": s.allocated_tokens,
        "sequence_index": s.sequence_index,
        "timestamp": _dt(s.timestamp),
    }


def _snapshot_from_dict(d: dict[str, Any]) -> LedgerSnapshot:
    return LedgerSnapshot(
        contributor_id=d["contributor_id"],
        campaign_id=d["campaign_id"],
        delta=d["delta"],
        amount=d["amount"],
        allocated_tokens=d["allocated_tokens"],
        sequence_index=d["sequence_index"],
        timestamp=_parse_dt(d["timestamp"]),
    )


class StateStore:
    """Single-file JSON persistence for campaign and collaborator state.

    Usage:
        store = StateStore(Path("data/state.json"))
        store.save(campaigns=..., records=..., snapshots=...)
        campaigns = store.load_campaigns()
    """

    def __init__(self, storage_path: Path) -> None:
        self._path = storage_path
        self._data: dict[str, Any] = self._read()

    @property
    def storage_path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        data = json.loads(self._path.read_text(encoding="utf-8"))
        version = data.get("version")
        if version != STATE_VERSION:
            raise ValueError(f"Unsupported state version {version!r} in {self._path}")
        return data

    def save(
        self,
        campaigns: Iterable[Campaign],
        records: Iterable[ContributionRecord],
        snapshots: Iterable[LedgerSnapshot],
        custody_balances: Optional[Dict[str, int]] = None,
        token_balances: Optional[Dict[str, Dict[str, int]]] = None,
        pools: Optional[Dict[str, LiquidityPool]] = None,
    ) -> None:
        """Replace the stored state. Raises OSError if the write fails."""
        data = {
            "version": STATE_VERSION,
            "campaigns": [_campaign_to_dict(c) for c in campaigns],
            "records": [_record_to_dict(r) for r in records],
            "snapshots": [_snapshot_to_dict(s) for s in snapshots],
            "custody_balances": dict(custody_balances or {}),
            "token_balances": {k: dict(v) for k, v in (token_balances or {}).items()},
            "pools": {k: _pool_to_dict(v) for k, v in (pools or {}).items()},
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self._path)
        self._data = data

    def load_campaigns(self) -> list[Campaign]:
        return [_campaign_from_dict(d) for d in self._data.get("campaigns", [])]

    def load_records(self) -> list[ContributionRecord]:
        return [_record_from_dict(d) for d in self._data.get("records", [])]

    def load_snapshots(self) -> list[LedgerSnapshot]:
        return [_snapshot_from_dict(d) for d in self._data.get("snapshots", [])]

    def load_custody_balances(self) -> Dict[str, int]:
        return dict(self._data.get("custody_balances", {}))

    def load_token_balances(self) -> Dict[str, Dict[str, int]]:
        return {k: dict(v) for k, v in self._data.get("token_balances", {}).items()}

    def load_pools(self) -> Dict[str, LiquidityPool]:
        return {k: LiquidityPool(**v) for k, v in self._data.get("pools", {}).items()}
