"""Contribution store — per-contributor records and the snapshot ledger.

Two views of the same events:
- one live ContributionRecord per (contributor, campaign), updated in
  place as the contributor adds more;
- an append-only sequence of LedgerSnapshots, one per accepted
  contribution, ordered by sequence index.

The snapshot ledger has a configurable capacity (None = unbounded).
Refunds zero a record's amount but never delete it, so the audit history
survives.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from fairlaunch.allocation.arithmetic import allocate, checked_add, require_u64
from fairlaunch.errors import (
    InvalidParameter,
    LedgerCapacityExceeded,
    NoContributionToRefund,
    PerContributorCapExceeded,
)
from fairlaunch.models.campaign import Campaign, ContributionRecord, LedgerSnapshot


class ContributionStore:
    """In-memory contribution records and snapshot ledger.

    Usage:
        store = ContributionStore(contributor_cap=10, ledger_capacity=None)
        store.check_contribution("alice", campaign, 5)
        record = store.upsert_contribution("alice", campaign, 5)
        store.append_ledger_snapshot(record, delta=5, sequence_index=0)
    """

    def __init__(self, contributor_cap: int, ledger_capacity: Optional[int] = None) -> None:
        if contributor_cap <= 0:
            raise ValueError("contributor_cap must be positive")
        self._cap = contributor_cap
        self._capacity = ledger_capacity
        self._records: Dict[Tuple[str, str], ContributionRecord] = {}
        self._snapshots: Dict[str, List[LedgerSnapshot]] = {}

    @property
    def contributor_cap(self) -> int:
        return self._cap

    @property
    def ledger_capacity(self) -> Optional[int]:
        return self._capacity

    # ------------------------------------------------------------------
    # Validation (no mutation)
    # ------------------------------------------------------------------

    def check_contribution(self, contributor_id: str, campaign: Campaign, delta: int) -> int:
        """Return the contributor's amount after *delta*, or raise.

        Raises:
            InvalidParameter: non-positive delta or empty contributor.
            PerContributorCapExceeded: cumulative amount would pass the cap.
        """
        if not contributor_id:
            raise InvalidParameter("contributor_id is required")
        require_u64(delta, "amount")
        if delta == 0:
            raise InvalidParameter("contribution amount must be positive")
        current = self._records.get((contributor_id, campaign.campaign_id))
        new_amount = checked_add(current.amount if current else 0, delta)
        if new_amount > self._cap:
            raise PerContributorCapExceeded(
                f"{contributor_id} would hold {new_amount} in {campaign.campaign_id}, "
                f"above the per-contributor cap of {self._cap}"
            )
        return new_amount

    def check_capacity(self, campaign_id: str) -> None:
        """Raise LedgerCapacityExceeded if another snapshot would not fit."""
        if self._capacity is None:
            return
        if len(self._snapshots.get(campaign_id, [])) >= self._capacity:
            raise LedgerCapacityExceeded(
                f"Contribution ledger for {campaign_id} is full "
                f"({self._capacity} entries)"
            )

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def upsert_contribution(
        self,
        contributor_id: str,
        campaign: Campaign,
        delta: int,
        now: Optional[datetime] = None,
    ) -> ContributionRecord:
        """Add *delta* to the contributor's running total.

        Must run before the campaign ledger bumps contribution_count: the
        count read here is the zero-based index of this contribution.
        """
        new_amount = self.check_contribution(contributor_id, campaign, delta)
        tokens = allocate(new_amount, campaign.total_supply, campaign.target)
        if now is None:
            now = datetime.now(timezone.utc)
        index = campaign.contribution_count

        key = (contributor_id, campaign.campaign_id)
        record = self._records.get(key)
        if record is None:
            record = ContributionRecord(
                contributor_id=contributor_id,
                campaign_id=campaign.campaign_id,
                amount=new_amount,
                allocated_tokens=tokens,
                sequence_index=index,
                timestamp=now,
                last_sequence_index=index,
            )
            self._records[key] = record
        else:
            record.amount = new_amount
            record.allocated_tokens = tokens
            record.last_sequence_index = index
            record.timestamp = now
        return record

    def append_ledger_snapshot(
        self,
        record: ContributionRecord,
        delta: int,
        sequence_index: int,
    ) -> LedgerSnapshot:
        """Freeze the record's current state into the append-only ledger."""
        self.check_capacity(record.campaign_id)
        entries = self._snapshots.setdefault(record.campaign_id, [])
        if entries and sequence_index <= entries[-1].sequence_index:
            raise ValueError(
                f"Snapshot sequence {sequence_index} does not follow "
                f"{entries[-1].sequence_index} for {record.campaign_id}"
            )
        snapshot = LedgerSnapshot(
            contributor_id=record.contributor_id,
            campaign_id=record.campaign_id,
            delta=delta,
            amount=record.amount,
            allocated_tokens=record.allocated_tokens,
            sequence_index=sequence_index,
            timestamp=record.timestamp,
        )
        entries.append(snapshot)
        return snapshot

    def clear_contribution(self, contributor_id: str, campaign_id: str) -> ContributionRecord:
        """Zero a record's amount in place (refund). The record is kept.

        Raises NoContributionToRefund if there is no record or it is zero.
        """
        record = self._records.get((contributor_id, campaign_id))
        if record is None or record.amount == 0:
            raise NoContributionToRefund(
                f"No contribution to refund for {contributor_id} in {campaign_id}"
            )
        record.refunded = checked_add(record.refunded, record.amount)
        record.amount = 0
        record.allocated_tokens = 0
        return record

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, contributor_id: str, campaign_id: str) -> Optional[ContributionRecord]:
        return self._records.get((contributor_id, campaign_id))

    def records_for(self, campaign_id: str) -> list[ContributionRecord]:
        """Records of one campaign in creation order (sequence index)."""
        records = [r for r in self._records.values() if r.campaign_id == campaign_id]
        return sorted(records, key=lambda r: r.sequence_index)

    def snapshots(self, campaign_id: str) -> list[LedgerSnapshot]:
        return list(self._snapshots.get(campaign_id, []))

    def total_recorded(self, campaign_id: str) -> int:
        return sum(r.amount for r in self._records.values() if r.campaign_id == campaign_id)

    def restore(
        self,
        records: Iterable[ContributionRecord],
        snapshots: Iterable[LedgerSnapshot],
    ) -> None:
        """Load previously persisted records and snapshots."""
        self._records = {r.key: r for r in records}
        self._snapshots = {}
        for snap in sorted(snapshots, key=lambda s: (s.campaign_id, s.sequence_index)):
            self._snapshots.setdefault(snap.campaign_id, []).append(snap)
