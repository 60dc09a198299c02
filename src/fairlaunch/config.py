"""Launch parameters — the tunable constants of the campaign engine.

Loaded from config/launch_params.json. Amount-like parameters are given
in whole units of the base resource and scaled by ``base_unit`` (e.g.
1_000_000_000 base units per native coin) so the JSON stays readable.

Defaults mirror the parameters the engine shipped with: a 10-unit cap per
contributor, a 5% protocol fee, a 7-day refund window and a 0.1-unit
creation fee.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, fields
from datetime import timedelta
from pathlib import Path
from typing import Any, Optional

from fairlaunch.allocation.arithmetic import BPS_DENOMINATOR, U64_MAX

CONFIG_FILENAME = "launch_params.json"


@dataclass(frozen=True)
class LaunchConfig:
    """Engine-wide parameters. All amounts here are already in base units."""

    base_unit: int = 1_000_000_000
    contributor_cap: int = 10 * 1_000_000_000
    max_target: int = 1_000 * 1_000_000_000
    fee_bps: int = 500
    fee_recipient: str = "protocol_treasury"
    refund_window_days: int = 7
    creation_fee: int = 100_000_000
    ledger_capacity: Optional[int] = None
    max_name_length: int = 32
    max_ticker_length: int = 10

    def __post_init__(self) -> None:
        if self.base_unit <= 0:
            raise ValueError("base_unit must be positive")
        if not 0 < self.contributor_cap <= U64_MAX:
            raise ValueError("contributor_cap must be a positive u64")
        if not 0 < self.max_target <= U64_MAX:
            raise ValueError("max_target must be a positive u64")
        if not 0 <= self.fee_bps < BPS_DENOMINATOR:
            raise ValueError(f"fee_bps must be within [0, {BPS_DENOMINATOR})")
        if not self.fee_recipient:
            raise ValueError("fee_recipient is required")
        if self.refund_window_days < 0:
            raise ValueError("refund_window_days must be non-negative")
        if not 0 <= self.creation_fee <= U64_MAX:
            raise ValueError("creation_fee must be a u64")
        if self.ledger_capacity is not None and self.ledger_capacity <= 0:
            raise ValueError("ledger_capacity must be positive or null (unbounded)")
        if self.max_name_length <= 0 or self.max_ticker_length <= 0:
            raise ValueError("name/ticker length limits must be positive")

    @property
    def refund_window(self) -> timedelta:
        return timedelta(days=self.refund_window_days)

    @classmethod
    def from_dict(cls, params: dict[str, Any]) -> LaunchConfig:
        """Build a config from the JSON layout.

        Keys ending in ``_units`` are multiplied by ``base_unit``; unknown
        keys are rejected so typos fail loudly.
        """
        base_unit = int(params.get("base_unit", cls.base_unit))
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {"base_unit": base_unit}
        for key, value in params.items():
            if key == "base_unit":
                continue
            if key.endswith("_units"):
                name = key[: -len("_units")]
                if name not in known:
                    raise ValueError(f"Unknown launch parameter: {key}")
                kwargs[name] = round(value * base_unit)
            elif key in known:
                kwargs[key] = value
            else:
                raise ValueError(f"Unknown launch parameter: {key}")
        return cls(**kwargs)

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> LaunchConfig:
        """Load from ``<config_dir>/launch_params.json``."""
        path = config_dir / CONFIG_FILENAME
        params = json.loads(path.read_text(encoding="utf-8"))
        return cls.from_dict(params)

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}
