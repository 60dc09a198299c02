"""Allocation library — checked integer math and proportional allocation."""

from fairlaunch.allocation.arithmetic import (
    U32_MAX,
    U64_MAX,
    allocate,
    checked_add,
    checked_mul,
    checked_sub,
    pro_rata_plan,
    protocol_fee,
    split_supply,
)

__all__ = [
    "U32_MAX",
    "U64_MAX",
    "allocate",
    "checked_add",
    "checked_mul",
    "checked_sub",
    "pro_rata_plan",
    "protocol_fee",
    "split_supply",
]
