"""Overflow-checked integer math and token allocation.

All amounts are unsigned integers counted in base units. Python integers
never overflow, so the checks below enforce the fixed-width ranges the
amounts are stored in (u64 for balances, u32 for sequence counters) and
raise ArithmeticOverflow where a fixed-width machine would wrap.

No floats anywhere. The pro-rata plan is exact: every share is an integer
floor, and the final recipient absorbs the rounding remainder so the plan
sums to precisely the distributable pool.
"""

from __future__ import annotations

from math import isqrt
from typing import Sequence

from fairlaunch.errors import ArithmeticOverflow, InvalidParameter

U8_MAX = 2**8 - 1
U32_MAX = 2**32 - 1
U64_MAX = 2**64 - 1

BPS_DENOMINATOR = 10_000


def require_u64(value: int, name: str = "value") -> int:
    """Validate that *value* is an int in the u64 range."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidParameter(f"{name} must be an integer, got {type(value).__name__}")
    if value < 0 or value > U64_MAX:
        raise InvalidParameter(f"{name} out of u64 range: {value}")
    return value


def checked_add(a: int, b: int, limit: int = U64_MAX) -> int:
    result = a + b
    if result > limit:
        raise ArithmeticOverflow(f"{a} + {b} exceeds {limit}")
    return result


def checked_sub(a: int, b: int) -> int:
    if b > a:
        raise ArithmeticOverflow(f"{a} - {b} underflows")
    return a - b


def checked_mul(a: int, b: int, limit: int = U64_MAX) -> int:
    result = a * b
    if result > limit:
        raise ArithmeticOverflow(f"{a} * {b} exceeds {limit}")
    return result


def allocate(contribution: int, total_supply: int, target: int) -> int:
    """Token units earned by *contribution* toward a campaign.

    floor(contribution * total_supply / target), computed on an
    unbounded intermediate so the product may exceed 64 bits.
    """
    require_u64(contribution, "contribution")
    require_u64(total_supply, "total_supply")
    require_u64(target, "target")
    if target == 0:
        raise InvalidParameter("target must be positive")
    tokens = contribution * total_supply // target
    if tokens > U64_MAX:
        raise ArithmeticOverflow(f"allocation {tokens} exceeds u64")
    return tokens


def protocol_fee(total: int, fee_bps: int) -> int:
    """Fee in base units for *total* at *fee_bps* basis points (floored)."""
    require_u64(total, "total")
    if not 0 <= fee_bps <= BPS_DENOMINATOR:
        raise InvalidParameter(f"fee_bps must be within [0, {BPS_DENOMINATOR}]: {fee_bps}")
    return total * fee_bps // BPS_DENOMINATOR


def split_supply(total_supply: int) -> tuple[int, int]:
    """Split a supply into (liquidity_seed, distribution) halves.

    An odd unit goes to the distribution half.
    """
    require_u64(total_supply, "total_supply")
    liquidity = total_supply // 2
    return liquidity, total_supply - liquidity


def pro_rata_plan(amounts: Sequence[int], pool: int) -> list[int]:
    """Split *pool* across *amounts* in proportion, exactly.

    Each recipient but the last receives floor(amount * pool / total).
    The last recipient receives whatever remains, so the plan always sums
    to *pool* when any amount is positive. Zero amounts receive zero.
    An all-zero input yields an all-zero plan.
    """
    require_u64(pool, "pool")
    for a in amounts:
        require_u64(a, "amount")
    total = sum(amounts)
    if total == 0:
        return [0] * len(amounts)

    last = max(i for i, a in enumerate(amounts) if a > 0)
    plan: list[int] = []
    running = 0
    for i, amount in enumerate(amounts):
        if i == last:
            share = pool - running
        else:
            share = amount * pool // total
        running += share
        plan.append(share)
    return plan


def initial_pool_shares(resource_amount: int, token_amount: int) -> int:
    """LP shares minted on the first deposit into a constant-product pool."""
    require_u64(resource_amount, "resource_amount")
    require_u64(token_amount, "token_amount")
    return isqrt(resource_amount * token_amount)
