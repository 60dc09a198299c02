"""Liquidity provisioning — seeds the post-finalize trading pool.

The engine only needs a success/failure signal and the resulting pool
description. ConstantProductProvisioner is the in-process reference:
it pulls the resource from campaign custody and the tokens from the
campaign treasury into ``pool:<campaign_id>`` and mints
isqrt(resource * tokens) LP shares, as a constant-product AMM does on its
first deposit.
"""

from __future__ import annotations

from typing import Dict, Protocol, runtime_checkable

import structlog

from fairlaunch.allocation.arithmetic import initial_pool_shares
from fairlaunch.collaborators.custody import FundCustody, custody_account
from fairlaunch.collaborators.tokens import PoolAuthority, TokenService, treasury_account
from fairlaunch.errors import LiquidityProvisioningError, TransferError
from fairlaunch.models.campaign import LiquidityPool

logger = structlog.get_logger(__name__)


def pool_account(campaign_id: str) -> str:
    return f"pool:{campaign_id}"


@runtime_checkable
class LiquidityProvisioner(Protocol):
    """Abstract contract for bootstrapping an external pool.

    seed_pool() returns the pool on success and raises
    LiquidityProvisioningError on failure.
    """

    def seed_pool(
        self,
        authority: PoolAuthority,
        resource_amount: int,
        token_amount: int,
    ) -> LiquidityPool:
        ...


class ConstantProductProvisioner:
    """Reference provisioner backed by the in-process custody and tokens."""

    def __init__(self, custody: FundCustody, tokens: TokenService) -> None:
        self._custody = custody
        self._tokens = tokens
        self._pools: Dict[str, LiquidityPool] = {}

    def seed_pool(
        self,
        authority: PoolAuthority,
        resource_amount: int,
        token_amount: int,
    ) -> LiquidityPool:
        campaign_id = authority.campaign_id
        if campaign_id in self._pools:
            raise LiquidityProvisioningError(f"Pool for {campaign_id} already seeded")
        if resource_amount <= 0 or token_amount <= 0:
            raise LiquidityProvisioningError(
                f"Pool needs both reserves positive: resource={resource_amount}, "
                f"tokens={token_amount}"
            )
        custody = custody_account(campaign_id)
        if self._custody.balance_of(custody) < resource_amount:
            raise LiquidityProvisioningError(
                f"Custody of {campaign_id} cannot cover {resource_amount}"
            )
        if self._tokens.balance_of(campaign_id, treasury_account(campaign_id)) < token_amount:
            raise LiquidityProvisioningError(
                f"Treasury of {campaign_id} cannot cover {token_amount} tokens"
            )

        target = pool_account(campaign_id)
        # Resource leg first; returned to custody if the token leg fails
        try:
            self._custody.transfer(custody, target, resource_amount)
        except TransferError as e:
            raise LiquidityProvisioningError(f"Seeding {campaign_id} failed: {e}") from e
        try:
            self._tokens.transfer(authority, target, token_amount)
        except TransferError as e:
            self._custody.transfer(target, custody, resource_amount)
            raise LiquidityProvisioningError(f"Seeding {campaign_id} failed: {e}") from e

        pool = LiquidityPool(
            pool_id=target,
            campaign_id=campaign_id,
            resource_reserve=resource_amount,
            token_reserve=token_amount,
            total_shares=initial_pool_shares(resource_amount, token_amount),
        )
        self._pools[campaign_id] = pool
        logger.info(
            "liquidity.pool_seeded",
            campaign_id=campaign_id,
            resource_reserve=resource_amount,
            token_reserve=token_amount,
            total_shares=pool.total_shares,
        )
        return pool

    def get_pool(self, campaign_id: str) -> LiquidityPool | None:
        return self._pools.get(campaign_id)

    def pools(self) -> Dict[str, LiquidityPool]:
        return dict(self._pools)

    def restore(self, pools: Dict[str, LiquidityPool]) -> None:
        self._pools = dict(pools)
