"""External collaborators — custody, token service, liquidity provisioning.

The campaign engine depends only on the Protocols defined here. The
in-memory implementations back tests and the CLI; EvmCustody (in
fairlaunch.collaborators.evm) settles on an EVM chain.
"""

from fairlaunch.collaborators.custody import FundCustody, InMemoryCustody, custody_account
from fairlaunch.collaborators.liquidity import (
    ConstantProductProvisioner,
    LiquidityProvisioner,
    pool_account,
)
from fairlaunch.collaborators.tokens import (
    AuthorityIssuer,
    InMemoryTokenService,
    PoolAuthority,
    TokenService,
    treasury_account,
)

__all__ = [
    "AuthorityIssuer",
    "ConstantProductProvisioner",
    "FundCustody",
    "InMemoryCustody",
    "InMemoryTokenService",
    "LiquidityProvisioner",
    "PoolAuthority",
    "TokenService",
    "custody_account",
    "pool_account",
    "treasury_account",
]
