"""Typed failures raised by the campaign engine.

Every failure carries a stable ``kind`` string so callers (the service
facade, the CLI, persisted audit events) can report it without matching
on class names. Validation failures are raised before any state is
mutated and are safe to retry with corrected input.
"""

from __future__ import annotations


class LaunchError(Exception):
    """Base class for all campaign engine failures."""

    kind = "LaunchError"


class InvalidParameter(LaunchError, ValueError):
    """Raised on bad construction or call input."""

    kind = "InvalidParameter"


class ArithmeticOverflow(LaunchError, ArithmeticError):
    """Raised when checked integer math leaves its representable range."""

    kind = "ArithmeticOverflow"


class TargetExceeded(LaunchError):
    """Raised when a contribution would push the total past the target."""

    kind = "TargetExceeded"


class PerContributorCapExceeded(LaunchError):
    """Raised when a contributor's cumulative amount would exceed the cap."""

    kind = "PerContributorCapExceeded"


class NoContributionToRefund(LaunchError):
    """Raised when a refund finds nothing recorded for the contributor."""

    kind = "NoContributionToRefund"


class AlreadyFinalized(LaunchError):
    """Raised on any attempt to act on a finalized campaign."""

    kind = "AlreadyFinalized"


class LedgerCapacityExceeded(LaunchError):
    """Raised when the bounded contribution ledger is full."""

    kind = "LedgerCapacityExceeded"


class TransferError(LaunchError):
    """Raised by custody or token collaborators when a transfer fails."""

    kind = "TransferError"


class LiquidityProvisioningError(LaunchError):
    """Raised by the liquidity collaborator when seeding a pool fails."""

    kind = "LiquidityProvisioningError"


class CampaignNotFound(LaunchError, KeyError):
    """Raised on lookup of an unknown campaign."""

    kind = "CampaignNotFound"

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message.
        return str(self.args[0]) if self.args else self.kind


class DuplicateCampaign(LaunchError):
    """Raised when a campaign id is registered twice."""

    kind = "DuplicateCampaign"


class TargetNotReached(LaunchError):
    """Raised when finalize is attempted below the funding target."""

    kind = "TargetNotReached"


class CampaignExpired(LaunchError):
    """Raised when contributing to a campaign past its refund deadline."""

    kind = "CampaignExpired"


class RefundNotAvailable(LaunchError):
    """Raised when a refund is requested while the campaign is not expired."""

    kind = "RefundNotAvailable"


class UnrecoverableStateError(LaunchError):
    """Raised when bookkeeping fails after an external transfer succeeded.

    The external transfer cannot be reversed by the engine. Operators must
    reconcile custody balances against the audit log by hand.
    """

    kind = "UnrecoverableStateError"
