"""Fairlaunch — crowdfunding-to-liquidity bootstrap engine.

Contributors fund a campaign in the base resource. A campaign that reaches
its target is finalized: a protocol fee is taken, a liquidity pool is
seeded with half the token supply and the remaining resource, and the
other half of the supply is distributed pro rata. A campaign that misses
its target past the refund window lets contributors reclaim their funds.
"""

__version__ = "0.1.0"
