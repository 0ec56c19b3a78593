"""
yieldledger DeFi ledgers.

This module provides the two ledgers of the platform:
- Fee/Reserve Ledger: fixed-ratio swaps with pairwise fee schedules
- Reward Ledger: staking rewards distributed through a cumulative index
- Access Control: single-admin permission gate
"""

from .access_control import AccessControl, Role
from .fee_reserve_ledger import (
    CrossChainSwapResult,
    FeePolicy,
    FeeReserveLedger,
    ReserveEntry,
    SwapResult,
)
from .reward_ledger import AssetPool, RewardLedger, StakePosition

__all__ = [
    # Access control
    "AccessControl",
    "Role",
    # Fee/Reserve
    "FeeReserveLedger",
    "FeePolicy",
    "ReserveEntry",
    "SwapResult",
    "CrossChainSwapResult",
    # Rewards
    "RewardLedger",
    "AssetPool",
    "StakePosition",
]
