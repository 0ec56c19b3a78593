"""
yieldledger Core Module

Core functionality for the accounting platform including:
- Storage and persistence
- Swap fee and reserve bookkeeping
- Staking reward distribution
- Token transfers, call routing and bridging

This package contains the fundamental building blocks of yieldledger.
"""

__all__ = []
