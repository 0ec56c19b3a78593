"""
yieldledger - Fee, Reserve and Reward Accounting Core

Ledger accounting for a fixed-ratio stablecoin exchange and its staking
rewards:

Main Components:
- Fee/Reserve Ledger: per-asset reserves, pairwise fee schedules and the
  lifetime fee income of each asset
- Reward Ledger: per-asset staking with cumulative-index reward distribution
- Persistent Store: hash-addressed integer slots with atomic transactions
- Bridge: cross-chain exits and custodial vault
"""

__version__ = "0.1.0"
__author__ = "yieldledger Development Team"

__all__ = []
