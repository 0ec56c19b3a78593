"""
yieldledger contract standards.

- ERC20: fungible token standard and the asset-keyed token registry
- Router: selector-based dispatch to the ledger modules
"""

from .erc20 import ERC20Token, TokenRegistry
from .router import OperationRouter, RouteEntry, compute_selector

__all__ = [
    "ERC20Token",
    "TokenRegistry",
    "OperationRouter",
    "RouteEntry",
    "compute_selector",
]
