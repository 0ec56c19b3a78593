"""
Ledger-specific exception hierarchy for yieldledger.

Every failure inside the accounting core is raised as a typed, parameterized
exception so callers can tell causes apart without parsing message text.
Raising any of these inside an atomic operation rolls the whole operation
back (see ``PersistentStore.transaction``).
"""

from __future__ import annotations
from typing import Optional, Any, Dict


class LedgerError(Exception):
    """Base exception for all ledger errors.

    Attributes:
        message: Human-readable error description
        details: The offending values (asset, amount, caller, ...)
        recoverable: Whether the caller may retry the operation unchanged
    """

    recoverable = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        recoverable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if recoverable is not None:
            self.recoverable = recoverable


# ==================== Validation Errors ====================


class ValidationError(LedgerError):
    """Raised when operation arguments fail validation."""
    pass


class InvalidAsset(ValidationError):
    """Raised for a null asset, or identical input and output assets."""

    def __init__(self, asset: Any, reason: str = "invalid asset") -> None:
        super().__init__(f"{reason}: {asset!r}", details={"asset": asset, "reason": reason})
        self.asset = asset


class InvalidAmount(ValidationError):
    """Raised when a positive (or uint256-bounded) amount is required."""

    def __init__(self, amount: Any, reason: str = "amount must be positive") -> None:
        super().__init__(f"{reason}: {amount!r}", details={"amount": amount, "reason": reason})
        self.amount = amount


class FeeTooHigh(ValidationError):
    """Raised when a fee rate exceeds 100% (1e18)."""

    def __init__(self, fee: int, max_fee: int) -> None:
        super().__init__(
            f"fee rate {fee} exceeds maximum {max_fee}",
            details={"fee": fee, "max_fee": max_fee},
        )
        self.fee = fee
        self.max_fee = max_fee


class InvalidChain(ValidationError):
    """Raised when a bridge request names the wrong source or destination chain."""

    def __init__(self, chain_id: Any, expected: Any = None) -> None:
        super().__init__(
            f"invalid chain {chain_id!r} (expected {expected!r})",
            details={"chain_id": chain_id, "expected": expected},
        )
        self.chain_id = chain_id


# ==================== Balance Errors ====================


class InsufficientBalanceError(LedgerError):
    """Raised when a requested amount exceeds a tracked balance."""
    pass


class InsufficientStake(InsufficientBalanceError):
    """Raised when unstaking more than the caller's staked amount."""

    def __init__(self, requested: int, available: int, asset: str = "", user: str = "") -> None:
        super().__init__(
            f"unstake amount {requested} exceeds staked amount {available}",
            details={"requested": requested, "available": available, "asset": asset, "user": user},
        )
        self.requested = requested
        self.available = available


class InsufficientReserve(InsufficientBalanceError):
    """Raised when a swap would drive a reserve negative."""

    def __init__(self, asset: str, requested: int, available: int) -> None:
        super().__init__(
            f"reserve of {asset} is {available}, cannot pay out {requested}",
            details={"asset": asset, "requested": requested, "available": available},
        )
        self.asset = asset
        self.requested = requested
        self.available = available


class TransferFailed(LedgerError):
    """Raised when the external asset transfer capability rejects a movement."""

    def __init__(self, asset: str, reason: str) -> None:
        super().__init__(
            f"transfer of {asset} failed: {reason}",
            details={"asset": asset, "reason": reason},
        )
        self.asset = asset
        self.reason = reason


class MathError(LedgerError):
    """Raised on uint256 overflow, underflow or division by zero."""
    pass


# ==================== Configuration & Access Errors ====================


class Unauthorized(LedgerError):
    """Raised when an admin-gated or role-gated operation is called by the wrong caller."""

    def __init__(self, caller: str, action: str = "") -> None:
        super().__init__(
            f"caller {caller!r} is not authorized{' to ' + action if action else ''}",
            details={"caller": caller, "action": action},
        )
        self.caller = caller


class BridgeNotConfigured(LedgerError):
    """Raised when a cross-chain swap is attempted without a registered bridge."""

    def __init__(self) -> None:
        super().__init__("bridge is not configured")


class ImplementationNotFound(LedgerError):
    """Raised by the router when no module implements a selector."""

    def __init__(self, selector: str) -> None:
        super().__init__(
            f"no implementation registered for selector {selector}",
            details={"selector": selector},
        )
        self.selector = selector
