"""
Checked uint256 arithmetic and 1e18 fixed-point helpers.

All ledger quantities are non-negative integers bounded by 2**256 - 1.
Fixed-point fractions (fee rates, the cumulative reward index, user share)
are scaled by WAD = 1e18, so 1e18 means 1.0 (100%).
"""

from __future__ import annotations

from .exceptions import InvalidAmount, MathError

MAX_UINT256 = 2**256 - 1
WAD = 10**18


class SafeMath:
    """Overflow/underflow-checked integer helpers."""

    @staticmethod
    def safe_add(a: int, b: int, max_value: int = MAX_UINT256) -> int:
        result = a + b
        if result > max_value:
            raise MathError(
                f"SafeMath: addition overflow ({a} + {b})",
                details={"a": a, "b": b, "max_value": max_value},
            )
        return result

    @staticmethod
    def safe_sub(a: int, b: int) -> int:
        if b > a:
            raise MathError(
                f"SafeMath: subtraction underflow ({a} - {b})",
                details={"a": a, "b": b},
            )
        return a - b

    @staticmethod
    def safe_mul(a: int, b: int) -> int:
        result = a * b
        if result > MAX_UINT256:
            raise MathError(
                "SafeMath: multiplication overflow",
                details={"a": a, "b": b},
            )
        return result

    @staticmethod
    def safe_div(a: int, b: int) -> int:
        if b == 0:
            raise MathError("SafeMath: division by zero", details={"a": a})
        return a // b

    @staticmethod
    def mul_div(a: int, b: int, denominator: int) -> int:
        """floor(a * b / denominator) with a checked uint256 product."""
        return SafeMath.safe_div(SafeMath.safe_mul(a, b), denominator)

    @staticmethod
    def wad_mul(a: int, b: int) -> int:
        """floor(a * b / 1e18)."""
        return SafeMath.mul_div(a, b, WAD)

    @staticmethod
    def wad_div(a: int, b: int) -> int:
        """floor(a * 1e18 / b)."""
        return SafeMath.mul_div(a, WAD, b)

    @staticmethod
    def require_uint256(value: int) -> int:
        if not isinstance(value, int) or isinstance(value, bool):
            raise InvalidAmount(value, "amount must be an integer")
        if value < 0 or value > MAX_UINT256:
            raise InvalidAmount(value, "amount outside uint256 range")
        return value

    @staticmethod
    def require_positive(value: int) -> int:
        SafeMath.require_uint256(value)
        if value == 0:
            raise InvalidAmount(value)
        return value
