"""
ERC20-style asset transfer capability.

The ledgers never move balances themselves; they call an asset-transfer
capability with transfer / transferFrom / approve semantics. This module
provides the in-process implementation:

- ``ERC20Token``: balances, allowances, mint/burn and Transfer/Approval events
- ``TokenRegistry``: asset address -> token, exposing the asset-keyed
  transfer interface the ledgers consume

Every failure raises ``TransferFailed`` so the enclosing ledger operation is
aborted and rolled back. The registry takes part in store transactions.
"""

from __future__ import annotations

import copy
import hashlib
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List

from ..exceptions import InvalidAsset, TransferFailed
from ..safe_math import MAX_UINT256
from ..storage import ZERO_ADDRESS, is_null_address, normalize_address

logger = logging.getLogger(__name__)


@dataclass
class TokenEvent:
    """Represents an ERC20 event."""

    event_type: str  # "Transfer" or "Approval"
    from_address: str
    to_address: str
    value: int
    timestamp: float = field(default_factory=time.time)


@dataclass
class ERC20Token:
    """
    Fungible token with 256-bit balances.

    Security considerations:
    - Zero address checks on recipients and spenders
    - Balance and allowance underflow prevention
    - Unlimited allowance (UINT256_MAX) is never decremented
    """

    name: str
    symbol: str
    decimals: int = 18
    total_supply: int = 0
    address: str = ""
    owner: str = ""

    balances: Dict[str, int] = field(default_factory=dict)
    allowances: Dict[str, Dict[str, int]] = field(default_factory=dict)
    events: List[TokenEvent] = field(default_factory=list)

    UINT256_MAX: int = MAX_UINT256

    def __post_init__(self) -> None:
        if not self.address:
            addr_hash = hashlib.sha3_256(f"{self.name}:{self.symbol}".encode()).digest()
            self.address = f"0x{addr_hash[-20:].hex()}"
        self.address = normalize_address(self.address)
        self.owner = normalize_address(self.owner)

    # ==================== View Functions ====================

    def balance_of(self, account: str) -> int:
        return self.balances.get(normalize_address(account), 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get(normalize_address(owner), {}).get(normalize_address(spender), 0)

    # ==================== State-Changing Functions ====================

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        """
        Move ``amount`` from sender to recipient.

        Raises:
            TransferFailed: zero recipient, bad amount or insufficient balance
        """
        sender_norm = normalize_address(sender)
        recipient_norm = normalize_address(recipient)
        self._validate_address(recipient_norm, "recipient")
        self._validate_amount(amount)

        sender_balance = self.balances.get(sender_norm, 0)
        if sender_balance < amount:
            raise TransferFailed(
                self.address,
                f"transfer amount exceeds balance ({amount} > {sender_balance})",
            )

        self._move(sender_norm, recipient_norm, amount)
        logger.debug(
            "ERC20 transfer",
            extra={
                "event": "erc20.transfer",
                "token": self.symbol,
                "from": sender_norm[:10],
                "to": recipient_norm[:10],
                "amount": amount,
            },
        )
        return True

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        owner_norm = normalize_address(owner)
        spender_norm = normalize_address(spender)
        self._validate_address(spender_norm, "spender")
        self._validate_amount(amount)

        self.allowances.setdefault(owner_norm, {})[spender_norm] = amount
        self.events.append(TokenEvent("Approval", owner_norm, spender_norm, amount))
        return True

    def transfer_from(self, spender: str, from_addr: str, to_addr: str, amount: int) -> bool:
        """
        Move ``amount`` from ``from_addr`` using the spender's allowance.

        Raises:
            TransferFailed: insufficient allowance or balance
        """
        spender_norm = normalize_address(spender)
        from_norm = normalize_address(from_addr)
        to_norm = normalize_address(to_addr)
        self._validate_address(to_norm, "recipient")
        self._validate_amount(amount)

        current_allowance = self.allowance(from_norm, spender_norm)
        if current_allowance < amount:
            raise TransferFailed(
                self.address,
                f"insufficient allowance ({current_allowance} < {amount})",
            )
        from_balance = self.balances.get(from_norm, 0)
        if from_balance < amount:
            raise TransferFailed(
                self.address,
                f"transfer amount exceeds balance ({amount} > {from_balance})",
            )

        if current_allowance != self.UINT256_MAX:
            self.allowances[from_norm][spender_norm] = current_allowance - amount
        self._move(from_norm, to_norm, amount)
        return True

    # ==================== Minting & Burning ====================

    def mint(self, minter: str, to: str, amount: int) -> bool:
        """Mint new tokens (owner only)."""
        if self.owner and normalize_address(minter) != self.owner:
            raise TransferFailed(self.address, "caller is not owner")
        to_norm = normalize_address(to)
        self._validate_address(to_norm, "recipient")
        self._validate_amount(amount)
        if self.total_supply + amount > self.UINT256_MAX:
            raise TransferFailed(self.address, "mint would overflow total supply")

        self.total_supply += amount
        self.balances[to_norm] = self.balances.get(to_norm, 0) + amount
        self.events.append(TokenEvent("Transfer", ZERO_ADDRESS, to_norm, amount))
        logger.info(
            "ERC20 mint",
            extra={
                "event": "erc20.mint",
                "token": self.symbol,
                "to": to_norm[:10],
                "amount": amount,
                "new_supply": self.total_supply,
            },
        )
        return True

    def burn(self, holder: str, amount: int) -> bool:
        holder_norm = normalize_address(holder)
        self._validate_amount(amount)
        balance = self.balances.get(holder_norm, 0)
        if balance < amount:
            raise TransferFailed(self.address, f"burn amount exceeds balance ({amount} > {balance})")

        self.balances[holder_norm] = balance - amount
        self.total_supply -= amount
        self.events.append(TokenEvent("Transfer", holder_norm, ZERO_ADDRESS, amount))
        return True

    # ==================== Helpers ====================

    def _move(self, from_norm: str, to_norm: str, amount: int) -> None:
        self.balances[from_norm] = self.balances.get(from_norm, 0) - amount
        self.balances[to_norm] = self.balances.get(to_norm, 0) + amount
        self.events.append(TokenEvent("Transfer", from_norm, to_norm, amount))

    def _validate_address(self, address: str, role: str) -> None:
        if is_null_address(address):
            raise TransferFailed(self.address, f"{role} is zero address")

    def _validate_amount(self, amount: int) -> None:
        if not isinstance(amount, int) or isinstance(amount, bool):
            raise TransferFailed(self.address, "amount must be an integer")
        if amount < 0:
            raise TransferFailed(self.address, "amount cannot be negative")
        if amount > self.UINT256_MAX:
            raise TransferFailed(self.address, "amount exceeds uint256")

    # ==================== Serialization ====================

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "symbol": self.symbol,
            "decimals": self.decimals,
            "total_supply": self.total_supply,
            "address": self.address,
            "owner": self.owner,
            "balances": dict(self.balances),
            "allowances": {k: dict(v) for k, v in self.allowances.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "ERC20Token":
        token = cls(
            name=data["name"],
            symbol=data["symbol"],
            decimals=data.get("decimals", 18),
            total_supply=data.get("total_supply", 0),
            address=data.get("address", ""),
            owner=data.get("owner", ""),
        )
        token.balances = dict(data.get("balances", {}))
        token.allowances = {k: dict(v) for k, v in data.get("allowances", {}).items()}
        return token


class TokenRegistry:
    """
    Asset-keyed transfer capability over a set of deployed tokens.

    Implements ``IAssetTransfer`` and ``ISnapshottable``.
    """

    def __init__(self) -> None:
        self.tokens: Dict[str, ERC20Token] = {}

    def create_token(
        self,
        creator: str,
        name: str,
        symbol: str,
        decimals: int = 18,
        initial_supply: int = 0,
        mint_to: str | None = None,
        address: str = "",
    ) -> ERC20Token:
        if not name or not symbol:
            raise ValueError("Token name and symbol cannot be empty.")
        if decimals < 0 or decimals > 18:
            raise ValueError("Token decimals must be between 0 and 18.")

        token = ERC20Token(name=name, symbol=symbol, decimals=decimals, owner=creator, address=address)
        if token.address in self.tokens:
            raise ValueError(f"Token {token.address} already deployed.")
        if initial_supply > 0:
            token.mint(creator, mint_to or creator, initial_supply)
        self.tokens[token.address] = token

        logger.info(
            "ERC20 token created",
            extra={
                "event": "erc20.created",
                "address": token.address,
                "symbol": symbol,
                "initial_supply": initial_supply,
                "creator": normalize_address(creator)[:10],
            },
        )
        return token

    def get_token(self, asset: str) -> ERC20Token:
        token = self.tokens.get(normalize_address(asset))
        if token is None:
            raise InvalidAsset(asset, "unknown asset")
        return token

    def transfer(self, asset: str, sender: str, recipient: str, amount: int) -> bool:
        return self.get_token(asset).transfer(sender, recipient, amount)

    def transfer_from(
        self, asset: str, spender: str, from_addr: str, to_addr: str, amount: int
    ) -> bool:
        return self.get_token(asset).transfer_from(spender, from_addr, to_addr, amount)

    def approve(self, asset: str, owner: str, spender: str, amount: int) -> bool:
        return self.get_token(asset).approve(owner, spender, amount)

    def balance_of(self, asset: str, account: str) -> int:
        return self.get_token(asset).balance_of(account)

    def allowance(self, asset: str, owner: str, spender: str) -> int:
        return self.get_token(asset).allowance(owner, spender)

    def snapshot(self) -> Dict[str, tuple]:
        return {
            address: (
                token.total_supply,
                dict(token.balances),
                copy.deepcopy(token.allowances),
                len(token.events),
                token,
            )
            for address, token in self.tokens.items()
        }

    def restore(self, snapshot: Dict[str, tuple]) -> None:
        # Restore in place so callers holding token references see the rollback.
        restored: Dict[str, ERC20Token] = {}
        for address, (supply, balances, allowances, event_count, token) in snapshot.items():
            token.total_supply = supply
            token.balances = dict(balances)
            token.allowances = copy.deepcopy(allowances)
            del token.events[event_count:]
            restored[address] = token
        self.tokens = restored
