"""
Cross-chain bridge and custodial vault.

Outbound: ``CrossChainBridge.exit`` locks the bridged amount in the vault and
records an ``ExitRequest`` that relayers pick up by sequence number.
Inbound: ``CrossChainBridge.enter`` releases vault funds to the recipient of
a transfer whose destination is this chain. Each inbound (source chain,
nonce) pair is processed at most once.
"""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set, Tuple

from .defi.access_control import AccessControl, Role
from .exceptions import InvalidAsset, InvalidChain, Unauthorized
from .safe_math import SafeMath
from .storage import is_null_address, normalize_address

if TYPE_CHECKING:
    from .contracts.erc20 import TokenRegistry

logger = logging.getLogger(__name__)


def _derive_address(label: str) -> str:
    digest = hashlib.sha3_256(label.encode()).digest()
    return f"0x{digest[-20:].hex()}"


class CustodialVault:
    """
    Holds bridged funds under its own address in the token registry.

    Only the gateway (the bridge) may move funds in or out.
    """

    def __init__(self, gateway: str, tokens: "TokenRegistry", address: str = "") -> None:
        if is_null_address(gateway):
            raise ValueError("Vault gateway cannot be the null address.")
        self.gateway = normalize_address(gateway)
        self.tokens = tokens
        self.address = normalize_address(address) or _derive_address(f"vault:{self.gateway}")

    def deposit(self, caller: str, asset: str, from_addr: str, amount: int) -> int:
        """Pull ``amount`` from ``from_addr`` (which approved the gateway). Returns the vault balance."""
        self._require_gateway(caller, "deposit")
        SafeMath.require_positive(amount)
        self.tokens.transfer_from(asset, self.gateway, from_addr, self.address, amount)
        return self.balance_of(asset)

    def withdraw(self, caller: str, asset: str, to_addr: str, amount: int) -> int:
        self._require_gateway(caller, "withdraw")
        SafeMath.require_positive(amount)
        self.tokens.transfer(asset, self.address, to_addr, amount)
        return self.balance_of(asset)

    def balance_of(self, asset: str) -> int:
        return self.tokens.balance_of(asset, self.address)

    def _require_gateway(self, caller: str, action: str) -> None:
        if normalize_address(caller) != self.gateway:
            logger.warning(
                "Unauthorized vault access",
                extra={"event": "vault.unauthorized", "caller": normalize_address(caller)[:10], "action": action},
            )
            raise Unauthorized(caller, action)


@dataclass(frozen=True)
class ExitRequest:
    sequence: int
    caller: str
    asset_in: str
    asset_out: str
    from_addr: str
    to_addr: str
    source_chain: str
    dest_chain: str
    amount: int
    timestamp: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class CrossChainBridge:
    """
    Bridge endpoint for one chain.

    If an ``AccessControl`` is supplied, inbound releases require the
    OPERATOR role (the relayer).
    """

    def __init__(
        self,
        chain_id: Any,
        tokens: "TokenRegistry",
        vault: Optional[CustodialVault] = None,
        address: str = "",
        access: Optional[AccessControl] = None,
    ) -> None:
        self.chain_id = str(chain_id)
        if not self.chain_id:
            raise ValueError("Chain id cannot be empty.")
        self.tokens = tokens
        self.address = normalize_address(address) or _derive_address(f"bridge:{self.chain_id}")
        self.vault = vault if vault is not None else CustodialVault(self.address, tokens)
        if self.vault.gateway != self.address:
            raise ValueError("Vault gateway must be the bridge address.")
        self.access = access
        self.exits: List[ExitRequest] = []
        self.next_sequence = 1
        self.processed: Set[Tuple[str, int]] = set()

    def exit(
        self,
        caller: str,
        asset_in: str,
        asset_out: str,
        from_addr: str,
        to_addr: str,
        source_chain: Any,
        dest_chain: Any,
        amount: int,
    ) -> ExitRequest:
        """
        Lock ``amount`` of ``asset_in`` from ``caller`` in the vault for release
        on ``dest_chain``.

        Raises:
            InvalidChain: source is not this chain, or destination is this chain
            InvalidAsset: null asset or recipient
            TransferFailed: caller did not approve the bridge for ``amount``
        """
        source, dest = str(source_chain), str(dest_chain)
        if source != self.chain_id:
            raise InvalidChain(source, expected=self.chain_id)
        if not dest or dest == self.chain_id:
            raise InvalidChain(dest)
        if is_null_address(asset_in) or is_null_address(asset_out):
            raise InvalidAsset(asset_in if is_null_address(asset_in) else asset_out, "asset cannot be null")
        if is_null_address(to_addr):
            raise InvalidAsset(to_addr, "recipient cannot be null")

        self.vault.deposit(self.address, asset_in, caller, amount)

        request = ExitRequest(
            sequence=self.next_sequence,
            caller=normalize_address(caller),
            asset_in=normalize_address(asset_in),
            asset_out=normalize_address(asset_out),
            from_addr=normalize_address(from_addr),
            to_addr=normalize_address(to_addr),
            source_chain=source,
            dest_chain=dest,
            amount=amount,
            timestamp=time.time(),
        )
        self.exits.append(request)
        self.next_sequence += 1

        logger.info(
            "Bridge exit recorded",
            extra={
                "event": "bridge.exit",
                "sequence": request.sequence,
                "asset": request.asset_in[:10],
                "dest_chain": dest,
                "amount": amount,
            },
        )
        return request

    def enter(
        self,
        caller: str,
        asset: str,
        to_addr: str,
        amount: int,
        source_chain: Any,
        dest_chain: Any,
        nonce: int,
    ) -> int:
        """
        Release vault funds for an inbound transfer. Returns the vault balance left.

        Raises:
            Unauthorized: caller lacks the OPERATOR role
            InvalidChain: destination is not this chain, or source is this chain
            ValueError: (source_chain, nonce) was already processed
        """
        if self.access is not None:
            self.access.require_role(Role.OPERATOR.value, caller, "bridge_enter")
        source, dest = str(source_chain), str(dest_chain)
        if dest != self.chain_id:
            raise InvalidChain(dest, expected=self.chain_id)
        if source == self.chain_id:
            raise InvalidChain(source)
        key = (source, nonce)
        if key in self.processed:
            raise ValueError(f"Inbound transfer {source}:{nonce} already processed")

        remaining = self.vault.withdraw(self.address, asset, to_addr, amount)
        self.processed.add(key)

        logger.info(
            "Bridge entry released",
            extra={
                "event": "bridge.enter",
                "asset": normalize_address(asset)[:10],
                "source_chain": source,
                "nonce": nonce,
                "amount": amount,
            },
        )
        return remaining

    def pending_exits(self, after_sequence: int = 0) -> List[ExitRequest]:
        return [r for r in self.exits if r.sequence > after_sequence]

    def snapshot(self) -> Tuple[int, int, frozenset]:
        return len(self.exits), self.next_sequence, frozenset(self.processed)

    def restore(self, snapshot: Tuple[int, int, frozenset]) -> None:
        count, next_sequence, processed = snapshot
        del self.exits[count:]
        self.next_sequence = next_sequence
        self.processed = set(processed)
