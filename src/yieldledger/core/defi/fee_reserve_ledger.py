"""
Fee/Reserve Ledger for the fixed-ratio stablecoin exchange.

Tracks, per asset, the reserve available to the exchange and the lifetime
fee income collected on it, plus the fee schedule of each ordered asset pair.

Exchange rule (not a constant-product curve):
    in_fee     = amount_in * policy.in_fee  / 1e18
    out_fee    = amount_in * policy.out_fee / 1e18
    amount_out = amount_in - out_fee

The per-asset fee accumulator only ever grows; it is the income source the
reward ledger distributes to stakers. Once a reward recipient is registered,
every fee is also moved out of the reserve to that recipient in the same
operation that accrues it, so reported income always arrives with its tokens.

State layout (namespaces in the shared ``PersistentStore``):
    swap.reserve      (asset)              -> reserve
    swap.fee          (asset)              -> lifetime accumulated fee
    swap.policy.in    (asset_in, asset_out) -> in-fee rate
    swap.policy.out   (asset_in, asset_out) -> out-fee rate
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

from .. import events as ev
from ..events import EventLog
from ..exceptions import (
    BridgeNotConfigured,
    FeeTooHigh,
    InsufficientReserve,
    InvalidAsset,
)
from ..protocols import ISnapshottable
from ..safe_math import WAD, SafeMath
from ..storage import PersistentStore, is_null_address, normalize_address, slot_key
from .access_control import AccessControl

if TYPE_CHECKING:
    from ..contracts.erc20 import TokenRegistry
    from ..metrics import LedgerMetrics
    from ..protocols import IBridge

logger = logging.getLogger(__name__)

RESERVE_NS = "swap.reserve"
FEE_NS = "swap.fee"
POLICY_IN_NS = "swap.policy.in"
POLICY_OUT_NS = "swap.policy.out"

SWAP_SELECTORS = {
    "setFeePolicy(address,address,uint256,uint256)": "set_fee_policy",
    "swap(address,address,uint256,address)": "swap",
    "crossChainSwap(address,address,uint256,address,uint256,uint256)": "cross_chain_swap",
    "getAccumulatedFees(address,address)": "get_accumulated_fees",
    "getAccumulatedFee(address)": "get_accumulated_fee",
    "getReserve(address)": "get_reserve",
    "addLiquidity(address,uint256)": "add_liquidity",
    "setBridge(address)": "set_bridge",
    "setRewardRecipient(address)": "set_reward_recipient",
}


@dataclass(frozen=True)
class FeePolicy:
    """Fee rates for one ordered asset pair, 1e18 = 100%."""
    in_fee: int = 0
    out_fee: int = 0


@dataclass(frozen=True)
class ReserveEntry:
    reserve: int = 0
    accumulated_fee: int = 0


@dataclass(frozen=True)
class SwapResult:
    amount_out: int
    in_fee: int
    out_fee: int


@dataclass(frozen=True)
class CrossChainSwapResult:
    amount_bridged: int
    in_fee: int
    exit_receipt: Any = None


class FeeReserveLedger:
    """
    Reserve and fee bookkeeping for the swap side of the platform.

    Every mutating operation is all-or-nothing: it runs inside a store
    transaction that also covers token balances and the event log.
    """

    SELECTORS = SWAP_SELECTORS

    def __init__(
        self,
        store: PersistentStore,
        tokens: "TokenRegistry",
        access: AccessControl,
        address: str = "0xswap-ledger",
        bridge: Optional["IBridge"] = None,
        events: Optional[EventLog] = None,
        metrics: Optional["LedgerMetrics"] = None,
        max_fee_rate: int = WAD,
    ) -> None:
        if is_null_address(address):
            raise ValueError("Ledger address cannot be the null address.")
        if not 0 <= max_fee_rate <= WAD:
            raise ValueError("Max fee rate must be within [0, 1e18].")
        self.store = store
        self.tokens = tokens
        self.access = access
        self.address = normalize_address(address)
        self.bridge = bridge
        self.events = events if events is not None else EventLog()
        self.metrics = metrics
        self.max_fee_rate = max_fee_rate
        self.reward_recipient: Optional[str] = None

    # ==================== Admin ====================

    def set_fee_policy(
        self, caller: str, asset_a: str, asset_b: str, in_fee: int, out_fee: int
    ) -> Tuple[FeePolicy, FeePolicy]:
        """
        Set the fee schedule for a pair, symmetrically.

        (A -> B) gets (in_fee, out_fee); (B -> A) gets (out_fee, in_fee),
        since the fee charged entering one side is the fee charged exiting
        the other.
        """
        self.access.require_admin(caller, "set_fee_policy")
        a, b = self._require_asset(asset_a), self._require_asset(asset_b)
        for fee in (in_fee, out_fee):
            SafeMath.require_uint256(fee)
            if fee > self.max_fee_rate:
                raise FeeTooHigh(fee, self.max_fee_rate)

        with self.store.transaction(self.events):
            self.store.set(slot_key(POLICY_IN_NS, a, b), in_fee)
            self.store.set(slot_key(POLICY_OUT_NS, a, b), out_fee)
            self.store.set(slot_key(POLICY_IN_NS, b, a), out_fee)
            self.store.set(slot_key(POLICY_OUT_NS, b, a), in_fee)
            self.events.emit(
                ev.TOKEN_PAIR_FEES_SET, a, normalize_address(caller),
                asset_b=b, in_fee=in_fee, out_fee=out_fee,
            )

        logger.info(
            "Token pair fees set",
            extra={
                "event": "swap.fees_set",
                "asset_a": a[:10],
                "asset_b": b[:10],
                "in_fee": in_fee,
                "out_fee": out_fee,
            },
        )
        return FeePolicy(in_fee, out_fee), FeePolicy(out_fee, in_fee)

    def set_bridge(self, caller: str, bridge: Optional["IBridge"]) -> None:
        """Register (or clear, with None) the cross-chain bridge collaborator."""
        self.access.require_admin(caller, "set_bridge")
        self.bridge = bridge
        self.events.emit(
            ev.BRIDGE_CONFIGURED, "", normalize_address(caller),
            chain_id=getattr(bridge, "chain_id", None),
        )
        logger.info(
            "Bridge configured",
            extra={"event": "swap.bridge_set", "chain_id": getattr(bridge, "chain_id", None)},
        )

    def set_reward_recipient(self, caller: str, recipient: Optional[str]) -> None:
        """
        Route accrued fees to ``recipient`` (normally the reward ledger).

        Only fees accrued after registration are forwarded. None stops
        forwarding and leaves further fees in the reserve.
        """
        self.access.require_admin(caller, "set_reward_recipient")
        if recipient is not None and is_null_address(recipient):
            raise InvalidAsset(recipient, "reward recipient cannot be null")
        self.reward_recipient = normalize_address(recipient) if recipient is not None else None
        self.events.emit(
            ev.REWARD_RECIPIENT_SET, "", normalize_address(caller),
            recipient=self.reward_recipient,
        )
        logger.info(
            "Reward recipient configured",
            extra={"event": "swap.reward_recipient_set", "recipient": self.reward_recipient},
        )

    def add_liquidity(self, caller: str, asset: str, amount: int) -> int:
        """Seed an asset's reserve from the admin's balance. Returns the new reserve."""
        self.access.require_admin(caller, "add_liquidity")
        asset_norm = self._require_asset(asset)
        SafeMath.require_positive(amount)

        with self.store.transaction(self.tokens, self.events):
            new_reserve = self.store.increase(slot_key(RESERVE_NS, asset_norm), amount)
            self.tokens.transfer_from(asset_norm, self.address, caller, self.address, amount)
            self.events.emit(
                ev.LIQUIDITY_ADDED, asset_norm, normalize_address(caller),
                amount=amount, reserve=new_reserve,
            )

        if self.metrics:
            self.metrics.reserves.labels(asset=asset_norm).set(new_reserve)
        logger.info(
            "Liquidity added",
            extra={"event": "swap.liquidity_added", "asset": asset_norm[:10], "amount": amount},
        )
        return new_reserve

    # ==================== Swaps ====================

    def swap(
        self, caller: str, asset_in: str, asset_out: str, amount_in: int, recipient: str
    ) -> SwapResult:
        """
        Exchange ``amount_in`` of ``asset_in`` for ``asset_out`` at 1:1 minus fees.

        Raises:
            InvalidAsset: null or identical assets
            InvalidAmount: zero amount
            InsufficientReserve: amount_out exceeds the reserve of asset_out
            TransferFailed: caller allowance/balance or recipient problems
        """
        a_in, a_out = self._require_pair(asset_in, asset_out)
        SafeMath.require_positive(amount_in)
        if is_null_address(recipient):
            raise InvalidAsset(recipient, "recipient cannot be null")

        try:
            with self.store.transaction(self.tokens, self.events):
                policy = self.get_fee_policy(a_in, a_out)
                in_fee = SafeMath.wad_mul(amount_in, policy.in_fee)
                out_fee = SafeMath.wad_mul(amount_in, policy.out_fee)
                amount_out = SafeMath.safe_sub(amount_in, out_fee)

                # A forwarded out-fee leaves the reserve along with amount_out.
                required = amount_out
                if self.reward_recipient is not None:
                    required = SafeMath.safe_add(amount_out, out_fee)
                reserve_key = slot_key(RESERVE_NS, a_out)
                available = self.store.get(reserve_key)
                if required > available:
                    raise InsufficientReserve(a_out, required, available)

                self.store.increase(slot_key(FEE_NS, a_in), in_fee)
                self.store.increase(slot_key(FEE_NS, a_out), out_fee)
                self.store.increase(slot_key(RESERVE_NS, a_in), amount_in)
                self.store.decrease(reserve_key, amount_out)

                self.tokens.transfer_from(a_in, self.address, caller, self.address, amount_in)
                self.tokens.transfer(a_out, self.address, recipient, amount_out)
                self._forward_fee(a_in, in_fee)
                self._forward_fee(a_out, out_fee)

                self.events.emit(
                    ev.SWAP_EXECUTED, a_in, normalize_address(caller),
                    asset_out=a_out,
                    recipient=normalize_address(recipient),
                    amount_in=amount_in,
                    amount_out=amount_out,
                    in_fee=in_fee,
                    out_fee=out_fee,
                )
        except Exception as exc:
            self._record_failure("swap", exc)
            raise

        if self.metrics:
            self.metrics.swaps_total.labels(asset_in=a_in, asset_out=a_out, kind="local").inc()
            self.metrics.swap_volume.labels(asset=a_in).inc(amount_in)
            self.metrics.fees_collected.labels(asset=a_in).inc(in_fee)
            self.metrics.fees_collected.labels(asset=a_out).inc(out_fee)
            self.metrics.reserves.labels(asset=a_in).set(self.get_reserve(a_in))
            self.metrics.reserves.labels(asset=a_out).set(self.get_reserve(a_out))

        logger.info(
            "Swap executed",
            extra={
                "event": "swap.executed",
                "asset_in": a_in[:10],
                "asset_out": a_out[:10],
                "amount_in": amount_in,
                "amount_out": amount_out,
                "in_fee": in_fee,
                "out_fee": out_fee,
            },
        )
        return SwapResult(amount_out=amount_out, in_fee=in_fee, out_fee=out_fee)

    def cross_chain_swap(
        self,
        caller: str,
        asset_in: str,
        asset_out: str,
        amount_in: int,
        recipient: str,
        source_chain: str,
        dest_chain: str,
    ) -> CrossChainSwapResult:
        """
        Swap whose output leg is settled on another chain by the bridge.

        Only the input-side fee is charged here; the remaining
        ``amount_in - in_fee`` is handed to the bridge as an exit request.
        """
        if self.bridge is None:
            raise BridgeNotConfigured()
        a_in, a_out = self._require_pair(asset_in, asset_out)
        SafeMath.require_positive(amount_in)
        if is_null_address(recipient):
            raise InvalidAsset(recipient, "recipient cannot be null")

        participants = [self.tokens, self.events]
        if isinstance(self.bridge, ISnapshottable):
            participants.append(self.bridge)

        try:
            with self.store.transaction(*participants):
                policy = self.get_fee_policy(a_in, a_out)
                in_fee = SafeMath.wad_mul(amount_in, policy.in_fee)
                amount_bridged = SafeMath.safe_sub(amount_in, in_fee)

                self.store.increase(slot_key(FEE_NS, a_in), in_fee)
                self.store.increase(slot_key(RESERVE_NS, a_in), in_fee)

                self.tokens.transfer_from(a_in, self.address, caller, self.address, amount_in)
                self.tokens.approve(a_in, self.address, self.bridge.address, amount_bridged)
                receipt = self.bridge.exit(
                    self.address,
                    a_in,
                    a_out,
                    normalize_address(caller),
                    normalize_address(recipient),
                    source_chain,
                    dest_chain,
                    amount_bridged,
                )
                self._forward_fee(a_in, in_fee)

                self.events.emit(
                    ev.SWAP_TO_OTHER_CHAIN, a_in, normalize_address(caller),
                    asset_out=a_out,
                    recipient=normalize_address(recipient),
                    source_chain=source_chain,
                    dest_chain=dest_chain,
                    amount_in=amount_in,
                    amount_bridged=amount_bridged,
                    in_fee=in_fee,
                )
        except Exception as exc:
            self._record_failure("cross_chain_swap", exc)
            raise

        if self.metrics:
            self.metrics.swaps_total.labels(asset_in=a_in, asset_out=a_out, kind="cross_chain").inc()
            self.metrics.swap_volume.labels(asset=a_in).inc(amount_in)
            self.metrics.fees_collected.labels(asset=a_in).inc(in_fee)

        logger.info(
            "Swap to other chain",
            extra={
                "event": "swap.cross_chain",
                "asset_in": a_in[:10],
                "dest_chain": dest_chain,
                "amount_bridged": amount_bridged,
                "in_fee": in_fee,
            },
        )
        return CrossChainSwapResult(amount_bridged=amount_bridged, in_fee=in_fee, exit_receipt=receipt)

    # ==================== Views ====================

    def get_fee_policy(self, asset_in: str, asset_out: str) -> FeePolicy:
        a_in, a_out = normalize_address(asset_in), normalize_address(asset_out)
        return FeePolicy(
            in_fee=self.store.get(slot_key(POLICY_IN_NS, a_in, a_out)),
            out_fee=self.store.get(slot_key(POLICY_OUT_NS, a_in, a_out)),
        )

    def get_reserve(self, asset: str) -> int:
        return self.store.get(slot_key(RESERVE_NS, asset))

    def get_accumulated_fee(self, asset: str) -> int:
        """Lifetime fee income of one asset; never decreases."""
        return self.store.get(slot_key(FEE_NS, asset))

    def get_accumulated_fees(self, asset_a: str, asset_b: str) -> Tuple[int, int]:
        """Lifetime fee accumulators of two assets (per asset, not per direction)."""
        return self.get_accumulated_fee(asset_a), self.get_accumulated_fee(asset_b)

    def get_reserve_entry(self, asset: str) -> ReserveEntry:
        return ReserveEntry(
            reserve=self.get_reserve(asset),
            accumulated_fee=self.get_accumulated_fee(asset),
        )

    def to_dict(self, *assets: str) -> Dict[str, Any]:
        return {
            "address": self.address,
            "bridge_chain_id": getattr(self.bridge, "chain_id", None),
            "assets": {
                normalize_address(a): {
                    "reserve": self.get_reserve(a),
                    "accumulated_fee": self.get_accumulated_fee(a),
                }
                for a in assets
            },
        }

    # ==================== Helpers ====================

    def _require_asset(self, asset: str) -> str:
        if is_null_address(asset):
            raise InvalidAsset(asset, "asset cannot be null")
        return normalize_address(asset)

    def _require_pair(self, asset_in: str, asset_out: str) -> Tuple[str, str]:
        a_in, a_out = self._require_asset(asset_in), self._require_asset(asset_out)
        if a_in == a_out:
            raise InvalidAsset(asset_in, "input and output assets are identical")
        return a_in, a_out

    def _forward_fee(self, asset: str, fee: int) -> None:
        if self.reward_recipient is None or fee == 0:
            return
        self.store.decrease(slot_key(RESERVE_NS, asset), fee)
        self.tokens.transfer(asset, self.address, self.reward_recipient, fee)

    def _record_failure(self, operation: str, exc: Exception) -> None:
        if self.metrics:
            self.metrics.failed_operations.labels(operation=operation, error=type(exc).__name__).inc()
