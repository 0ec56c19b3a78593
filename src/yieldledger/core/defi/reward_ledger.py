"""
Reward Ledger: per-asset staking with cumulative-index reward distribution.

Stakers of an asset share the income that accrues to that asset (the swap
fee accumulator of the fee/reserve ledger). Paying proportional rewards never
iterates over stakers. Instead each asset keeps a single growing index

    K += (income_delta * 1e18) / total_staked

and each position remembers the value of K at its last settlement. What a
position has earned since then is

    pending = (K_now - user_index) * staked_amount / 1e18

Settlement always happens before a position's stake changes, so new stake
never earns income that accrued before it was added, and withdrawn stake
stops earning immediately.

While nothing is staked the index is left alone and the unsettled income is
carried forward; the first refresh after stake returns distributes it.

State layout (namespaces in the shared ``PersistentStore``):
    reward.total_staked  (asset)        reward.user_staked  (asset, user)
    reward.index         (asset)        reward.user_index   (asset, user)
    reward.last_income   (asset)
    reward.total_claimed (asset)        reward.user_claimed (asset, user)

Rewards are paid in the staked asset out of the ledger's own balance, and
only out of the surplus above staked principal. When the income source is the
fee/reserve ledger, register this ledger as its reward recipient so that every
unit of reported income is delivered here as tokens.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional

from .. import events as ev
from ..events import EventLog
from ..exceptions import InsufficientStake, InvalidAsset, TransferFailed
from ..safe_math import SafeMath
from ..storage import PersistentStore, is_null_address, normalize_address, slot_key

if TYPE_CHECKING:
    from ..contracts.erc20 import TokenRegistry
    from ..metrics import LedgerMetrics
    from ..protocols import IIncomeSource

logger = logging.getLogger(__name__)

TOTAL_STAKED_NS = "reward.total_staked"
USER_STAKED_NS = "reward.user_staked"
INDEX_NS = "reward.index"
USER_INDEX_NS = "reward.user_index"
LAST_INCOME_NS = "reward.last_income"
TOTAL_CLAIMED_NS = "reward.total_claimed"
USER_CLAIMED_NS = "reward.user_claimed"

REWARD_SELECTORS = {
    "stake(address,uint256)": "stake",
    "unstake(address,uint256)": "unstake",
    "claimRewards(address)": "claim_rewards",
    "fundRewards(address,uint256)": "fund_rewards",
    "refreshPoolIndex(address)": "refresh_pool_index",
    "getTotalStakedAmount(address)": "get_total_staked",
    "getUserStakedAmount(address,address)": "get_user_staked",
    "getLastMineAmount(address)": "get_last_mine_amount",
    "getTotalK(address)": "get_total_k",
    "getUserK(address,address)": "get_user_k",
    "getTotalClaimedAmount(address)": "get_total_claimed",
    "getUserClaimedAmount(address,address)": "get_user_claimed",
    "getUserSharePercentage(address,address)": "get_user_share",
    "getPendingRewards(address,address)": "get_pending_rewards",
    "verifyConsistency(address)": "verify_consistency",
}


@dataclass(frozen=True)
class AssetPool:
    total_staked: int = 0
    cumulative_index: int = 0
    last_settled_income: int = 0
    total_claimed: int = 0


@dataclass(frozen=True)
class StakePosition:
    staked_amount: int = 0
    user_index: int = 0
    claimed_amount: int = 0


class RewardLedger:
    """
    Staking ledger distributing income through a cumulative per-share index.

    Every mutating operation runs inside a store transaction covering token
    balances and the event log, so a failure at any step leaves no trace.
    """

    SELECTORS = REWARD_SELECTORS

    def __init__(
        self,
        store: PersistentStore,
        tokens: "TokenRegistry",
        income_source: "IIncomeSource",
        address: str = "0xreward-ledger",
        events: Optional[EventLog] = None,
        metrics: Optional["LedgerMetrics"] = None,
    ) -> None:
        if is_null_address(address):
            raise ValueError("Ledger address cannot be the null address.")
        self.store = store
        self.tokens = tokens
        self.income_source = income_source
        self.address = normalize_address(address)
        self.events = events if events is not None else EventLog()
        self.metrics = metrics

    # ==================== User Operations ====================

    def stake(self, caller: str, asset: str, amount: int) -> int:
        """
        Stake ``amount`` of ``asset``. Pending rewards are paid first.

        Returns:
            The reward paid out during settlement
        """
        asset_norm = self._require_asset(asset)
        SafeMath.require_positive(amount)
        user = normalize_address(caller)

        try:
            with self.store.transaction(self.tokens, self.events):
                paid = self._settle_and_pay(asset_norm, user)
                self.tokens.transfer_from(asset_norm, self.address, user, self.address, amount)
                total = self.store.increase(slot_key(TOTAL_STAKED_NS, asset_norm), amount)
                staked = self.store.increase(slot_key(USER_STAKED_NS, asset_norm, user), amount)
                self.events.emit(ev.STAKED, asset_norm, user, amount=amount, staked_amount=staked)
        except Exception as exc:
            self._record_failure("stake", exc)
            raise

        self._record_payout(asset_norm, user, paid)
        if self.metrics:
            self.metrics.stakes_total.labels(asset=asset_norm).inc()
            self.metrics.total_staked.labels(asset=asset_norm).set(total)
        logger.info(
            "Staked",
            extra={
                "event": "reward.staked",
                "asset": asset_norm[:10],
                "user": user[:10],
                "amount": amount,
                "total_staked": total,
            },
        )
        return paid

    def unstake(self, caller: str, asset: str, amount: int) -> int:
        """
        Withdraw ``amount`` of staked ``asset``. Pending rewards are paid first.

        Raises:
            InsufficientStake: amount exceeds the caller's staked amount

        Returns:
            The reward paid out during settlement
        """
        asset_norm = self._require_asset(asset)
        SafeMath.require_positive(amount)
        user = normalize_address(caller)

        try:
            with self.store.transaction(self.tokens, self.events):
                staked = self.store.get(slot_key(USER_STAKED_NS, asset_norm, user))
                if amount > staked:
                    raise InsufficientStake(amount, staked, asset_norm, user)
                paid = self._settle_and_pay(asset_norm, user)
                total = self.store.decrease(slot_key(TOTAL_STAKED_NS, asset_norm), amount)
                remaining = self.store.decrease(slot_key(USER_STAKED_NS, asset_norm, user), amount)
                self.tokens.transfer(asset_norm, self.address, user, amount)
                self.events.emit(ev.UNSTAKED, asset_norm, user, amount=amount, staked_amount=remaining)
        except Exception as exc:
            self._record_failure("unstake", exc)
            raise

        self._record_payout(asset_norm, user, paid)
        if self.metrics:
            self.metrics.unstakes_total.labels(asset=asset_norm).inc()
            self.metrics.total_staked.labels(asset=asset_norm).set(total)
        logger.info(
            "Unstaked",
            extra={
                "event": "reward.unstaked",
                "asset": asset_norm[:10],
                "user": user[:10],
                "amount": amount,
                "total_staked": total,
            },
        )
        return paid

    def claim_rewards(self, caller: str, asset: str) -> int:
        """Settle and pay the caller's pending reward. Returns the amount paid (may be 0)."""
        asset_norm = self._require_asset(asset)
        user = normalize_address(caller)
        try:
            with self.store.transaction(self.tokens, self.events):
                paid = self._settle_and_pay(asset_norm, user)
        except Exception as exc:
            self._record_failure("claim_rewards", exc)
            raise
        self._record_payout(asset_norm, user, paid)
        return paid

    def fund_rewards(self, caller: str, asset: str, amount: int) -> int:
        """
        Move reward funds into the ledger. Anyone may fund.

        Returns:
            The ledger's balance of ``asset`` after funding
        """
        asset_norm = self._require_asset(asset)
        SafeMath.require_positive(amount)
        with self.store.transaction(self.tokens, self.events):
            self.tokens.transfer_from(asset_norm, self.address, caller, self.address, amount)
        balance = self.tokens.balance_of(asset_norm, self.address)
        logger.info(
            "Rewards funded",
            extra={"event": "reward.funded", "asset": asset_norm[:10], "amount": amount, "balance": balance},
        )
        return balance

    def refresh_pool_index(self, asset: str) -> int:
        """Fold newly accrued income into the index. Returns the current index."""
        asset_norm = self._require_asset(asset)
        with self.store.transaction():
            index = self._refresh_pool_index(asset_norm)
        if self.metrics:
            self.metrics.cumulative_index.labels(asset=asset_norm).set(index)
        return index

    # ==================== Core Algorithm ====================

    def _refresh_pool_index(self, asset: str) -> int:
        """
        Add (delta * 1e18 / total_staked) to the index for income accrued since
        the last refresh. Idempotent when no new income has arrived.
        """
        index_key = slot_key(INDEX_NS, asset)
        index = self.store.get(index_key)
        total_staked = self.store.get(slot_key(TOTAL_STAKED_NS, asset))
        if total_staked == 0:
            return index

        total_mined = self.income_source.get_accumulated_fee(asset)
        last_key = slot_key(LAST_INCOME_NS, asset)
        last_income = self.store.get(last_key)
        if total_mined < last_income:
            logger.warning(
                "Income source decreased; ignoring",
                extra={
                    "event": "reward.income_regressed",
                    "asset": asset[:10],
                    "total_mined": total_mined,
                    "last_income": last_income,
                },
            )
            return index
        if total_mined == last_income:
            return index

        delta = total_mined - last_income
        index = SafeMath.safe_add(index, SafeMath.wad_div(delta, total_staked))
        self.store.set(index_key, index)
        self.store.set(last_key, total_mined)
        logger.debug(
            "Pool index refreshed",
            extra={"event": "reward.index_refreshed", "asset": asset[:10], "delta": delta, "index": index},
        )
        return index

    def _settle_user(self, asset: str, user: str) -> int:
        """Refresh the index, snapshot it into the position, return what was earned."""
        index = self._refresh_pool_index(asset)
        user_index_key = slot_key(USER_INDEX_NS, asset, user)
        user_index = self.store.get(user_index_key)
        staked = self.store.get(slot_key(USER_STAKED_NS, asset, user))

        pending = 0
        if index > user_index:
            pending = SafeMath.wad_mul(index - user_index, staked)
        self.store.set(user_index_key, index)
        return pending

    def _settle_and_pay(self, asset: str, user: str) -> int:
        pending = self._settle_user(asset, user)
        if pending == 0:
            return 0

        # Rewards must come from surplus, never from staked principal.
        balance = self.tokens.balance_of(asset, self.address)
        principal = self.store.get(slot_key(TOTAL_STAKED_NS, asset))
        if balance < principal + pending:
            raise TransferFailed(
                asset,
                f"insufficient reward funds (balance {balance}, principal {principal}, reward {pending})",
            )

        self.tokens.transfer(asset, self.address, user, pending)
        self.store.increase(slot_key(TOTAL_CLAIMED_NS, asset), pending)
        claimed = self.store.increase(slot_key(USER_CLAIMED_NS, asset, user), pending)
        self.events.emit(ev.REWARDS_CLAIMED, asset, user, amount=pending, claimed_amount=claimed)
        return pending

    def _record_payout(self, asset: str, user: str, paid: int) -> None:
        """Report a settled payout. Called only once its transaction has committed."""
        if paid == 0:
            return
        if self.metrics:
            self.metrics.rewards_paid.labels(asset=asset).inc(paid)
        logger.info(
            "Rewards claimed",
            extra={"event": "reward.claimed", "asset": asset[:10], "user": user[:10], "amount": paid},
        )

    # ==================== Views ====================

    def get_total_staked(self, asset: str) -> int:
        return self.store.get(slot_key(TOTAL_STAKED_NS, asset))

    def get_user_staked(self, asset: str, user: str) -> int:
        return self.store.get(slot_key(USER_STAKED_NS, asset, user))

    def get_last_mine_amount(self, asset: str) -> int:
        """Cumulative income already folded into the index."""
        return self.store.get(slot_key(LAST_INCOME_NS, asset))

    def get_total_k(self, asset: str) -> int:
        return self.store.get(slot_key(INDEX_NS, asset))

    def get_user_k(self, asset: str, user: str) -> int:
        return self.store.get(slot_key(USER_INDEX_NS, asset, user))

    def get_total_claimed(self, asset: str) -> int:
        return self.store.get(slot_key(TOTAL_CLAIMED_NS, asset))

    def get_user_claimed(self, asset: str, user: str) -> int:
        return self.store.get(slot_key(USER_CLAIMED_NS, asset, user))

    def get_user_share(self, asset: str, user: str) -> int:
        """User's fraction of the pool, 1e18 = 100%. Zero when nothing is staked."""
        total = self.get_total_staked(asset)
        if total == 0:
            return 0
        return SafeMath.wad_div(self.get_user_staked(asset, user), total)

    def get_pending_rewards(self, asset: str, user: str) -> int:
        """What a claim would pay right now, including unrefreshed income. No state change."""
        index = self._projected_index(normalize_address(asset))
        user_index = self.get_user_k(asset, user)
        if index <= user_index:
            return 0
        return SafeMath.wad_mul(index - user_index, self.get_user_staked(asset, user))

    def get_pool(self, asset: str) -> AssetPool:
        return AssetPool(
            total_staked=self.get_total_staked(asset),
            cumulative_index=self.get_total_k(asset),
            last_settled_income=self.get_last_mine_amount(asset),
            total_claimed=self.get_total_claimed(asset),
        )

    def get_position(self, asset: str, user: str) -> StakePosition:
        return StakePosition(
            staked_amount=self.get_user_staked(asset, user),
            user_index=self.get_user_k(asset, user),
            claimed_amount=self.get_user_claimed(asset, user),
        )

    def verify_consistency(self, asset: str) -> bool:
        """
        Cheap sanity check of pool-level state.

        Per-user stakes are never enumerated, so the total/sum invariant is not
        checked here. This verifies that settled income never exceeds the
        income source and that the ledger holds at least the staked principal.
        """
        asset_norm = normalize_address(asset)
        pool = self.get_pool(asset_norm)
        income = self.income_source.get_accumulated_fee(asset_norm)
        try:
            balance = self.tokens.balance_of(asset_norm, self.address)
        except InvalidAsset:
            balance = 0

        consistent = pool.last_settled_income <= income and balance >= pool.total_staked
        if not consistent:
            logger.error(
                "Reward pool inconsistency detected",
                extra={
                    "event": "reward.inconsistent",
                    "asset": asset_norm[:10],
                    "total_staked": pool.total_staked,
                    "balance": balance,
                    "last_settled_income": pool.last_settled_income,
                    "income": income,
                },
            )
        return consistent

    def to_dict(self, asset: str) -> Dict[str, Any]:
        pool = self.get_pool(asset)
        return {
            "asset": normalize_address(asset),
            "total_staked": pool.total_staked,
            "cumulative_index": pool.cumulative_index,
            "last_settled_income": pool.last_settled_income,
            "total_claimed": pool.total_claimed,
        }

    # ==================== Helpers ====================

    def _projected_index(self, asset: str) -> int:
        index = self.get_total_k(asset)
        total_staked = self.get_total_staked(asset)
        if total_staked == 0:
            return index
        total_mined = self.income_source.get_accumulated_fee(asset)
        last_income = self.get_last_mine_amount(asset)
        if total_mined <= last_income:
            return index
        return index + SafeMath.wad_div(total_mined - last_income, total_staked)

    def _require_asset(self, asset: str) -> str:
        if is_null_address(asset):
            raise InvalidAsset(asset, "asset cannot be null")
        return normalize_address(asset)

    def _record_failure(self, operation: str, exc: Exception) -> None:
        if self.metrics:
            self.metrics.failed_operations.labels(operation=operation, error=type(exc).__name__).inc()
