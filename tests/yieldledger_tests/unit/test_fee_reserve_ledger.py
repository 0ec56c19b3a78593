"""
Unit tests for the Fee/Reserve Ledger.

Coverage targets:
- Symmetric fee policy configuration and admin gating
- Fixed-ratio swap arithmetic, reserve and fee bookkeeping
- Reserve non-negativity and all-or-nothing rollback
- Cross-chain swap through the bridge and vault
"""

import pytest

from yieldledger.core import events as ev
from yieldledger.core.bridge import CrossChainBridge
from yieldledger.core.defi.fee_reserve_ledger import FeePolicy, FeeReserveLedger, SwapResult
from yieldledger.core.exceptions import (
    BridgeNotConfigured,
    FeeTooHigh,
    InsufficientReserve,
    InvalidAmount,
    InvalidAsset,
    InvalidChain,
    TransferFailed,
    Unauthorized,
)
from yieldledger.core.safe_math import WAD

ADMIN = "0xadmin"
ALICE = "0xalice"
BOB = "0xbob"
INITIAL_BALANCE = 1_000_000

IN_FEE = 3 * 10**15   # 0.3%
OUT_FEE = 2 * 10**15  # 0.2%
DAVE = "0xdave"
REWARDS = "0xrewards"


def _ledger_state(ledger, *assets):
    return [(ledger.get_reserve(a), ledger.get_accumulated_fee(a)) for a in assets]


class TestFeePolicy:
    def test_policy_is_symmetric(self, fee_ledger, usd_a, usd_b):
        forward, reverse = fee_ledger.set_fee_policy(ADMIN, usd_a.address, usd_b.address, IN_FEE, OUT_FEE)
        assert forward == FeePolicy(IN_FEE, OUT_FEE)
        assert reverse == FeePolicy(OUT_FEE, IN_FEE)
        assert fee_ledger.get_fee_policy(usd_a.address, usd_b.address) == FeePolicy(IN_FEE, OUT_FEE)
        assert fee_ledger.get_fee_policy(usd_b.address, usd_a.address) == FeePolicy(OUT_FEE, IN_FEE)

    def test_policy_emits_event(self, fee_ledger, events, usd_a, usd_b):
        fee_ledger.set_fee_policy(ADMIN, usd_a.address, usd_b.address, IN_FEE, OUT_FEE)
        event = events.last(ev.TOKEN_PAIR_FEES_SET)
        assert event.asset == usd_a.address
        assert event.data == {"asset_b": usd_b.address, "in_fee": IN_FEE, "out_fee": OUT_FEE}

    def test_unset_pair_has_zero_fees(self, fee_ledger, usd_a, usd_b):
        assert fee_ledger.get_fee_policy(usd_a.address, usd_b.address) == FeePolicy(0, 0)

    def test_only_admin(self, fee_ledger, usd_a, usd_b):
        with pytest.raises(Unauthorized):
            fee_ledger.set_fee_policy(ALICE, usd_a.address, usd_b.address, IN_FEE, OUT_FEE)
        assert fee_ledger.get_fee_policy(usd_a.address, usd_b.address) == FeePolicy(0, 0)

    def test_null_asset_rejected(self, fee_ledger, usd_a):
        with pytest.raises(InvalidAsset):
            fee_ledger.set_fee_policy(ADMIN, usd_a.address, "", IN_FEE, OUT_FEE)

    def test_fee_above_cap_rejected(self, store, tokens, access, usd_a, usd_b):
        ledger = FeeReserveLedger(store, tokens, access, max_fee_rate=10**17)
        with pytest.raises(FeeTooHigh):
            ledger.set_fee_policy(ADMIN, usd_a.address, usd_b.address, 10**17 + 1, 0)
        ledger.set_fee_policy(ADMIN, usd_a.address, usd_b.address, 10**17, 10**17)

    def test_fee_above_one_hundred_percent_rejected(self, fee_ledger, usd_a, usd_b):
        with pytest.raises(FeeTooHigh):
            fee_ledger.set_fee_policy(ADMIN, usd_a.address, usd_b.address, 0, WAD + 1)

    def test_constructor_validation(self, store, tokens, access):
        with pytest.raises(ValueError):
            FeeReserveLedger(store, tokens, access, address="")
        with pytest.raises(ValueError):
            FeeReserveLedger(store, tokens, access, max_fee_rate=WAD + 1)


class TestLiquidity:
    def test_add_liquidity(self, fee_ledger, events, usd_a):
        usd_a.approve(ADMIN, fee_ledger.address, 500)
        assert fee_ledger.add_liquidity(ADMIN, usd_a.address, 500) == 500
        assert usd_a.balance_of(fee_ledger.address) == 500
        assert events.last(ev.LIQUIDITY_ADDED).data == {"amount": 500, "reserve": 500}

    def test_add_liquidity_requires_admin_and_amount(self, fee_ledger, usd_a):
        with pytest.raises(Unauthorized):
            fee_ledger.add_liquidity(ALICE, usd_a.address, 500)
        with pytest.raises(InvalidAmount):
            fee_ledger.add_liquidity(ADMIN, usd_a.address, 0)

    def test_add_liquidity_without_allowance_rolls_back(self, fee_ledger, events, usd_a):
        with pytest.raises(TransferFailed):
            fee_ledger.add_liquidity(ADMIN, usd_a.address, 500)
        assert fee_ledger.get_reserve(usd_a.address) == 0
        assert len(events) == 0


class TestSwap:
    def test_documented_swap_scenario(self, funded_fee_ledger, usd_a, usd_b):
        ledger = funded_fee_ledger
        ledger.set_fee_policy(ADMIN, usd_a.address, usd_b.address, IN_FEE, OUT_FEE)

        result = ledger.swap(ALICE, usd_a.address, usd_b.address, 1000, BOB)

        assert result == SwapResult(amount_out=998, in_fee=3, out_fee=2)
        assert ledger.get_reserve(usd_a.address) == 101_000
        assert ledger.get_reserve(usd_b.address) == 100_000 - 998
        assert ledger.get_accumulated_fees(usd_a.address, usd_b.address) == (3, 2)
        assert usd_a.balance_of(ALICE) == INITIAL_BALANCE - 1000
        assert usd_b.balance_of(BOB) == INITIAL_BALANCE + 998

    def test_zero_fee_swap_is_one_to_one(self, funded_fee_ledger, usd_a, usd_b):
        result = funded_fee_ledger.swap(ALICE, usd_a.address, usd_b.address, 1000, ALICE)
        assert result.amount_out == 1000
        assert funded_fee_ledger.get_accumulated_fee(usd_a.address) == 0

    def test_reverse_direction_uses_mirrored_policy(self, funded_fee_ledger, usd_a, usd_b):
        funded_fee_ledger.set_fee_policy(ADMIN, usd_a.address, usd_b.address, IN_FEE, OUT_FEE)
        result = funded_fee_ledger.swap(ALICE, usd_b.address, usd_a.address, 1000, ALICE)
        assert result == SwapResult(amount_out=997, in_fee=2, out_fee=3)
        assert funded_fee_ledger.get_accumulated_fees(usd_a.address, usd_b.address) == (3, 2)

    def test_fees_accumulate_per_asset(self, funded_fee_ledger, usd_a, usd_b):
        funded_fee_ledger.set_fee_policy(ADMIN, usd_a.address, usd_b.address, IN_FEE, OUT_FEE)
        funded_fee_ledger.swap(ALICE, usd_a.address, usd_b.address, 1000, ALICE)
        funded_fee_ledger.swap(BOB, usd_b.address, usd_a.address, 1000, BOB)
        assert funded_fee_ledger.get_accumulated_fee(usd_a.address) == 6
        assert funded_fee_ledger.get_accumulated_fee(usd_b.address) == 4

    def test_swap_emits_event_and_metrics(self, funded_fee_ledger, events, metrics, usd_a, usd_b):
        funded_fee_ledger.set_fee_policy(ADMIN, usd_a.address, usd_b.address, IN_FEE, OUT_FEE)
        funded_fee_ledger.swap(ALICE, usd_a.address, usd_b.address, 1000, BOB)

        event = events.last(ev.SWAP_EXECUTED)
        assert event.account == ALICE
        assert event.data["amount_out"] == 998
        assert event.data["recipient"] == BOB

        labels = {"asset_in": usd_a.address, "asset_out": usd_b.address, "kind": "local"}
        assert metrics.registry.get_sample_value("yieldledger_swaps_total", labels) == 1.0
        assert metrics.registry.get_sample_value(
            "yieldledger_fees_collected_total", {"asset": usd_a.address}
        ) == 3.0

    def test_insufficient_reserve_leaves_state_unchanged(self, fee_ledger, events, usd_a, usd_b):
        usd_b.approve(ADMIN, fee_ledger.address, 500)
        fee_ledger.add_liquidity(ADMIN, usd_b.address, 500)
        usd_a.approve(ALICE, fee_ledger.address, 1000)
        fee_ledger.set_fee_policy(ADMIN, usd_a.address, usd_b.address, IN_FEE, OUT_FEE)
        before = _ledger_state(fee_ledger, usd_a.address, usd_b.address)
        event_count = len(events)

        with pytest.raises(InsufficientReserve) as exc_info:
            fee_ledger.swap(ALICE, usd_a.address, usd_b.address, 1000, BOB)

        assert exc_info.value.requested == 998
        assert exc_info.value.available == 500
        assert _ledger_state(fee_ledger, usd_a.address, usd_b.address) == before
        assert usd_a.balance_of(ALICE) == INITIAL_BALANCE
        assert len(events) == event_count

    def test_failed_pull_rolls_back_bookkeeping(self, funded_fee_ledger, metrics, usd_a, usd_b):
        usd_a.mint(ADMIN, DAVE, 5000)  # no approval given
        funded_fee_ledger.set_fee_policy(ADMIN, usd_a.address, usd_b.address, IN_FEE, OUT_FEE)
        before = _ledger_state(funded_fee_ledger, usd_a.address, usd_b.address)

        with pytest.raises(TransferFailed):
            funded_fee_ledger.swap(DAVE, usd_a.address, usd_b.address, 1000, DAVE)

        assert _ledger_state(funded_fee_ledger, usd_a.address, usd_b.address) == before
        assert usd_b.balance_of(DAVE) == 0
        assert metrics.registry.get_sample_value(
            "yieldledger_failed_operations_total", {"operation": "swap", "error": "TransferFailed"}
        ) == 1.0

    @pytest.mark.parametrize(
        "asset_in, asset_out",
        [("", "b"), ("a", ""), ("a", "a"), ("0x" + "0" * 40, "b")],
    )
    def test_invalid_assets(self, funded_fee_ledger, usd_a, usd_b, asset_in, asset_out):
        lookup = {"a": usd_a.address, "b": usd_b.address}
        with pytest.raises(InvalidAsset):
            funded_fee_ledger.swap(ALICE, lookup.get(asset_in, asset_in), lookup.get(asset_out, asset_out), 10, BOB)

    def test_zero_amount_and_null_recipient(self, funded_fee_ledger, usd_a, usd_b):
        with pytest.raises(InvalidAmount):
            funded_fee_ledger.swap(ALICE, usd_a.address, usd_b.address, 0, BOB)
        with pytest.raises(InvalidAsset):
            funded_fee_ledger.swap(ALICE, usd_a.address, usd_b.address, 10, "")

    def test_to_dict(self, funded_fee_ledger, usd_a):
        data = funded_fee_ledger.to_dict(usd_a.address)
        assert data["assets"][usd_a.address] == {"reserve": 100_000, "accumulated_fee": 0}
        assert data["bridge_chain_id"] is None


class TestRewardForwarding:
    def test_swap_forwards_both_fees(self, funded_fee_ledger, events, usd_a, usd_b):
        ledger = funded_fee_ledger
        ledger.set_reward_recipient(ADMIN, REWARDS)
        ledger.set_fee_policy(ADMIN, usd_a.address, usd_b.address, IN_FEE, OUT_FEE)

        result = ledger.swap(ALICE, usd_a.address, usd_b.address, 1000, BOB)

        assert result == SwapResult(amount_out=998, in_fee=3, out_fee=2)
        assert ledger.get_accumulated_fees(usd_a.address, usd_b.address) == (3, 2)
        assert (usd_a.balance_of(REWARDS), usd_b.balance_of(REWARDS)) == (3, 2)
        assert ledger.get_reserve(usd_a.address) == 100_997
        assert ledger.get_reserve(usd_b.address) == 99_000
        for token in (usd_a, usd_b):
            assert ledger.get_reserve(token.address) == token.balance_of(ledger.address)
        assert events.last(ev.REWARD_RECIPIENT_SET).data == {"recipient": REWARDS}

    def test_forwarded_out_fee_needs_reserve(self, fee_ledger, events, usd_a, usd_b):
        usd_b.approve(ADMIN, fee_ledger.address, 998)
        fee_ledger.add_liquidity(ADMIN, usd_b.address, 998)
        usd_a.approve(ALICE, fee_ledger.address, 1000)
        fee_ledger.set_fee_policy(ADMIN, usd_a.address, usd_b.address, IN_FEE, OUT_FEE)
        fee_ledger.set_reward_recipient(ADMIN, REWARDS)
        event_count = len(events)

        with pytest.raises(InsufficientReserve) as exc_info:
            fee_ledger.swap(ALICE, usd_a.address, usd_b.address, 1000, BOB)

        assert exc_info.value.requested == 1000
        assert exc_info.value.available == 998
        assert usd_b.balance_of(REWARDS) == 0
        assert fee_ledger.get_reserve(usd_b.address) == 998
        assert len(events) == event_count

    def test_recipient_is_admin_only_and_not_null(self, funded_fee_ledger):
        with pytest.raises(Unauthorized):
            funded_fee_ledger.set_reward_recipient(ALICE, REWARDS)
        with pytest.raises(InvalidAsset):
            funded_fee_ledger.set_reward_recipient(ADMIN, "0x" + "0" * 40)
        assert funded_fee_ledger.reward_recipient is None

    def test_clearing_recipient_keeps_fees_in_reserve(self, funded_fee_ledger, usd_a, usd_b):
        ledger = funded_fee_ledger
        ledger.set_reward_recipient(ADMIN, REWARDS)
        ledger.set_reward_recipient(ADMIN, None)
        ledger.set_fee_policy(ADMIN, usd_a.address, usd_b.address, IN_FEE, OUT_FEE)

        ledger.swap(ALICE, usd_a.address, usd_b.address, 1000, BOB)

        assert usd_a.balance_of(REWARDS) == 0
        assert ledger.get_reserve(usd_a.address) == 101_000


class TestCrossChainSwap:
    @pytest.fixture
    def bridge(self, funded_fee_ledger, tokens):
        bridge = CrossChainBridge(chain_id="1", tokens=tokens)
        funded_fee_ledger.set_bridge(ADMIN, bridge)
        return bridge

    def test_requires_bridge(self, funded_fee_ledger, usd_a, usd_b):
        with pytest.raises(BridgeNotConfigured):
            funded_fee_ledger.cross_chain_swap(ALICE, usd_a.address, usd_b.address, 1000, BOB, "1", "2")

    def test_set_bridge_is_admin_only(self, funded_fee_ledger, tokens, events):
        with pytest.raises(Unauthorized):
            funded_fee_ledger.set_bridge(ALICE, CrossChainBridge(chain_id="1", tokens=tokens))
        assert funded_fee_ledger.bridge is None
        assert events.last(ev.BRIDGE_CONFIGURED) is None

    def test_cross_chain_swap_charges_in_fee_and_bridges_rest(
        self, funded_fee_ledger, bridge, events, usd_a, usd_b
    ):
        ledger = funded_fee_ledger
        ledger.set_fee_policy(ADMIN, usd_a.address, usd_b.address, IN_FEE, OUT_FEE)

        result = ledger.cross_chain_swap(ALICE, usd_a.address, usd_b.address, 1000, BOB, "1", "2")

        assert result.amount_bridged == 997
        assert result.in_fee == 3
        assert result.exit_receipt.sequence == 1
        assert result.exit_receipt.to_addr == BOB
        assert result.exit_receipt.from_addr == ALICE
        assert bridge.vault.balance_of(usd_a.address) == 997
        assert ledger.get_reserve(usd_a.address) == 100_003
        assert ledger.get_accumulated_fee(usd_a.address) == 3
        assert ledger.get_accumulated_fee(usd_b.address) == 0
        assert usd_a.balance_of(ledger.address) == 100_003
        assert usd_a.allowance(ledger.address, bridge.address) == 0
        assert events.last(ev.SWAP_TO_OTHER_CHAIN).data["dest_chain"] == "2"

    def test_wrong_source_chain_rolls_back(self, funded_fee_ledger, bridge, events, usd_a, usd_b):
        funded_fee_ledger.set_fee_policy(ADMIN, usd_a.address, usd_b.address, IN_FEE, OUT_FEE)
        event_count = len(events)

        with pytest.raises(InvalidChain):
            funded_fee_ledger.cross_chain_swap(ALICE, usd_a.address, usd_b.address, 1000, BOB, "5", "2")

        assert funded_fee_ledger.get_accumulated_fee(usd_a.address) == 0
        assert funded_fee_ledger.get_reserve(usd_a.address) == 100_000
        assert usd_a.balance_of(ALICE) == INITIAL_BALANCE
        assert bridge.exits == []
        assert len(events) == event_count

    def test_same_destination_chain_rejected(self, funded_fee_ledger, bridge, usd_a, usd_b):
        with pytest.raises(InvalidChain):
            funded_fee_ledger.cross_chain_swap(ALICE, usd_a.address, usd_b.address, 1000, BOB, "1", "1")
        assert bridge.next_sequence == 1

    def test_cross_chain_swap_forwards_in_fee(self, funded_fee_ledger, bridge, usd_a, usd_b):
        ledger = funded_fee_ledger
        ledger.set_reward_recipient(ADMIN, REWARDS)
        ledger.set_fee_policy(ADMIN, usd_a.address, usd_b.address, IN_FEE, OUT_FEE)

        result = ledger.cross_chain_swap(ALICE, usd_a.address, usd_b.address, 1000, BOB, "1", "2")

        assert result.amount_bridged == 997
        assert usd_a.balance_of(REWARDS) == 3
        assert ledger.get_accumulated_fee(usd_a.address) == 3
        assert ledger.get_reserve(usd_a.address) == 100_000
        assert usd_a.balance_of(ledger.address) == 100_000
