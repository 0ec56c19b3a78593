import sys
from pathlib import Path
from typing import Dict

import pytest
from prometheus_client import CollectorRegistry

# Ensure the src directory (for `yieldledger.*`) is on the Python path before collection runs.
project_root = Path(__file__).resolve().parents[2]
src_path = project_root / "src"
sys.path.insert(0, str(src_path))

from yieldledger.core.contracts.erc20 import TokenRegistry
from yieldledger.core.defi.access_control import AccessControl
from yieldledger.core.defi.fee_reserve_ledger import FeeReserveLedger
from yieldledger.core.defi.reward_ledger import RewardLedger
from yieldledger.core.events import EventLog
from yieldledger.core.metrics import LedgerMetrics
from yieldledger.core.safe_math import MAX_UINT256
from yieldledger.core.storage import PersistentStore, normalize_address

ADMIN = "0xadmin"
ALICE = "0xalice"
BOB = "0xbob"
CAROL = "0xcarol"

INITIAL_BALANCE = 1_000_000


class FakeIncomeSource:
    """Income counter the tests can advance by hand."""

    def __init__(self) -> None:
        self.income: Dict[str, int] = {}

    def add(self, asset: str, amount: int) -> int:
        asset = normalize_address(asset)
        self.income[asset] = self.income.get(asset, 0) + amount
        return self.income[asset]

    def get_accumulated_fee(self, asset: str) -> int:
        return self.income.get(normalize_address(asset), 0)


@pytest.fixture
def store():
    return PersistentStore()


@pytest.fixture
def tokens():
    return TokenRegistry()


@pytest.fixture
def events():
    return EventLog()


@pytest.fixture
def access():
    return AccessControl(admin_address=ADMIN)


@pytest.fixture
def metrics():
    return LedgerMetrics(registry=CollectorRegistry())


@pytest.fixture
def usd_a(tokens):
    token = tokens.create_token(ADMIN, "USD Alpha", "USDA", initial_supply=INITIAL_BALANCE)
    for user in (ALICE, BOB, CAROL):
        token.mint(ADMIN, user, INITIAL_BALANCE)
    return token


@pytest.fixture
def usd_b(tokens):
    token = tokens.create_token(ADMIN, "USD Beta", "USDB", initial_supply=INITIAL_BALANCE)
    for user in (ALICE, BOB, CAROL):
        token.mint(ADMIN, user, INITIAL_BALANCE)
    return token


@pytest.fixture
def fee_ledger(store, tokens, access, events, metrics):
    return FeeReserveLedger(store, tokens, access, events=events, metrics=metrics)


@pytest.fixture
def funded_fee_ledger(fee_ledger, usd_a, usd_b):
    """Fee ledger with 100k of reserve in each asset and unlimited user approvals."""
    for token in (usd_a, usd_b):
        for holder in (ADMIN, ALICE, BOB, CAROL):
            token.approve(holder, fee_ledger.address, MAX_UINT256)
        fee_ledger.add_liquidity(ADMIN, token.address, 100_000)
    return fee_ledger


@pytest.fixture
def income():
    return FakeIncomeSource()


@pytest.fixture
def reward_ledger(store, tokens, income, events, metrics, usd_a):
    """Reward ledger on a hand-driven income source, holding 500k of reward funds."""
    ledger = RewardLedger(store, tokens, income, events=events, metrics=metrics)
    usd_a.mint(ADMIN, ledger.address, 500_000)
    for holder in (ALICE, BOB, CAROL):
        usd_a.approve(holder, ledger.address, MAX_UINT256)
    return ledger
