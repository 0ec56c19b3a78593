"""
Ledger assembly from configuration.

``build_ledgers`` wires the accounting core the way a deployment runs it:
one persistent store shared by both ledgers, the fee/reserve ledger acting
as the reward ledger's income source, fees forwarded to the reward ledger as
they accrue, and the bridge bound to the configured chain.

Usage:
    config = LedgerConfig.from_env()
    ledgers = build_ledgers(config, admin_address="0xAdmin")
    ledgers.fee_ledger.set_fee_policy("0xAdmin", usda, usdb, 3 * 10**15, 2 * 10**15)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .bridge import CrossChainBridge
from .config import LedgerConfig
from .contracts.erc20 import TokenRegistry
from .contracts.router import OperationRouter
from .defi.access_control import AccessControl
from .defi.fee_reserve_ledger import FeeReserveLedger
from .defi.reward_ledger import RewardLedger
from .events import EventLog
from .metrics import LedgerMetrics, get_ledger_metrics
from .storage import PersistentStore

logger = logging.getLogger(__name__)


@dataclass
class LedgerSet:
    config: LedgerConfig
    store: PersistentStore
    tokens: TokenRegistry
    events: EventLog
    access: AccessControl
    bridge: CrossChainBridge
    fee_ledger: FeeReserveLedger
    reward_ledger: RewardLedger
    router: OperationRouter
    metrics: Optional[LedgerMetrics] = None

    def save(self) -> None:
        """Persist the shared store to the configured path."""
        self.store.save()


def build_ledgers(
    config: LedgerConfig,
    admin_address: str,
    tokens: Optional[TokenRegistry] = None,
    metrics_registry=None,
) -> LedgerSet:
    """
    Build a fully wired ledger set.

    Args:
        config: Loaded configuration
        admin_address: Address holding the admin role
        tokens: Existing token registry, or None for an empty one
        metrics_registry: CollectorRegistry for metrics; the process-wide
            instance is used when omitted. Ignored unless metrics are enabled.
    """
    store = PersistentStore(config.store_path)
    tokens = tokens if tokens is not None else TokenRegistry()
    events = EventLog()
    access = AccessControl(admin_address=admin_address)

    metrics: Optional[LedgerMetrics] = None
    if config.metrics_enabled:
        if metrics_registry is not None:
            metrics = LedgerMetrics(registry=metrics_registry)
        else:
            metrics = get_ledger_metrics()

    bridge = CrossChainBridge(config.chain_id, tokens, access=access)
    fee_ledger = FeeReserveLedger(
        store,
        tokens,
        access,
        bridge=bridge,
        events=events,
        metrics=metrics,
        max_fee_rate=config.max_fee_rate,
    )
    reward_ledger = RewardLedger(store, tokens, fee_ledger, events=events, metrics=metrics)
    fee_ledger.set_reward_recipient(admin_address, reward_ledger.address)

    router = OperationRouter(access)
    router.register_module(admin_address, fee_ledger)
    router.register_module(admin_address, reward_ledger)

    logger.info(
        "Ledgers assembled",
        extra={
            "event": "ledgers.built",
            "chain_id": config.chain_id,
            "store_path": config.store_path,
            "metrics_enabled": config.metrics_enabled,
        },
    )
    return LedgerSet(
        config=config,
        store=store,
        tokens=tokens,
        events=events,
        access=access,
        bridge=bridge,
        fee_ledger=fee_ledger,
        reward_ledger=reward_ledger,
        router=router,
        metrics=metrics,
    )
