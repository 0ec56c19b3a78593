"""
Ledger events.

Events are append-only facts describing the effect of a completed operation.
They are indexed by asset and account so external consumers can query them.
The log takes part in store transactions: events emitted by an operation that
later fails are discarded together with its state changes.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

STAKED = "Staked"
UNSTAKED = "Unstaked"
REWARDS_CLAIMED = "RewardsClaimed"
SWAP_EXECUTED = "SwapExecuted"
SWAP_TO_OTHER_CHAIN = "SwapToOtherChain"
TOKEN_PAIR_FEES_SET = "TokenPairFeesSet"
LIQUIDITY_ADDED = "LiquidityAdded"
BRIDGE_CONFIGURED = "BridgeConfigured"
REWARD_RECIPIENT_SET = "RewardRecipientSet"


@dataclass(frozen=True)
class LedgerEvent:
    """A typed record of an operation's effect."""

    event_type: str
    asset: str
    account: str
    data: Dict[str, Any] = field(default_factory=dict)
    sequence: int = 0
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "asset": self.asset,
            "account": self.account,
            "data": dict(self.data),
            "sequence": self.sequence,
            "timestamp": self.timestamp,
        }


class EventLog:
    def __init__(self) -> None:
        self.events: List[LedgerEvent] = []

    def emit(self, event_type: str, asset: str, account: str, **data: Any) -> LedgerEvent:
        event = LedgerEvent(
            event_type=event_type,
            asset=asset,
            account=account,
            data=data,
            sequence=len(self.events),
        )
        self.events.append(event)
        return event

    def filter(
        self,
        event_type: Optional[str] = None,
        asset: Optional[str] = None,
        account: Optional[str] = None,
    ) -> List[LedgerEvent]:
        asset = asset.lower() if asset else asset
        account = account.lower() if account else account
        return [
            e for e in self.events
            if (event_type is None or e.event_type == event_type)
            and (asset is None or e.asset == asset)
            and (account is None or e.account == account)
        ]

    def last(self, event_type: Optional[str] = None) -> Optional[LedgerEvent]:
        for event in reversed(self.events):
            if event_type is None or event.event_type == event_type:
                return event
        return None

    def __len__(self) -> int:
        return len(self.events)

    # Transaction participation; events are immutable so a length mark suffices.
    def snapshot(self) -> int:
        return len(self.events)

    def restore(self, snapshot: int) -> None:
        del self.events[snapshot:]
