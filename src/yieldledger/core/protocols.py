"""
yieldledger - Collaborator Protocol Interfaces

Structural interfaces for the components the accounting core consumes.
Using Protocol allows dependency injection without inheritance: tests can
pass any object with the right shape (a fake income source, a recording
bridge) in place of the real collaborator.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class ISnapshottable(Protocol):
    """State holder that can take part in an all-or-nothing transaction."""

    def snapshot(self) -> Any:
        ...

    def restore(self, snapshot: Any) -> None:
        ...


@runtime_checkable
class IAssetTransfer(Protocol):
    """
    Fungible asset movement between holders.

    Any failure must raise; callers rely on the exception to abort and roll
    back the enclosing operation.
    """

    def transfer(self, asset: str, sender: str, recipient: str, amount: int) -> bool:
        ...

    def transfer_from(
        self, asset: str, spender: str, from_addr: str, to_addr: str, amount: int
    ) -> bool:
        ...

    def approve(self, asset: str, owner: str, spender: str, amount: int) -> bool:
        ...

    def balance_of(self, asset: str, account: str) -> int:
        ...


@runtime_checkable
class IIncomeSource(Protocol):
    """
    Monotonically non-decreasing per-asset income counter.

    The reward ledger folds increases of this counter into its cumulative
    index. Implementations must never let the value decrease.
    """

    def get_accumulated_fee(self, asset: str) -> int:
        ...


@runtime_checkable
class IBridge(Protocol):
    """
    Cross-chain exit endpoint consumed by the cross-chain swap.

    ``exit`` pulls ``amount`` of ``asset_in`` from ``caller`` (which has
    approved ``address``) and must reject requests whose source chain is
    not ``chain_id``.
    """

    chain_id: str
    address: str

    def exit(
        self,
        caller: str,
        asset_in: str,
        asset_out: str,
        from_addr: str,
        to_addr: str,
        source_chain: str,
        dest_chain: str,
        amount: int,
    ) -> Any:
        ...
