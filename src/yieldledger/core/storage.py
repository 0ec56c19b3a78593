"""
Persistent slot store shared by the reward and fee/reserve ledgers.

State lives in a flat mapping of 256-bit slot numbers to unsigned 256-bit
integers. A slot number is derived from a composite key made of a namespace
tag plus one or more identifiers:

    slot = int(sha3_256(canonical(namespace, *identifiers)))

so that keys are unique and stable for the lifetime of the store. Reads of
a slot that was never written return 0; "absent" and "present with 0" are
not distinguished.

The store is also the transaction boundary of the ledger. Every mutating
operation runs inside ``PersistentStore.transaction`` which serialises
operations on a re-entrant lock and restores every participant (the store,
the token registry, the event log) if the operation raises.

Usage:
    store = PersistentStore()
    key = slot_key("reward.total_staked", asset)
    with store.transaction(tokens, events):
        store.set(key, store.get(key) + amount)
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Tuple

from .safe_math import MAX_UINT256, SafeMath
from .exceptions import InvalidAmount
from .protocols import ISnapshottable

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "0" * 40

StorageKey = Tuple[Any, ...]


def normalize_address(address: Any) -> str:
    """Normalize an address/asset identifier to lowercase text."""
    if address is None:
        return ""
    return str(address).strip().lower()


def is_null_address(address: Any) -> bool:
    """True for the null identity (empty or the all-zero address)."""
    norm = normalize_address(address)
    return not norm or norm == ZERO_ADDRESS


def slot_key(namespace: str, *identifiers: Any) -> StorageKey:
    """Build a composite storage key from a namespace tag and identifiers."""
    if not namespace:
        raise ValueError("Storage namespace cannot be empty")
    if not identifiers:
        raise ValueError("Storage key requires at least one identifier")
    return (namespace,) + tuple(
        normalize_address(i) if isinstance(i, str) else i for i in identifiers
    )


def derive_slot(key: StorageKey) -> int:
    """
    Deterministic slot number for a composite key.

    Each part is encoded with its type name, so 1 and "1" never share a slot.
    """
    canonical = json.dumps(
        [[type(part).__name__, str(part)] for part in key], separators=(",", ":")
    )
    return int.from_bytes(hashlib.sha3_256(canonical.encode()).digest(), "big")


class PersistentStore:
    """
    Mapping from composite keys to uint256 slots with optional JSON backing.

    Thread safety: ``lock`` is an RLock; all ledger operations hold it for
    their whole duration via ``transaction``.
    """

    def __init__(self, path: str | os.PathLike | None = None) -> None:
        self.slots: Dict[int, int] = {}
        self.path = Path(path) if path else None
        self.lock = threading.RLock()
        if self.path is not None and self.path.exists():
            self.load(self.path)

    # ==================== Slot Access ====================

    def get(self, key: StorageKey) -> int:
        """Read a slot; never-written slots read as 0."""
        return self.slots.get(derive_slot(key), 0)

    def set(self, key: StorageKey, value: int) -> None:
        """Write a slot. Values must fit in uint256."""
        if not isinstance(value, int) or isinstance(value, bool):
            raise InvalidAmount(value, "slot value must be an integer")
        if value < 0 or value > MAX_UINT256:
            raise InvalidAmount(value, "slot value outside uint256 range")
        slot = derive_slot(key)
        if value == 0:
            self.slots.pop(slot, None)
        else:
            self.slots[slot] = value

    def increase(self, key: StorageKey, amount: int) -> int:
        new_value = SafeMath.safe_add(self.get(key), amount)
        self.set(key, new_value)
        return new_value

    def decrease(self, key: StorageKey, amount: int) -> int:
        new_value = SafeMath.safe_sub(self.get(key), amount)
        self.set(key, new_value)
        return new_value

    def __len__(self) -> int:
        return len(self.slots)

    # ==================== Transactions ====================

    def snapshot(self) -> Dict[int, int]:
        return dict(self.slots)

    def restore(self, snapshot: Dict[int, int]) -> None:
        self.slots = dict(snapshot)

    @contextmanager
    def transaction(self, *participants: ISnapshottable) -> Iterator["PersistentStore"]:
        """
        Run a block all-or-nothing.

        The store and every participant are snapshotted on entry; if the block
        raises, all of them are restored and the exception propagates.
        """
        with self.lock:
            saved = [(self, self.snapshot())]
            saved.extend((p, p.snapshot()) for p in participants)
            try:
                yield self
            except Exception as exc:
                for participant, state in reversed(saved):
                    participant.restore(state)
                logger.warning(
                    "Ledger operation rolled back",
                    extra={
                        "event": "store.rollback",
                        "error_type": type(exc).__name__,
                        "error": str(exc),
                    },
                )
                raise

    # ==================== Persistence ====================

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": 1,
            "slots": {format(slot, "064x"): format(value, "x") for slot, value in self.slots.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PersistentStore":
        store = cls()
        store.slots = {
            int(slot, 16): int(value, 16) for slot, value in data.get("slots", {}).items()
        }
        return store

    def save(self, path: str | os.PathLike | None = None) -> Path:
        """Write the slot map to disk atomically (temp file + rename)."""
        target = Path(path) if path else self.path
        if target is None:
            raise ValueError("No storage path configured")
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = target.with_suffix(target.suffix + ".tmp")
        with self.lock:
            payload = self.to_dict()
        with open(tmp_path, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, sort_keys=True)
        os.replace(tmp_path, target)
        logger.info(
            "Ledger store saved",
            extra={"event": "store.saved", "path": str(target), "slots": len(payload["slots"])},
        )
        return target

    def load(self, path: str | os.PathLike | None = None) -> None:
        source = Path(path) if path else self.path
        if source is None:
            raise ValueError("No storage path configured")
        if not source.exists():
            logger.info("No ledger store at %s; starting empty", source)
            return
        with open(source, "r", encoding="utf-8") as handle:
            data = json.load(handle)
        loaded = PersistentStore.from_dict(data)
        with self.lock:
            self.slots = loaded.slots
        logger.info(
            "Ledger store loaded",
            extra={"event": "store.loaded", "path": str(source), "slots": len(self.slots)},
        )
