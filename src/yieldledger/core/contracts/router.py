"""
Selector-based operation router.

A single entry point in front of the ledger modules. Each module advertises a
``SELECTORS`` table mapping canonical operation signatures
(``stake(address,uint256)``) to method names; the router installs the 4-byte
selector of every signature and forwards calls to the bound method.

Selectors are the first 4 bytes of the SHA3-256 digest of the signature.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from ..defi.access_control import AccessControl
from ..exceptions import ImplementationNotFound

logger = logging.getLogger(__name__)


def compute_selector(signature: str) -> bytes:
    """4-byte selector of a canonical operation signature."""
    return hashlib.sha3_256(signature.replace(" ", "").encode()).digest()[:4]


@dataclass
class RouteEntry:
    selector: bytes
    signature: str
    module: Any
    method_name: str

    @property
    def handler(self) -> Callable[..., Any]:
        return getattr(self.module, self.method_name)


@dataclass
class OperationRouter:
    """
    Routes operations to the module that implements them.

    Modules are registered and removed by the admin only; a selector can be
    owned by at most one module at a time.
    """

    access: AccessControl
    routes: Dict[bytes, RouteEntry] = field(default_factory=dict)
    module_selectors: Dict[int, List[bytes]] = field(default_factory=dict)
    version: int = 0

    # ==================== Registration ====================

    def register_module(self, caller: str, module: Any) -> List[bytes]:
        """
        Install every selector the module advertises.

        Raises:
            Unauthorized: caller is not the admin
            ValueError: module has no SELECTORS table, a method is missing,
                or a selector is already installed
        """
        self.access.require_admin(caller, "register_module")

        table: Optional[Dict[str, str]] = getattr(module, "SELECTORS", None)
        if not table:
            raise ValueError(f"{type(module).__name__} does not advertise any selectors")

        entries = []
        for signature, method_name in table.items():
            if not callable(getattr(module, method_name, None)):
                raise ValueError(f"{type(module).__name__} has no method {method_name}")
            selector = compute_selector(signature)
            if selector in self.routes or any(e.selector == selector for e in entries):
                raise ValueError(f"Selector {selector.hex()} ({signature}) already exists")
            entries.append(RouteEntry(selector, signature, module, method_name))

        for entry in entries:
            self.routes[entry.selector] = entry
        self.module_selectors.setdefault(id(module), []).extend(e.selector for e in entries)
        self.version += 1

        logger.info(
            "Module registered",
            extra={
                "event": "router.module_registered",
                "module": type(module).__name__,
                "selectors": len(entries),
                "version": self.version,
            },
        )
        return [e.selector for e in entries]

    def remove_module(self, caller: str, module: Any) -> int:
        """Uninstall all selectors owned by ``module``. Returns how many were removed."""
        self.access.require_admin(caller, "remove_module")
        selectors = self.module_selectors.pop(id(module), [])
        for selector in selectors:
            del self.routes[selector]
        if selectors:
            self.version += 1
        logger.info(
            "Module removed",
            extra={
                "event": "router.module_removed",
                "module": type(module).__name__,
                "selectors": len(selectors),
            },
        )
        return len(selectors)

    # ==================== Introspection ====================

    def resolve(self, operation: Union[str, bytes]) -> RouteEntry:
        """
        Find the route for a signature, raw selector bytes, or hex selector.

        Raises:
            ImplementationNotFound: nothing is registered for the selector
        """
        selector = self._to_selector(operation)
        entry = self.routes.get(selector)
        if entry is None:
            raise ImplementationNotFound(selector.hex())
        return entry

    def selectors(self) -> List[str]:
        return sorted(entry.signature for entry in self.routes.values())

    def supports(self, operation: Union[str, bytes]) -> bool:
        try:
            self.resolve(operation)
        except (ImplementationNotFound, ValueError):
            return False
        return True

    # ==================== Dispatch ====================

    def dispatch(self, operation: Union[str, bytes], *args: Any, **kwargs: Any) -> Any:
        entry = self.resolve(operation)
        logger.debug(
            "Dispatching operation",
            extra={"event": "router.dispatch", "signature": entry.signature},
        )
        return entry.handler(*args, **kwargs)

    @staticmethod
    def _to_selector(operation: Union[str, bytes]) -> bytes:
        if isinstance(operation, (bytes, bytearray)):
            if len(operation) < 4:
                raise ValueError("Invalid selector: fewer than 4 bytes")
            return bytes(operation[:4])
        if not isinstance(operation, str) or not operation:
            raise ValueError(f"Invalid operation: {operation!r}")
        if "(" in operation:
            return compute_selector(operation)
        raw = operation[2:] if operation.lower().startswith("0x") else operation
        try:
            selector = bytes.fromhex(raw)
        except ValueError as exc:
            raise ValueError(f"Invalid selector: {operation!r}") from exc
        if len(selector) != 4:
            raise ValueError(f"Invalid selector: {operation!r}")
        return selector
