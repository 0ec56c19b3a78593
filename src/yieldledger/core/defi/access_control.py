"""
Single-admin access control for ledger configuration.

Fee schedules, bridge registration, router modules and reserve seeding are
privileged. They are gated on one admin address; additional roles (for
example the bridge relayer) are granted by the admin and audited.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Set

from ..exceptions import InvalidAsset, Unauthorized
from ..storage import is_null_address, normalize_address

logger = logging.getLogger(__name__)


class Role(Enum):
    """Standard roles for ledger access control."""
    ADMIN = "admin"
    OPERATOR = "operator"


@dataclass
class AccessControl:
    """
    Admin gate with role assignments and an audit trail.

    Usage:
        access = AccessControl(admin_address="0xAdmin")
        access.require_admin(caller, "set_fee_policy")
    """

    admin_address: str = ""

    # Role assignments: role -> set of addresses
    roles: Dict[str, Set[str]] = field(default_factory=dict)

    # Audit log
    role_changes: List[dict] = field(default_factory=list)

    def __post_init__(self) -> None:
        if is_null_address(self.admin_address):
            raise ValueError("Admin address cannot be the null address.")
        self.admin_address = normalize_address(self.admin_address)
        for role in Role:
            self.roles.setdefault(role.value, set())
        self.roles[Role.ADMIN.value].add(self.admin_address)

    def is_admin(self, caller: str) -> bool:
        return normalize_address(caller) == self.admin_address

    def require_admin(self, caller: str, action: str = "") -> None:
        if not self.is_admin(caller):
            logger.warning(
                "Access denied: caller is not admin",
                extra={
                    "event": "access_control.denied",
                    "caller": normalize_address(caller)[:10],
                    "action": action,
                },
            )
            raise Unauthorized(caller, action)

    def has_role(self, role: str, address: str) -> bool:
        return normalize_address(address) in self.roles.get(role, set())

    def require_role(self, role: str, caller: str, action: str = "") -> None:
        if not self.has_role(role, caller):
            logger.warning(
                "Access denied: role not assigned",
                extra={
                    "event": "access_control.role_not_assigned",
                    "caller": normalize_address(caller)[:10],
                    "required_role": role,
                },
            )
            raise Unauthorized(caller, action or role)

    def grant_role(self, caller: str, role: str, address: str) -> bool:
        self.require_admin(caller, "grant_role")
        address_norm = normalize_address(address)
        self.roles.setdefault(role, set()).add(address_norm)
        self._audit("grant", role, address_norm, caller)
        return True

    def revoke_role(self, caller: str, role: str, address: str) -> bool:
        self.require_admin(caller, "revoke_role")
        address_norm = normalize_address(address)
        if role == Role.ADMIN.value and address_norm == self.admin_address:
            raise Unauthorized(caller, "revoke the admin's own admin role")
        self.roles.get(role, set()).discard(address_norm)
        self._audit("revoke", role, address_norm, caller)
        return True

    def transfer_admin(self, caller: str, new_admin: str) -> bool:
        """Hand the admin role to a new address (admin only)."""
        self.require_admin(caller, "transfer_admin")
        if is_null_address(new_admin):
            raise InvalidAsset(new_admin, "new admin cannot be null")
        old_admin = self.admin_address
        self.roles[Role.ADMIN.value].discard(old_admin)
        self.admin_address = normalize_address(new_admin)
        self.roles[Role.ADMIN.value].add(self.admin_address)
        self._audit("transfer_admin", Role.ADMIN.value, self.admin_address, caller)
        return True

    def _audit(self, action: str, role: str, address: str, caller: str) -> None:
        self.role_changes.append({
            "action": action,
            "role": role,
            "address": address,
            "admin": normalize_address(caller),
            "timestamp": time.time(),
        })
        logger.info(
            "Role change",
            extra={
                "event": f"access_control.{action}",
                "role": role,
                "address": address[:10],
                "admin": normalize_address(caller)[:10],
            },
        )
