"""
permissions.py - What each player role may do
"""

from __future__ import annotations
from enum import Enum
from typing import Dict, FrozenSet

from .accounts import Account, Role
from .core import PermissionDenied


class Capability(Enum):
    TRADE = "trade"
    TRANSFER = "transfer"
    BORROW = "borrow"
    CREATE_ASSET = "create_asset"
    MODERATE = "moderate"
    ADMIN = "admin"


_USER = frozenset({Capability.TRADE, Capability.TRANSFER, Capability.BORROW, Capability.CREATE_ASSET})

ROLE_CAPABILITIES: Dict[Role, FrozenSet[Capability]] = {
    Role.BANNED: frozenset(),
    Role.LIMITED: frozenset({Capability.TRANSFER}),
    Role.USER: _USER,
    Role.MOD: _USER | {Capability.MODERATE},
    Role.ADMIN: frozenset(Capability),
}


def has_capability(account: Account, capability: Capability) -> bool:
    """Companies act through their owner and have no role of their own."""
    if not account.is_player:
        return False
    return capability in ROLE_CAPABILITIES[account.role]


def require_capability(account: Account, capability: Capability) -> None:
    """
    Raises:
        PermissionDenied: If the account's role does not grant capability
    """
    if not has_capability(account, capability):
        raise PermissionDenied(
            f"{account.wallet} ({account.role.value}) may not {capability.value}"
        )
