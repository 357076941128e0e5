"""
accounts.py - Players and companies

An Account is the identity behind a ledger wallet. Balances are not stored
here: the ledger owns them, keyed by the account's wallet id
("player:<id>" or "company:<id>").
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from .core import AccountNotFound, InvalidInput, InvalidState, PermissionDenied, SYSTEM_WALLET


class AccountKind(Enum):
    PLAYER = "player"
    COMPANY = "company"


class Role(Enum):
    """Player roles, in increasing order of privilege."""
    BANNED = "banned"
    LIMITED = "limited"
    USER = "user"
    MOD = "mod"
    ADMIN = "admin"


@dataclass(frozen=True, slots=True)
class Account:
    """
    A player or a company.

    Attributes:
        account_id: Opaque identifier assigned at creation
        kind: PLAYER or COMPANY
        name: Display name
        owner_id: Owning player (companies only)
        role: Moderation role (players only)
        reputation: 0..1 score weighting bot demand (companies only)
    """
    account_id: str
    kind: AccountKind
    name: str
    owner_id: Optional[str] = None
    role: Role = Role.USER
    reputation: float = 0.5

    def __post_init__(self):
        if not self.account_id or ":" in self.account_id:
            raise InvalidInput(f"Invalid account id: {self.account_id!r}")
        if self.kind == AccountKind.COMPANY and not self.owner_id:
            raise InvalidInput("Company accounts require an owner_id")
        if not 0.0 <= self.reputation <= 1.0:
            raise InvalidInput(f"reputation must be within [0, 1], got {self.reputation}")

    @property
    def wallet(self) -> str:
        return wallet_id(self.kind, self.account_id)

    @property
    def is_player(self) -> bool:
        return self.kind == AccountKind.PLAYER

    @property
    def is_company(self) -> bool:
        return self.kind == AccountKind.COMPANY


def wallet_id(kind: AccountKind, account_id: str) -> str:
    return f"{kind.value}:{account_id}"


def player_wallet(player_id: str) -> str:
    return wallet_id(AccountKind.PLAYER, player_id)


def company_wallet(company_id: str) -> str:
    return wallet_id(AccountKind.COMPANY, company_id)


def parse_wallet(wallet: str) -> Tuple[AccountKind, str]:
    """
    Split a wallet id into (kind, account_id).

    Raises:
        AccountNotFound: For the system wallet or a malformed id
    """
    if wallet == SYSTEM_WALLET or ":" not in wallet:
        raise AccountNotFound(f"Not an account wallet: {wallet}")
    prefix, _, account_id = wallet.partition(":")
    try:
        return AccountKind(prefix), account_id
    except ValueError:
        raise AccountNotFound(f"Unknown wallet kind in {wallet}") from None


def new_player(player_id: str, name: str, role: Role = Role.USER) -> Account:
    return Account(account_id=player_id, kind=AccountKind.PLAYER, name=name, role=role)


def new_company(company_id: str, name: str, owner_id: str, reputation: float = 0.5) -> Account:
    return Account(
        account_id=company_id,
        kind=AccountKind.COMPANY,
        name=name,
        owner_id=owner_id,
        reputation=reputation,
    )


def require_owner(company: Account, player_id: str) -> None:
    """Raise unless player_id owns the company."""
    if not company.is_company:
        raise InvalidState(f"{company.wallet} is not a company")
    if company.owner_id != player_id:
        raise PermissionDenied(f"player {player_id} does not own company {company.account_id}")
