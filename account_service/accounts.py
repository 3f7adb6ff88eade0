"""
Account Record Module

The account entity, its fixed product types and its lifecycle statuses.
Balances are Decimal with two decimal places and stored as integer cents.
"""

from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass
from typing import Any, Dict, Optional
from enum import Enum


CENT = Decimal("0.01")

# Identifiers are stored as signed 64-bit integers
MAX_IDENTIFIER = 2 ** 63 - 1


class AccountType(Enum):
    """Banking products offered by the service"""
    CURRENT = "CURRENT"
    SAVINGS = "SAVINGS"

    @property
    def code(self) -> str:
        """Three letter code embedded in account numbers"""
        return _TYPE_CODES[self]

    @property
    def display_name(self) -> str:
        return _TYPE_DISPLAY_NAMES[self]

    @classmethod
    def from_code(cls, code: str) -> Optional['AccountType']:
        for account_type, type_code in _TYPE_CODES.items():
            if type_code == code.upper():
                return account_type
        return None

    @classmethod
    def parse(cls, value: str) -> 'AccountType':
        """Case-insensitive lookup by name"""
        return cls(value.strip().upper())


_TYPE_CODES = {
    AccountType.CURRENT: "CUR",
    AccountType.SAVINGS: "SAV",
}

_TYPE_DISPLAY_NAMES = {
    AccountType.CURRENT: "Current Account",
    AccountType.SAVINGS: "Savings Account",
}


class AccountStatus(Enum):
    """Account lifecycle states"""
    ACTIVE = "ACTIVE"          # Normal operation
    INACTIVE = "INACTIVE"      # Temporarily inactive, no transactions
    SUSPENDED = "SUSPENDED"    # Security or compliance hold
    FROZEN = "FROZEN"          # Balance inquiry only
    CLOSED = "CLOSED"          # Permanently closed

    @property
    def allows_transactions(self) -> bool:
        return self == AccountStatus.ACTIVE

    @property
    def is_terminal(self) -> bool:
        return self == AccountStatus.CLOSED

    @classmethod
    def parse(cls, value: str) -> 'AccountStatus':
        """Case-insensitive lookup by name"""
        return cls(value.strip().upper())


def to_cents(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value())


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


@dataclass
class Account:
    """
    Bank account record.

    account_id is None until the store assigns it on insert.
    """
    customer_id: int
    account_number: str
    account_type: AccountType
    created_at: datetime
    updated_at: datetime
    account_status: AccountStatus = AccountStatus.ACTIVE
    balance: Decimal = Decimal("0.00")
    account_id: Optional[int] = None

    def __post_init__(self):
        self.balance = Decimal(self.balance).quantize(CENT)

    @property
    def is_active(self) -> bool:
        return self.account_status == AccountStatus.ACTIVE

    @property
    def is_closed(self) -> bool:
        return self.account_status == AccountStatus.CLOSED

    @property
    def is_current(self) -> bool:
        return self.account_type == AccountType.CURRENT

    @property
    def is_savings(self) -> bool:
        return self.account_type == AccountType.SAVINGS

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a flat dictionary for storage"""
        return {
            "account_id": self.account_id,
            "customer_id": self.customer_id,
            "account_number": self.account_number,
            "account_type": self.account_type.value,
            "account_status": self.account_status.value,
            "balance_cents": to_cents(self.balance),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Account':
        """Create instance from a stored dictionary"""
        return cls(
            account_id=data["account_id"],
            customer_id=data["customer_id"],
            account_number=data["account_number"],
            account_type=AccountType(data["account_type"]),
            account_status=AccountStatus(data["account_status"]),
            balance=from_cents(data["balance_cents"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )
