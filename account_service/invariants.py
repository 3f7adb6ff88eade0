"""
Invariant Guard Module

The rules every account mutation must satisfy before it is committed:
the status transition table, balance floors, closing and override rules.
Everything here is pure and raises typed errors; nothing touches storage.
"""

from decimal import Decimal, InvalidOperation
from typing import Dict, FrozenSet, Optional, Union

from .accounts import Account, AccountStatus, AccountType, CENT
from .errors import (
    InsufficientBalance, InvalidAccountOperation, InvalidBalance,
    InvalidStatusTransition, UnauthorizedStatusChange, ValidationFailed
)
from .principal import Role


ADMIN_TRANSITIONS: Dict[AccountStatus, FrozenSet[AccountStatus]] = {
    AccountStatus.ACTIVE: frozenset({
        AccountStatus.INACTIVE, AccountStatus.SUSPENDED,
        AccountStatus.FROZEN, AccountStatus.CLOSED,
    }),
    AccountStatus.INACTIVE: frozenset({AccountStatus.ACTIVE, AccountStatus.CLOSED}),
    AccountStatus.SUSPENDED: frozenset({AccountStatus.ACTIVE, AccountStatus.CLOSED}),
    AccountStatus.FROZEN: frozenset({AccountStatus.ACTIVE, AccountStatus.CLOSED}),
    AccountStatus.CLOSED: frozenset(),
}

CUSTOMER_TRANSITIONS: Dict[AccountStatus, FrozenSet[AccountStatus]] = {
    AccountStatus.ACTIVE: frozenset({AccountStatus.INACTIVE}),
    AccountStatus.INACTIVE: frozenset({AccountStatus.ACTIVE}),
}

TRANSITIONS_BY_ROLE = {
    Role.ADMIN: ADMIN_TRANSITIONS,
    Role.CUSTOMER: CUSTOMER_TRANSITIONS,
}

DEFAULT_MINIMUM_BALANCES = {
    AccountType.SAVINGS: Decimal("1000.00"),
    AccountType.CURRENT: Decimal("5000.00"),
}

# Largest amount accepted anywhere; its cents fit a signed 64-bit column
MAX_AMOUNT = Decimal("9999999999999.99")

Amount = Union[Decimal, int, str]


def is_transition_allowed(current: AccountStatus, requested: AccountStatus, role: Role) -> bool:
    """Check the transition table for a role"""
    return requested in TRANSITIONS_BY_ROLE[role].get(current, frozenset())


def check_status_transition(current: AccountStatus, requested: AccountStatus, role: Role) -> None:
    """
    Validate a requested status change for the caller's role.

    CLOSED is terminal for everybody. A customer asking for anything beyond
    ACTIVE <-> INACTIVE is refused on privilege grounds; an edge missing from
    the administrator table is refused as an invalid transition.
    """
    if current.is_terminal:
        raise InvalidStatusTransition(current.value, requested.value)

    if is_transition_allowed(current, requested, role):
        return

    if role == Role.CUSTOMER:
        raise UnauthorizedStatusChange(current.value, requested.value)

    raise InvalidStatusTransition(current.value, requested.value)


def normalize_amount(value: Amount, field_name: str = "amount") -> Decimal:
    """Convert to a two decimal place Decimal, rejecting finer precision"""
    try:
        amount = Decimal(str(value)) if not isinstance(value, Decimal) else value
    except (InvalidOperation, ValueError):
        raise ValidationFailed(f"{field_name} is not a valid decimal: {value!r}")

    if not amount.is_finite():
        raise ValidationFailed(f"{field_name} must be a finite number")

    if abs(amount) > MAX_AMOUNT:
        raise ValidationFailed(f"{field_name} exceeds the maximum of {MAX_AMOUNT}")

    try:
        quantized = amount.quantize(CENT)
    except InvalidOperation:
        raise ValidationFailed(f"{field_name} is not a valid decimal: {value!r}")

    if amount != quantized:
        raise ValidationFailed(f"{field_name} must have at most 2 decimal places")

    return quantized


def minimum_balance(account_type: AccountType,
                    minimums: Optional[Dict[AccountType, Decimal]] = None) -> Decimal:
    """Minimum balance an account of this type must keep"""
    return (minimums or DEFAULT_MINIMUM_BALANCES)[account_type]


def check_initial_balance(account_type: AccountType, amount: Decimal, minimum: Decimal,
                          enforce_minimum: bool = True) -> None:
    """Validate an opening balance"""
    if amount < 0:
        raise InvalidBalance("Initial balance cannot be negative", requested_balance=amount)

    if enforce_minimum and amount < minimum:
        raise InvalidBalance(
            f"Initial balance {amount} is below minimum required {minimum} "
            f"for {account_type.value} account",
            requested_balance=amount,
            required_minimum=minimum
        )


def check_closable(account: Account) -> None:
    """Closing requires an empty account"""
    if account.balance != 0:
        raise InvalidAccountOperation(
            f"Cannot close account {account.account_number} with non-zero balance {account.balance}",
            {"accountNumber": account.account_number, "currentBalance": str(account.balance)}
        )


def _check_transactable(account: Account, operation: str) -> None:
    if not account.account_status.allows_transactions:
        raise InvalidAccountOperation(
            f"Account {account.account_number} in status {account.account_status.value} "
            f"does not allow {operation.lower()} operations",
            {
                "accountNumber": account.account_number,
                "currentStatus": account.account_status.value,
                "operation": operation,
            }
        )


def _check_positive(amount: Decimal) -> None:
    if amount <= 0:
        raise InvalidBalance("Amount must be positive", requested_balance=amount)


def check_credit(account: Account, amount: Decimal) -> None:
    """Validate a credit against the account's status"""
    _check_positive(amount)
    _check_transactable(account, "CREDIT")


def check_debit(account: Account, amount: Decimal, minimum: Decimal) -> None:
    """Validate a debit against status and the type's minimum balance floor"""
    _check_positive(amount)
    _check_transactable(account, "DEBIT")

    if account.balance - amount < minimum:
        raise InsufficientBalance(
            account_number=account.account_number,
            current_balance=account.balance,
            requested_amount=amount,
            minimum_balance=minimum
        )


def check_balance_override(account: Account, new_balance: Decimal, reason: Optional[str]) -> None:
    """
    Validate an administrative balance override.

    The minimum balance floor does not apply; the zero floor always does.
    """
    if not reason or not reason.strip():
        raise ValidationFailed("A reason is required for a balance override")

    if new_balance < 0:
        raise InvalidBalance("Balance cannot be negative", requested_balance=new_balance)

    if account.is_closed:
        raise InvalidAccountOperation(
            f"Cannot update balance of closed account {account.account_number}",
            {"accountNumber": account.account_number, "currentStatus": account.account_status.value}
        )


def check_deletable(account: Account) -> None:
    """Only empty, closed accounts may be physically removed"""
    if account.balance != 0:
        raise InvalidBalance(
            f"Cannot delete account {account.account_number} with non-zero balance",
            requested_balance=account.balance
        )

    if not account.is_closed:
        raise InvalidAccountOperation(
            f"Can only delete closed accounts; {account.account_number} is {account.account_status.value}",
            {"accountNumber": account.account_number, "currentStatus": account.account_status.value}
        )
