"""
Account Lifecycle Module

Orchestrates account creation, reads, status changes and balance overrides.
Every operation authorizes the caller first, then checks existence, then
applies the invariant guard, and only then writes inside store.atomic().
For customer callers a missing account and someone else's account are
indistinguishable.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Union
import math

from .accounts import Account, AccountStatus, AccountType, CENT
from .clients import CustomerServiceClient
from .errors import (
    AccountNotFound, AccountNumberExhausted, CustomerNotFound, DuplicateAccount,
    Unauthorized, ValidationFailed
)
from .invariants import (
    Amount, check_balance_override, check_closable, check_credit, check_debit,
    check_deletable, check_initial_balance, check_status_transition,
    minimum_balance, normalize_amount
)
from .logging_config import get_logger, log_action
from .numbering import AccountNumberGenerator
from .principal import RequestContext
from .storage import AccountStore, CUSTOMER_TYPE_CONSTRAINT, UniqueConstraintViolation


logger = get_logger("account_service.lifecycle")

BALANCE_OPERATIONS = ("CREDIT", "DEBIT")


@dataclass
class AccountPage:
    """One page of an administrative account listing"""
    accounts: List[Account]
    total_accounts: int
    page: int
    size: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_accounts / self.size) if self.size else 0

    @property
    def has_next(self) -> bool:
        return self.page + 1 < self.total_pages

    @property
    def has_previous(self) -> bool:
        return self.page > 0

    @property
    def total_balance(self) -> Decimal:
        return sum((a.balance for a in self.accounts), Decimal("0.00"))


@dataclass
class AccountStatistics:
    """Aggregate figures across all accounts"""
    total_accounts: int
    by_status: Dict[str, int] = field(default_factory=dict)
    by_type: Dict[str, int] = field(default_factory=dict)
    total_balance: Decimal = Decimal("0.00")
    total_customers: int = 0

    @property
    def average_balance_per_account(self) -> Decimal:
        if not self.total_accounts:
            return Decimal("0.00")
        return (self.total_balance / self.total_accounts).quantize(CENT)

    @property
    def average_balance_per_customer(self) -> Decimal:
        if not self.total_customers:
            return Decimal("0.00")
        return (self.total_balance / self.total_customers).quantize(CENT)


class AccountLifecycleService:
    """
    Account lifecycle and access-control engine.

    Callers pass a RequestContext to every operation; the service never reads
    identity from anywhere else.
    """

    def __init__(
        self,
        store: AccountStore,
        generator: AccountNumberGenerator,
        customer_client: Optional[CustomerServiceClient] = None,
        minimums: Optional[Dict[AccountType, Decimal]] = None,
        publisher=None,
        insert_retries: int = 3,
        max_page_size: int = 100
    ):
        self.store = store
        self.generator = generator
        self.customer_client = customer_client
        self.minimums = minimums
        self.publisher = publisher
        self.insert_retries = insert_retries
        self.max_page_size = max_page_size

    # Authorization helpers

    def require_admin(self, ctx: RequestContext, action: str) -> None:
        if not ctx.is_admin:
            log_action(logger, "warning", "Admin access required",
                       ctx=ctx, action=action)
            raise Unauthorized("Admin access required for this operation")

    def _authorize_customer(self, ctx: RequestContext, customer_id: int, action: str) -> None:
        if ctx.is_admin or ctx.owns(customer_id):
            return
        log_action(logger, "warning", "Access to another customer's accounts denied",
                   ctx=ctx, action=action, resource=f"customer:{customer_id}")
        raise Unauthorized("Customers can only access their own accounts")

    def _deny_account(self, ctx: RequestContext, action: str, resource: str) -> Unauthorized:
        log_action(logger, "warning", "Account access denied",
                   ctx=ctx, action=action, resource=resource)
        return Unauthorized("Access denied to account")

    def _load_for(self, ctx: RequestContext, account_id: int, action: str) -> Account:
        """Load an account the caller may see, without disclosing existence to customers"""
        account = self.store.load(account_id)
        if ctx.is_admin:
            if account is None:
                raise AccountNotFound(f"Account not found with ID: {account_id}", account_id=account_id)
            return account

        if account is None or not ctx.owns(account.customer_id):
            raise self._deny_account(ctx, action, f"account:{account_id}")
        return account

    def minimum_balance_for(self, account_type: AccountType) -> Decimal:
        return minimum_balance(account_type, self.minimums)

    def _publish(self, method: str, *args) -> None:
        """Publish an account event; a committed change is never undone by a publish failure"""
        if self.publisher is None:
            return
        try:
            getattr(self.publisher, method)(*args)
        except Exception:
            logger.exception(f"Failed to publish {method} event")

    # Creation

    def create_account(self, ctx: RequestContext, customer_id: int,
                       account_type: Union[AccountType, str],
                       initial_balance: Amount = Decimal("0.00")) -> Account:
        """
        Open a new account for a customer.

        Args:
            ctx: Caller context
            customer_id: Owning customer
            account_type: CURRENT or SAVINGS
            initial_balance: Opening balance; customers must meet the type minimum

        Returns:
            The persisted account in ACTIVE status

        Raises:
            Unauthorized: customer creating for somebody else
            CustomerNotFound: the customer service does not know the customer
            DuplicateAccount: the customer already holds this account type
            InvalidBalance: negative balance, or below minimum for a customer
            AccountNumberExhausted: no free account number could be found
        """
        self._authorize_customer(ctx, customer_id, "create_account")

        if isinstance(account_type, str):
            account_type = parse_account_type(account_type)
        amount = normalize_amount(initial_balance, "initialBalance")

        if self.customer_client is not None:
            if not self.customer_client.customer_exists(customer_id, ctx.bearer_token):
                raise CustomerNotFound(customer_id)

        with self.store.atomic():
            if self.store.find_by_customer_and_type(customer_id, account_type) is not None:
                raise DuplicateAccount(customer_id, account_type.value)

            check_initial_balance(account_type, amount, self.minimum_balance_for(account_type),
                                  enforce_minimum=not ctx.is_admin)

            account = self._insert_new(customer_id, account_type, amount)

        log_action(logger, "info",
                   f"Created {account_type.value} account {account.account_number} for customer {customer_id}",
                   ctx=ctx, action="create_account",
                   resource=f"account:{account.account_id}")
        self._publish("account_created", account, ctx.correlation_id)
        return account

    def _insert_new(self, customer_id: int, account_type: AccountType, amount: Decimal) -> Account:
        """Generate a number and insert, regenerating when the store reports a number conflict"""
        attempts = self.insert_retries + 1
        for attempt in range(1, attempts + 1):
            account_number = self.generator.generate(account_type, self.store.exists_account_number)
            now = datetime.now(timezone.utc)
            account = Account(
                customer_id=customer_id,
                account_number=account_number,
                account_type=account_type,
                account_status=AccountStatus.ACTIVE,
                balance=amount,
                created_at=now,
                updated_at=now
            )
            try:
                return self.store.insert(account)
            except UniqueConstraintViolation as e:
                if e.constraint == CUSTOMER_TYPE_CONSTRAINT:
                    raise DuplicateAccount(customer_id, account_type.value) from e
                logger.warning(
                    f"Account number {account_number} taken concurrently "
                    f"(attempt {attempt}/{attempts}), regenerating"
                )

        raise AccountNumberExhausted(account_type.value, attempts)

    # Reads

    def get_account(self, ctx: RequestContext, account_id: int) -> Account:
        """Get an account the caller owns, or any account for an admin"""
        return self._load_for(ctx, account_id, "get_account")

    def get_account_by_number(self, ctx: RequestContext, account_number: str) -> Account:
        account = self.store.load_by_number(account_number)
        if ctx.is_admin:
            if account is None:
                raise AccountNotFound(f"Account not found with number: {account_number}",
                                      account_number=account_number)
            return account

        if account is None or not ctx.owns(account.customer_id):
            raise self._deny_account(ctx, "get_account_by_number", f"account:{account_number}")
        return account

    def list_customer_accounts(self, ctx: RequestContext, customer_id: int) -> List[Account]:
        """All accounts of a customer"""
        self._authorize_customer(ctx, customer_id, "list_customer_accounts")
        return self.store.find_by_customer(customer_id)

    def get_customer_account_by_type(self, ctx: RequestContext, customer_id: int,
                                     account_type: Union[AccountType, str]) -> Account:
        self._authorize_customer(ctx, customer_id, "get_customer_account_by_type")
        if isinstance(account_type, str):
            account_type = parse_account_type(account_type)

        account = self.store.find_by_customer_and_type(customer_id, account_type)
        if account is None:
            raise AccountNotFound(f"No {account_type.value} account found for customer {customer_id}")
        return account

    def list_accounts(self, ctx: RequestContext, status: Optional[AccountStatus] = None,
                      account_type: Optional[AccountType] = None,
                      page: int = 0, size: int = 20) -> AccountPage:
        """Paginated listing of all accounts for administrators"""
        self.require_admin(ctx, "list_accounts")

        if page < 0:
            raise ValidationFailed("page must not be negative", {"page": page})
        if size < 1 or size > self.max_page_size:
            raise ValidationFailed(f"size must be between 1 and {self.max_page_size}", {"size": size})

        accounts = self.store.find(status=status, account_type=account_type,
                                   offset=page * size, limit=size)
        total = self.store.count(status=status, account_type=account_type)
        return AccountPage(accounts=accounts, total_accounts=total, page=page, size=size)

    def get_statistics(self, ctx: RequestContext) -> AccountStatistics:
        self.require_admin(ctx, "get_statistics")

        accounts = self.store.load_all()
        stats = AccountStatistics(
            total_accounts=len(accounts),
            by_status={s.value: 0 for s in AccountStatus},
            by_type={t.value: 0 for t in AccountType},
        )
        customers = set()
        for account in accounts:
            stats.by_status[account.account_status.value] += 1
            stats.by_type[account.account_type.value] += 1
            stats.total_balance += account.balance
            customers.add(account.customer_id)
        stats.total_customers = len(customers)
        return stats

    def verify_ownership(self, account_id: int, customer_id: Optional[int]) -> bool:
        """Check if an account belongs to a customer resolved server-side"""
        if customer_id is None:
            return False
        account = self.store.load(account_id)
        return account is not None and account.customer_id == customer_id

    # Mutations

    def update_status(self, ctx: RequestContext, account_id: int,
                      new_status: Union[AccountStatus, str],
                      reason: Optional[str] = None) -> Account:
        """
        Move an account along the status state machine.

        Customers may only toggle ACTIVE and INACTIVE on their own accounts.
        CLOSED is terminal for every caller, and closing needs a zero balance.
        """
        if isinstance(new_status, str):
            new_status = parse_account_status(new_status)

        with self.store.atomic():
            account = self._load_for(ctx, account_id, "update_status")
            previous = account.account_status

            check_status_transition(previous, new_status, ctx.principal.role)
            if new_status == AccountStatus.CLOSED:
                check_closable(account)

            account.account_status = new_status
            account.updated_at = datetime.now(timezone.utc)
            self.store.update(account)

        log_action(logger, "info",
                   f"Account {account.account_number} status changed {previous.value} -> {new_status.value}",
                   ctx=ctx, action="update_status",
                   resource=f"account:{account_id}",
                   extra={"reason": reason} if reason else None)
        self._publish("status_changed", account, previous, reason, ctx.correlation_id)
        return account

    def update_balance(self, ctx: RequestContext, account_id: int,
                       new_balance: Amount, reason: Optional[str]) -> Account:
        """
        Administrative balance override.

        May set the balance below the type minimum (logged), never below zero.
        """
        self.require_admin(ctx, "update_balance")
        amount = normalize_amount(new_balance, "balance")

        with self.store.atomic():
            account = self._load_for(ctx, account_id, "update_balance")
            check_balance_override(account, amount, reason)

            minimum = self.minimum_balance_for(account.account_type)
            if amount < minimum:
                logger.warning(
                    f"Admin setting balance below minimum {minimum} for account {account.account_number}"
                )

            previous = account.balance
            account.balance = amount
            account.updated_at = datetime.now(timezone.utc)
            self.store.update(account)

        log_action(logger, "info",
                   f"Account {account.account_number} balance changed {previous} -> {amount}",
                   ctx=ctx, action="update_balance",
                   resource=f"account:{account_id}",
                   extra={"reason": reason})
        self._publish("balance_updated", account, previous, reason, ctx.correlation_id)
        return account

    def delete_account(self, ctx: RequestContext, account_id: int) -> None:
        """Physically remove an empty, closed account"""
        self.require_admin(ctx, "delete_account")

        with self.store.atomic():
            account = self._load_for(ctx, account_id, "delete_account")
            check_deletable(account)
            self.store.delete(account_id)

        log_action(logger, "info", f"Deleted account {account.account_number}",
                   ctx=ctx, action="delete_account",
                   resource=f"account:{account_id}")

    def validate_balance_operation(self, ctx: RequestContext, account_id: int,
                                   amount: Amount, operation: str) -> Account:
        """
        Pre-check a CREDIT or DEBIT for another service without mutating anything.

        Returns the account when the operation would be allowed.
        """
        operation = (operation or "").strip().upper()
        if operation not in BALANCE_OPERATIONS:
            raise ValidationFailed(
                f"operation must be one of {', '.join(BALANCE_OPERATIONS)}",
                {"operation": operation}
            )
        value = normalize_amount(amount)

        account = self._load_for(ctx, account_id, "validate_balance_operation")
        if operation == "CREDIT":
            check_credit(account, value)
        else:
            check_debit(account, value, self.minimum_balance_for(account.account_type))
        return account


def parse_account_type(value: str) -> AccountType:
    try:
        return AccountType.parse(value)
    except ValueError:
        raise ValidationFailed(f"Unknown account type: {value}", {"accountType": value})


def parse_account_status(value: str) -> AccountStatus:
    try:
        return AccountStatus.parse(value)
    except ValueError:
        raise ValidationFailed(f"Unknown account status: {value}", {"accountStatus": value})
