"""
Pydantic schemas for API requests and responses

Fields are exposed in camelCase on the wire; balances travel as decimal strings.
"""

from decimal import Decimal
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..accounts import Account, MAX_IDENTIFIER
from ..lifecycle import AccountPage, AccountStatistics
from ..provisioning import ProvisioningResult


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Request schemas
class CreateAccountRequest(CamelModel):
    customer_id: Optional[int] = Field(None, le=MAX_IDENTIFIER,
                                       description="Target customer; customers may only use their own")
    account_type: str = Field(..., description="Account type (CURRENT, SAVINGS)")
    initial_balance: Decimal = Field(Decimal("0.00"), description="Opening balance")


class StatusUpdateRequest(CamelModel):
    account_status: str = Field(..., description="Requested status")
    reason: Optional[str] = Field(None, max_length=500)


class BalanceUpdateRequest(CamelModel):
    balance: Decimal
    reason: Optional[str] = Field(None, max_length=500, description="Mandatory justification")


class BalanceOperationRequest(CamelModel):
    account_id: int = Field(..., le=MAX_IDENTIFIER)
    amount: Decimal
    operation: str = Field(..., description="CREDIT or DEBIT")


# Response schemas
class AccountResponse(CamelModel):
    account_id: int
    customer_id: int
    account_number: str
    account_type: str
    account_type_display_name: str
    account_status: str
    balance: str
    minimum_balance: Optional[str] = None
    allows_transactions: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_account(cls, account: Account,
                     minimum_balance: Optional[Decimal] = None) -> 'AccountResponse':
        return cls(
            account_id=account.account_id,
            customer_id=account.customer_id,
            account_number=account.account_number,
            account_type=account.account_type.value,
            account_type_display_name=account.account_type.display_name,
            account_status=account.account_status.value,
            balance=str(account.balance),
            minimum_balance=str(minimum_balance) if minimum_balance is not None else None,
            allows_transactions=account.account_status.allows_transactions,
            created_at=account.created_at.isoformat(),
            updated_at=account.updated_at.isoformat()
        )


class AccountListResponse(CamelModel):
    accounts: List[AccountResponse]
    total_accounts: int
    total_balance: str
    current_page: Optional[int] = None
    total_pages: Optional[int] = None
    has_next: Optional[bool] = None
    has_previous: Optional[bool] = None

    @classmethod
    def from_accounts(cls, accounts: List[Account]) -> 'AccountListResponse':
        total = sum((a.balance for a in accounts), Decimal("0.00"))
        return cls(
            accounts=[AccountResponse.from_account(a) for a in accounts],
            total_accounts=len(accounts),
            total_balance=str(total)
        )

    @classmethod
    def from_page(cls, page: AccountPage) -> 'AccountListResponse':
        return cls(
            accounts=[AccountResponse.from_account(a) for a in page.accounts],
            total_accounts=page.total_accounts,
            total_balance=str(page.total_balance),
            current_page=page.page,
            total_pages=page.total_pages,
            has_next=page.has_next,
            has_previous=page.has_previous
        )


class AccountStatsResponse(CamelModel):
    total_accounts: int
    accounts_by_status: Dict[str, int]
    accounts_by_type: Dict[str, int]
    total_balance: str
    total_customers: int
    average_balance_per_account: str
    average_balance_per_customer: str

    @classmethod
    def from_statistics(cls, stats: AccountStatistics) -> 'AccountStatsResponse':
        return cls(
            total_accounts=stats.total_accounts,
            accounts_by_status=stats.by_status,
            accounts_by_type=stats.by_type,
            total_balance=str(stats.total_balance),
            total_customers=stats.total_customers,
            average_balance_per_account=str(stats.average_balance_per_account),
            average_balance_per_customer=str(stats.average_balance_per_customer)
        )


class ProvisioningResponse(CamelModel):
    customer_id: int
    accounts: List[AccountResponse]
    created_accounts: List[str]
    already_provisioned: bool

    @classmethod
    def from_result(cls, result: ProvisioningResult) -> 'ProvisioningResponse':
        return cls(
            customer_id=result.customer_id,
            accounts=[AccountResponse.from_account(a) for a in result.accounts],
            created_accounts=[a.account_number for a in result.created],
            already_provisioned=result.already_provisioned
        )


class BalanceOperationResponse(CamelModel):
    allowed: bool
    account_number: str
    operation: str
    amount: str


class MessageResponse(CamelModel):
    message: str
