"""
Customer-facing account endpoints
"""

from fastapi import APIRouter, Depends, Path, status

from .dependencies import (
    AccountSystem, get_account_system, get_request_context, require_customer_id
)
from .schemas import (
    AccountListResponse, AccountResponse, BalanceOperationRequest,
    BalanceOperationResponse, CreateAccountRequest, StatusUpdateRequest
)
from ..accounts import MAX_IDENTIFIER
from ..errors import ValidationFailed
from ..principal import RequestContext


router = APIRouter()


@router.post("/create", status_code=status.HTTP_201_CREATED, response_model=AccountResponse)
def create_account(
    request: CreateAccountRequest,
    ctx: RequestContext = Depends(get_request_context),
    system: AccountSystem = Depends(get_account_system)
):
    """Open an account; customers always open for themselves"""
    customer_id = request.customer_id
    if customer_id is None:
        if ctx.is_admin:
            raise ValidationFailed("customerId is required when an administrator opens an account",
                                   {"field": "customerId"})
        customer_id = require_customer_id(ctx)

    account = system.lifecycle.create_account(
        ctx, customer_id, request.account_type, request.initial_balance
    )
    return AccountResponse.from_account(account, system.lifecycle.minimum_balance_for(account.account_type))


@router.get("/my-accounts", response_model=AccountListResponse)
def get_my_accounts(
    ctx: RequestContext = Depends(get_request_context),
    system: AccountSystem = Depends(get_account_system)
):
    """List the caller's accounts"""
    accounts = system.lifecycle.list_customer_accounts(ctx, require_customer_id(ctx))
    return AccountListResponse.from_accounts(accounts)


@router.get("/my-accounts/{account_type}", response_model=AccountResponse)
def get_my_account_by_type(
    account_type: str,
    ctx: RequestContext = Depends(get_request_context),
    system: AccountSystem = Depends(get_account_system)
):
    """Get the caller's account of one type"""
    account = system.lifecycle.get_customer_account_by_type(
        ctx, require_customer_id(ctx), account_type
    )
    return AccountResponse.from_account(account, system.lifecycle.minimum_balance_for(account.account_type))


@router.get("/details/{account_id}", response_model=AccountResponse)
def get_account_details(
    account_id: int = Path(..., le=MAX_IDENTIFIER),
    ctx: RequestContext = Depends(get_request_context),
    system: AccountSystem = Depends(get_account_system)
):
    """Get one account the caller owns"""
    account = system.lifecycle.get_account(ctx, account_id)
    return AccountResponse.from_account(account, system.lifecycle.minimum_balance_for(account.account_type))


@router.put("/details/{account_id}/status", response_model=AccountResponse)
def update_my_account_status(
    request: StatusUpdateRequest,
    account_id: int = Path(..., le=MAX_IDENTIFIER),
    ctx: RequestContext = Depends(get_request_context),
    system: AccountSystem = Depends(get_account_system)
):
    """Activate or deactivate one of the caller's accounts"""
    account = system.lifecycle.update_status(ctx, account_id, request.account_status, request.reason)
    return AccountResponse.from_account(account)


@router.post("/validate-operation", response_model=BalanceOperationResponse)
def validate_balance_operation(
    request: BalanceOperationRequest,
    ctx: RequestContext = Depends(get_request_context),
    system: AccountSystem = Depends(get_account_system)
):
    """Check whether a credit or debit would be accepted, without applying it"""
    account = system.lifecycle.validate_balance_operation(
        ctx, request.account_id, request.amount, request.operation
    )
    return BalanceOperationResponse(
        allowed=True,
        account_number=account.account_number,
        operation=request.operation.strip().upper(),
        amount=str(request.amount)
    )
