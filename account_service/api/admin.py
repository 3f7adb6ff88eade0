"""
Administrative account endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, Response, status

from .dependencies import AccountSystem, get_account_system, require_admin
from .schemas import (
    AccountListResponse, AccountResponse, AccountStatsResponse, BalanceUpdateRequest,
    MessageResponse, ProvisioningResponse, StatusUpdateRequest
)
from ..accounts import MAX_IDENTIFIER
from ..lifecycle import parse_account_status, parse_account_type
from ..principal import RequestContext


router = APIRouter()


@router.get("/all", response_model=AccountListResponse)
def list_all_accounts(
    account_status: Optional[str] = Query(None, alias="status"),
    account_type: Optional[str] = Query(None, alias="type"),
    page: int = Query(0),
    size: int = Query(20),
    ctx: RequestContext = Depends(require_admin),
    system: AccountSystem = Depends(get_account_system)
):
    """Paginated listing with optional status and type filters"""
    page_result = system.lifecycle.list_accounts(
        ctx,
        status=parse_account_status(account_status) if account_status else None,
        account_type=parse_account_type(account_type) if account_type else None,
        page=page,
        size=size
    )
    return AccountListResponse.from_page(page_result)


@router.get("/customer/{customer_id}", response_model=AccountListResponse)
def get_customer_accounts(
    customer_id: int = Path(..., le=MAX_IDENTIFIER),
    ctx: RequestContext = Depends(require_admin),
    system: AccountSystem = Depends(get_account_system)
):
    accounts = system.lifecycle.list_customer_accounts(ctx, customer_id)
    return AccountListResponse.from_accounts(accounts)


@router.get("/stats", response_model=AccountStatsResponse)
def get_account_statistics(
    ctx: RequestContext = Depends(require_admin),
    system: AccountSystem = Depends(get_account_system)
):
    return AccountStatsResponse.from_statistics(system.lifecycle.get_statistics(ctx))


@router.get("/number/{account_number}", response_model=AccountResponse)
def get_account_by_number(
    account_number: str,
    ctx: RequestContext = Depends(require_admin),
    system: AccountSystem = Depends(get_account_system)
):
    account = system.lifecycle.get_account_by_number(ctx, account_number)
    return AccountResponse.from_account(account, system.lifecycle.minimum_balance_for(account.account_type))


@router.post("/create-for-customer/{customer_id}", response_model=ProvisioningResponse)
def create_accounts_for_customer(
    response: Response,
    customer_id: int = Path(..., le=MAX_IDENTIFIER),
    ctx: RequestContext = Depends(require_admin),
    system: AccountSystem = Depends(get_account_system)
):
    """Manually trigger provisioning of the default account set"""
    result = system.provisioning.provision(
        ctx, customer_id,
        verify_kyc=system.config.verify_kyc_on_manual_provisioning
    )
    response.status_code = status.HTTP_200_OK if result.already_provisioned else status.HTTP_201_CREATED
    return ProvisioningResponse.from_result(result)


@router.get("/{account_id}", response_model=AccountResponse)
def get_account(
    account_id: int = Path(..., le=MAX_IDENTIFIER),
    ctx: RequestContext = Depends(require_admin),
    system: AccountSystem = Depends(get_account_system)
):
    account = system.lifecycle.get_account(ctx, account_id)
    return AccountResponse.from_account(account, system.lifecycle.minimum_balance_for(account.account_type))


@router.put("/{account_id}/status", response_model=AccountResponse)
def update_account_status(
    request: StatusUpdateRequest,
    account_id: int = Path(..., le=MAX_IDENTIFIER),
    ctx: RequestContext = Depends(require_admin),
    system: AccountSystem = Depends(get_account_system)
):
    account = system.lifecycle.update_status(ctx, account_id, request.account_status, request.reason)
    return AccountResponse.from_account(account)


@router.put("/{account_id}/balance", response_model=AccountResponse)
def update_account_balance(
    request: BalanceUpdateRequest,
    account_id: int = Path(..., le=MAX_IDENTIFIER),
    ctx: RequestContext = Depends(require_admin),
    system: AccountSystem = Depends(get_account_system)
):
    """Override a balance; the reason is mandatory"""
    account = system.lifecycle.update_balance(ctx, account_id, request.balance, request.reason)
    return AccountResponse.from_account(account, system.lifecycle.minimum_balance_for(account.account_type))


@router.delete("/{account_id}", response_model=MessageResponse)
def delete_account(
    account_id: int = Path(..., le=MAX_IDENTIFIER),
    ctx: RequestContext = Depends(require_admin),
    system: AccountSystem = Depends(get_account_system)
):
    """Delete an empty, closed account"""
    system.lifecycle.delete_account(ctx, account_id)
    return MessageResponse(message=f"Account {account_id} deleted")
