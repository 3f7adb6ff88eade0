"""
Account Provisioning Module

Ensures that a "customer verified" signal leaves the customer with exactly one
CURRENT and one SAVINGS account, however often the signal is delivered and
however many triggers race each other.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

from .accounts import Account, AccountType
from .clients import KycServiceClient
from .errors import DuplicateAccount, KycNotVerified, ProvisioningIncomplete
from .lifecycle import AccountLifecycleService
from .logging_config import get_logger, log_action
from .principal import RequestContext


logger = get_logger("account_service.provisioning")

PROVISIONED_TYPES = (AccountType.CURRENT, AccountType.SAVINGS)


@dataclass
class ProvisioningResult:
    """Accounts held by the customer after provisioning, and which of them are new"""
    customer_id: int
    accounts: List[Account] = field(default_factory=list)
    created: List[Account] = field(default_factory=list)

    @property
    def already_provisioned(self) -> bool:
        return not self.created


class ProvisioningGuard:
    """Idempotent creation of the default account set for a verified customer"""

    def __init__(
        self,
        lifecycle: AccountLifecycleService,
        seed_balances: Optional[Dict[AccountType, Decimal]] = None,
        kyc_client: Optional[KycServiceClient] = None
    ):
        self.lifecycle = lifecycle
        self.seed_balances = seed_balances or {}
        self.kyc_client = kyc_client

    def provision(self, ctx: RequestContext, customer_id: int,
                  verify_kyc: bool = False) -> ProvisioningResult:
        """
        Create whichever default account types the customer is missing.

        Args:
            ctx: Admin or system context
            customer_id: Verified customer
            verify_kyc: Ask the KYC service before creating anything

        Returns:
            ProvisioningResult with every account the customer now holds

        Raises:
            Unauthorized: caller is not an admin
            KycNotVerified: verify_kyc set and the customer is not verified
            ProvisioningIncomplete: some type failed for a reason other than
                having been created concurrently
        """
        self.lifecycle.require_admin(ctx, "provision")

        if verify_kyc and self.kyc_client is not None:
            status = self.kyc_client.get_kyc_status(customer_id, ctx.bearer_token)
            if status not in KycServiceClient.VERIFIED_STATUSES:
                raise KycNotVerified(customer_id, status)

        existing = {a.account_type: a for a in self.lifecycle.store.find_by_customer(customer_id)}
        missing = [t for t in PROVISIONED_TYPES if t not in existing]

        if not missing:
            log_action(logger, "info", f"Customer {customer_id} already provisioned",
                       ctx=ctx, action="provision",
                       resource=f"customer:{customer_id}")
            return ProvisioningResult(customer_id=customer_id,
                                      accounts=_ordered(existing.values()))

        created: List[Account] = []
        failures: Dict[str, Exception] = {}

        for account_type in missing:
            seed = self.seed_balances.get(account_type, Decimal("0.00"))
            try:
                account = self.lifecycle.create_account(ctx, customer_id, account_type, seed)
                created.append(account)
                existing[account_type] = account
            except DuplicateAccount:
                # Lost a race with a concurrent trigger; the other writer's account stands
                winner = self.lifecycle.store.find_by_customer_and_type(customer_id, account_type)
                if winner is not None:
                    existing[account_type] = winner
                logger.info(f"{account_type.value} account for customer {customer_id} "
                            f"created concurrently, treating as provisioned")
            except Exception as e:
                logger.error(f"Failed to provision {account_type.value} account "
                             f"for customer {customer_id}: {e}")
                failures[account_type.value] = e

        accounts = _ordered(existing.values())
        if failures:
            raise ProvisioningIncomplete(customer_id, failures, accounts)

        log_action(logger, "info",
                   f"Provisioned {len(created)} account(s) for customer {customer_id}",
                   ctx=ctx, action="provision",
                   resource=f"customer:{customer_id}",
                   extra={"created": [a.account_number for a in created]})
        return ProvisioningResult(customer_id=customer_id, accounts=accounts, created=created)


def _ordered(accounts) -> List[Account]:
    return sorted(accounts, key=lambda a: PROVISIONED_TYPES.index(a.account_type))
