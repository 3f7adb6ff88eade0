"""
Tests for idempotent account provisioning
"""

from decimal import Decimal

import pytest

from account_service.accounts import AccountType
from account_service.errors import (
    DuplicateAccount, KycNotVerified, ProvisioningIncomplete, ServiceUnavailable, Unauthorized
)
from account_service.lifecycle import AccountLifecycleService
from account_service.principal import RequestContext
from account_service.provisioning import ProvisioningGuard


class FakeKycClient:
    """KYC service stand-in returning a fixed status per customer"""

    VERIFIED_STATUSES = ("VERIFIED", "APPROVED", "COMPLETED")

    def __init__(self, statuses):
        self.statuses = statuses

    def get_kyc_status(self, customer_id, bearer_token=None):
        return self.statuses.get(customer_id)


class TestProvisioningGuard:
    """Test the default account set for verified customers"""

    def test_provisions_both_types(self, guard, admin, event_bus):
        result = guard.provision(admin, 42)

        assert [a.account_type for a in result.accounts] == [AccountType.CURRENT, AccountType.SAVINGS]
        assert result.created == result.accounts
        assert not result.already_provisioned
        assert all(a.customer_id == 42 for a in result.accounts)
        assert all(a.balance == Decimal("0.00") for a in result.accounts)
        assert len(event_bus.get_events("accounts.created")) == 2

    def test_second_delivery_is_a_no_op(self, guard, admin, store, event_bus):
        first = guard.provision(admin, 42)
        second = guard.provision(RequestContext.system(), 42)

        assert second.already_provisioned
        assert second.accounts == first.accounts
        assert store.count() == 2
        assert len(event_bus.get_events("accounts.created")) == 2

    def test_fills_in_missing_type(self, guard, lifecycle, admin, store):
        existing = lifecycle.create_account(admin, 42, AccountType.SAVINGS, "2500")

        result = guard.provision(admin, 42)

        assert [a.account_type for a in result.created] == [AccountType.CURRENT]
        savings = [a for a in result.accounts if a.account_type == AccountType.SAVINGS][0]
        assert savings == existing
        assert store.count() == 2

    def test_seed_balances(self, lifecycle, admin):
        guard = ProvisioningGuard(lifecycle, seed_balances={
            AccountType.CURRENT: Decimal("5000.00"),
            AccountType.SAVINGS: Decimal("1000.00"),
        })
        result = guard.provision(admin, 42)

        balances = {a.account_type: a.balance for a in result.accounts}
        assert balances == {AccountType.CURRENT: Decimal("5000.00"),
                            AccountType.SAVINGS: Decimal("1000.00")}

    def test_customers_cannot_provision(self, guard, customer_ctx, store):
        with pytest.raises(Unauthorized):
            guard.provision(customer_ctx(42), 42)
        assert store.count() == 0

    def test_lost_race_is_treated_as_provisioned(self, store, generator, admin):
        class RacingLifecycle(AccountLifecycleService):
            """Another trigger inserts the CURRENT account just before this one does"""

            def create_account(self, ctx, customer_id, account_type, initial_balance=Decimal("0.00")):
                if account_type == AccountType.CURRENT:
                    super().create_account(ctx, customer_id, account_type, initial_balance)
                    raise DuplicateAccount(customer_id, account_type.value)
                return super().create_account(ctx, customer_id, account_type, initial_balance)

        lifecycle = RacingLifecycle(store, generator)
        result = ProvisioningGuard(lifecycle).provision(admin, 42)

        assert [a.account_type for a in result.created] == [AccountType.SAVINGS]
        assert {a.account_type for a in result.accounts} == {AccountType.CURRENT, AccountType.SAVINGS}
        assert store.count() == 2

    def test_partial_failure_reports_incomplete(self, store, generator, admin):
        class FlakyLifecycle(AccountLifecycleService):
            def create_account(self, ctx, customer_id, account_type, initial_balance=Decimal("0.00")):
                if account_type == AccountType.SAVINGS:
                    raise ServiceUnavailable("customer-service", "timed out")
                return super().create_account(ctx, customer_id, account_type, initial_balance)

        guard = ProvisioningGuard(FlakyLifecycle(store, generator))

        with pytest.raises(ProvisioningIncomplete) as exc_info:
            guard.provision(admin, 42)

        error = exc_info.value
        assert set(error.failures) == {"SAVINGS"}
        assert [a.account_type for a in error.accounts] == [AccountType.CURRENT]
        assert error.retryable
        assert error.status_code == 503

        # A redelivery completes the set without duplicating CURRENT
        result = ProvisioningGuard(AccountLifecycleService(store, generator)).provision(admin, 42)
        assert [a.account_type for a in result.created] == [AccountType.SAVINGS]
        assert store.count() == 2


class TestKycVerification:
    """Test the optional KYC gate on manual provisioning"""

    def test_verified_customer(self, lifecycle, admin):
        guard = ProvisioningGuard(lifecycle, kyc_client=FakeKycClient({42: "VERIFIED"}))
        assert len(guard.provision(admin, 42, verify_kyc=True).created) == 2

    @pytest.mark.parametrize("status", [None, "PENDING", "REJECTED"])
    def test_unverified_customer(self, lifecycle, admin, store, status):
        guard = ProvisioningGuard(lifecycle, kyc_client=FakeKycClient({42: status}))

        with pytest.raises(KycNotVerified):
            guard.provision(admin, 42, verify_kyc=True)
        assert store.count() == 0

    def test_gate_off_skips_kyc(self, lifecycle, admin):
        guard = ProvisioningGuard(lifecycle, kyc_client=FakeKycClient({}))
        assert len(guard.provision(admin, 42).created) == 2
