"""
Shared fixtures for the account service tests
"""

import random

import pytest

from account_service.events import AccountEventPublisher, InMemoryEventBus
from account_service.lifecycle import AccountLifecycleService
from account_service.numbering import AccountNumberGenerator
from account_service.principal import (
    AuthenticatedPrincipal, PrincipalResolver, RequestContext, Role
)
from account_service.provisioning import ProvisioningGuard
from account_service.storage import InMemoryAccountStore


TEST_SECRET = "test-secret-key-that-is-at-least-32-bytes-long"


@pytest.fixture
def test_secret():
    return TEST_SECRET


@pytest.fixture
def resolver():
    return PrincipalResolver(TEST_SECRET)


@pytest.fixture
def customer_ctx():
    """Factory for customer contexts whose token subject is the customer id"""
    def make(customer_id: int) -> RequestContext:
        principal = AuthenticatedPrincipal(user_id=customer_id, role=Role.CUSTOMER,
                                           username=f"customer{customer_id}")
        return RequestContext(principal=principal, customer_id=customer_id)
    return make


@pytest.fixture
def admin():
    principal = AuthenticatedPrincipal(user_id=1, role=Role.ADMIN, username="admin")
    return RequestContext(principal=principal)


@pytest.fixture
def store():
    return InMemoryAccountStore()


@pytest.fixture
def generator():
    return AccountNumberGenerator(prefix="BANK1", sequence_length=3,
                                  max_attempts=100, rng=random.Random(1234))


@pytest.fixture
def event_bus():
    bus = InMemoryEventBus()
    bus.start()
    return bus


@pytest.fixture
def lifecycle(store, generator, event_bus):
    return AccountLifecycleService(store, generator,
                                   publisher=AccountEventPublisher(event_bus))


@pytest.fixture
def guard(lifecycle):
    return ProvisioningGuard(lifecycle)
