"""
Tests for event publishing and the verification consumer
"""

import json
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from account_service.accounts import Account, AccountStatus, AccountType
from account_service.events import (
    AccountEventPublisher, AccountTopics, EventSchema, InMemoryEventBus, KafkaEventBus,
    KycCompletedConsumer
)
from account_service.errors import ServiceUnavailable
from account_service.provisioning import ProvisioningResult


def kyc_payload(customer_id=42):
    return {
        "customerId": customer_id,
        "eventType": "KYC_COMPLETED",
        "timestamp": "2024-03-01T12:00:00",
        "source": "kyc-service",
        "version": "1.0",
    }


class TestEventSchema:
    """Test the event envelope"""

    def test_to_dict_serializes(self):
        event = EventSchema(
            event_id="e-1",
            event_type="account.created",
            timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
            data={"balance": Decimal("10.00"), "nested": [Decimal("1.50")]}
        )
        data = event.to_dict()

        assert data["timestamp"] == "2024-01-01T00:00:00+00:00"
        assert data["data"] == {"balance": "10.00", "nested": ["1.50"]}
        assert json.dumps(data)
        assert EventSchema.from_dict(data).timestamp == event.timestamp

    def test_from_message_flat_payload(self):
        event = EventSchema.from_message(kyc_payload())

        assert event.event_type == "KYC_COMPLETED"
        assert event.source == "kyc-service"
        assert event.data["customerId"] == 42
        assert event.timestamp == datetime(2024, 3, 1, 12, 0)

    def test_from_message_own_envelope(self):
        original = EventSchema(event_id="e-2", event_type="customer.verified",
                               timestamp=datetime.now(timezone.utc),
                               entity_type="customer", entity_id="9")
        assert EventSchema.from_message(original.to_dict()) == original

    def test_from_message_bad_timestamp(self):
        payload = kyc_payload()
        payload["timestamp"] = "yesterday"
        assert EventSchema.from_message(payload).timestamp.tzinfo is not None


class TestAccountEventPublisher:
    """Test account lifecycle events"""

    def setup_method(self):
        """Set up test fixtures"""
        self.bus = InMemoryEventBus()
        self.publisher = AccountEventPublisher(self.bus)
        now = datetime.now(timezone.utc)
        self.account = Account(customer_id=42, account_number="BANK1CUR042",
                               account_type=AccountType.CURRENT, created_at=now,
                               updated_at=now, balance=Decimal("5000"), account_id=9)

    def test_account_created(self):
        self.publisher.account_created(self.account, correlation_id="corr-1")

        topic, event, key = self.bus.get_events()[0]
        assert topic == AccountTopics.ACCOUNTS_CREATED.value
        assert key == "BANK1CUR042"
        assert event.event_type == "account.created"
        assert event.entity_type == "account"
        assert event.data["customer_id"] == 42
        assert event.data["balance"] == Decimal("5000.00")
        assert event.metadata == {"correlation_id": "corr-1"}

    def test_status_changed(self):
        self.account.account_status = AccountStatus.FROZEN
        self.publisher.status_changed(self.account, AccountStatus.ACTIVE, "fraud review")

        topic, event, _ = self.bus.get_events()[0]
        assert topic == "accounts.status-changed"
        assert event.data["account_status"] == "FROZEN"
        assert event.data["previous_status"] == "ACTIVE"
        assert event.data["reason"] == "fraud review"
        assert event.metadata == {}

    def test_balance_updated(self):
        self.publisher.balance_updated(self.account, Decimal("10.00"), "correction")

        topic, event, _ = self.bus.get_events()[0]
        assert topic == "accounts.balance-updated"
        assert event.to_dict()["data"]["previous_balance"] == "10.00"


class TestInMemoryEventBus:
    """Test the in-memory bus"""

    def test_delivery_and_handler_isolation(self):
        bus = InMemoryEventBus()
        received = []

        def broken(event):
            raise RuntimeError("handler bug")

        bus.subscribe("topic", broken)
        bus.subscribe("topic", received.append)
        event = EventSchema.from_message(kyc_payload())
        bus.publish("topic", event)

        assert received == [event]
        assert len(bus.get_events("topic")) == 1
        bus.clear_events()
        assert bus.get_events() == []

    def test_lifecycle(self):
        bus = InMemoryEventBus()
        assert not bus.is_running()
        bus.start()
        assert bus.is_running()
        bus.stop()
        assert not bus.is_running()


class TestKafkaEventBus:
    """Test Kafka message dispatch without a broker"""

    def test_dispatch_decodes_and_routes(self):
        bus = KafkaEventBus("localhost:9092")
        received = []
        bus.subscribers["customer-verified"] = [received.append]

        bus._dispatch("customer-verified", json.dumps(kyc_payload(7)).encode("utf-8"))
        bus._dispatch("customer-verified", b"not json")
        bus._dispatch("customer-verified", b"[1, 2]")

        assert len(received) == 1
        assert received[0].data["customerId"] == 7


class TestKycCompletedConsumer:
    """Test provisioning from verification events"""

    def setup_consumer(self, event_bus, guard):
        consumer = KycCompletedConsumer(event_bus, guard)
        consumer.start()
        return consumer

    def test_event_provisions_accounts(self, event_bus, guard, store):
        self.setup_consumer(event_bus, guard)

        event_bus.publish("customer-verified", EventSchema.from_message(kyc_payload(42)))

        accounts = store.find_by_customer(42)
        assert {a.account_type for a in accounts} == {AccountType.CURRENT, AccountType.SAVINGS}

    def test_redelivery_creates_nothing(self, event_bus, guard, store):
        consumer = self.setup_consumer(event_bus, guard)
        event = EventSchema.from_message(kyc_payload(42))

        first = consumer.handle(event)
        second = consumer.handle(event)

        assert len(first.created) == 2
        assert second.already_provisioned
        assert store.count() == 2
        assert event_bus.get_events("customer-verified.dlq") == []

    def test_envelope_with_entity_id(self, event_bus, guard, store):
        consumer = self.setup_consumer(event_bus, guard)
        event = EventSchema(event_id="e-5", event_type="customer.verified",
                            timestamp=datetime.now(timezone.utc),
                            entity_type="customer", entity_id="55")

        assert consumer.handle(event).customer_id == 55
        assert store.count() == 2

    @pytest.mark.parametrize("customer_id", [None, "abc", 0, -3, 2 ** 63])
    def test_invalid_customer_id_goes_to_dead_letter(self, event_bus, guard, store, customer_id):
        consumer = self.setup_consumer(event_bus, guard)
        payload = kyc_payload()
        payload["customerId"] = customer_id

        assert consumer.handle(EventSchema.from_message(payload)) is None
        assert store.count() == 0

        (_, dlq_event, _), = event_bus.get_events("customer-verified.dlq")
        assert dlq_event.event_type == "customer_verified.failed"
        assert dlq_event.data["reason"] == "missing or invalid customer id"

    def test_system_token_reaches_provisioning(self, event_bus):
        contexts = []

        class RecordingGuard:
            def provision(self, ctx, customer_id, verify_kyc=False):
                contexts.append(ctx)
                return ProvisioningResult(customer_id=customer_id)

        tokens = iter(["token-1", "token-2"])
        consumer = KycCompletedConsumer(event_bus, RecordingGuard(),
                                        token_provider=lambda: next(tokens))
        event = EventSchema.from_message(kyc_payload(42))

        consumer.handle(event)
        consumer.handle(event)

        assert [c.bearer_token for c in contexts] == ["token-1", "token-2"]
        assert all(c.is_admin and c.user_id == 0 for c in contexts)
        assert contexts[0].correlation_id == event.event_id

    def test_token_failure_goes_to_dead_letter(self, event_bus):
        def broken_provider():
            raise RuntimeError("signing key unavailable")

        consumer = KycCompletedConsumer(event_bus, object(), token_provider=broken_provider)

        assert consumer.handle(EventSchema.from_message(kyc_payload(42))) is None
        (_, dlq_event, _), = event_bus.get_events("customer-verified.dlq")
        assert dlq_event.data["reason"] == "signing key unavailable"

    def test_provisioning_failure_goes_to_dead_letter(self, event_bus):
        class FailingGuard:
            def provision(self, ctx, customer_id, verify_kyc=False):
                raise ServiceUnavailable("customer-service", "timed out")

        consumer = KycCompletedConsumer(event_bus, FailingGuard())
        event = EventSchema.from_message(kyc_payload(42))

        assert consumer.handle(event) is None

        (_, dlq_event, key), = event_bus.get_events("customer-verified.dlq")
        assert key == "42"
        assert dlq_event.data["error_code"] == "SERVICE_UNAVAILABLE"
        assert dlq_event.data["retryable"] is True
        assert dlq_event.metadata["correlation_id"] == event.event_id
        assert dlq_event.data["original_event"]["data"]["customerId"] == 42

    def test_unexpected_error_goes_to_dead_letter(self, event_bus):
        class BrokenGuard:
            def provision(self, ctx, customer_id, verify_kyc=False):
                raise KeyError("bug")

        consumer = KycCompletedConsumer(event_bus, BrokenGuard())
        assert consumer.handle(EventSchema.from_message(kyc_payload(42))) is None

        (_, dlq_event, _), = event_bus.get_events("customer-verified.dlq")
        assert dlq_event.data["error_code"] is None
        assert dlq_event.data["retryable"] is False

    def test_dead_letter_disabled(self, event_bus):
        class BrokenGuard:
            def provision(self, ctx, customer_id, verify_kyc=False):
                raise RuntimeError("bug")

        consumer = KycCompletedConsumer(event_bus, BrokenGuard(), dead_letter_topic=None)
        assert consumer.handle(EventSchema.from_message(kyc_payload(42))) is None
        assert event_bus.get_events() == []
