"""
Event Integration Module

Event-driven integration via Apache Kafka: publishes account events and
consumes the "customer verified" signal that triggers provisioning.
Provides an abstract bus with in-memory (testing) and Kafka implementations.
"""

import json
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Any, Callable

from confluent_kafka import Producer, Consumer, KafkaError

from .accounts import Account, AccountStatus, MAX_IDENTIFIER
from .errors import AccountServiceError
from .logging_config import get_logger, log_action
from .principal import RequestContext
from .provisioning import ProvisioningGuard, ProvisioningResult


logger = get_logger("account_service.events")


class AccountTopics(Enum):
    """Topics the account service publishes to"""
    ACCOUNTS_CREATED = "accounts.created"
    ACCOUNTS_STATUS_CHANGED = "accounts.status-changed"
    ACCOUNTS_BALANCE_UPDATED = "accounts.balance-updated"


@dataclass
class EventSchema:
    """CloudEvents-inspired event envelope"""
    event_id: str
    event_type: str
    timestamp: datetime
    source: str = "account-service"
    version: str = "1.0"
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        result = asdict(self)
        result['timestamp'] = self.timestamp.isoformat()
        result['data'] = _serialize_decimals(result['data'])
        result['metadata'] = _serialize_decimals(result['metadata'])
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EventSchema':
        """Create from dictionary"""
        data = data.copy()
        if 'timestamp' in data and isinstance(data['timestamp'], str):
            data['timestamp'] = datetime.fromisoformat(data['timestamp'])
        return cls(**data)

    @classmethod
    def from_message(cls, payload: Dict[str, Any]) -> 'EventSchema':
        """
        Build an event from a consumed message.

        Accepts our own envelope as well as the flat payload other services
        publish ({"customerId": 42, "eventType": "KYC_COMPLETED", ...}).
        """
        if "event_id" in payload and "event_type" in payload:
            return cls.from_dict(payload)

        timestamp = datetime.now(timezone.utc)
        raw_timestamp = payload.get("timestamp")
        if isinstance(raw_timestamp, str):
            try:
                timestamp = datetime.fromisoformat(raw_timestamp)
            except ValueError:
                logger.debug(f"Unparseable event timestamp {raw_timestamp!r}, using receive time")

        return cls(
            event_id=str(payload.get("eventId") or uuid.uuid4()),
            event_type=str(payload.get("eventType") or "KYC_COMPLETED"),
            timestamp=timestamp,
            source=str(payload.get("source") or "unknown"),
            version=str(payload.get("version") or "1.0"),
            data=dict(payload),
        )


def _serialize_decimals(obj: Any) -> Any:
    """Recursively serialize Decimal objects to strings"""
    if isinstance(obj, Decimal):
        return str(obj)
    elif isinstance(obj, dict):
        return {k: _serialize_decimals(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_serialize_decimals(item) for item in obj]
    return obj


class EventBus(ABC):
    """Abstract event bus interface"""

    @abstractmethod
    def publish(self, topic: str, event: EventSchema, key: Optional[str] = None) -> None:
        """Publish an event to a topic"""
        pass

    @abstractmethod
    def subscribe(self, topic: str, handler: Callable[[EventSchema], None]) -> None:
        """Subscribe to a topic with a handler function"""
        pass

    @abstractmethod
    def start(self) -> None:
        """Start the event bus"""
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop the event bus"""
        pass

    @abstractmethod
    def is_running(self) -> bool:
        """Check if the event bus is running"""
        pass


class InMemoryEventBus(EventBus):
    """In-memory event bus for testing"""

    def __init__(self):
        self.events: List[tuple] = []  # (topic, event, key)
        self.subscribers: Dict[str, List[Callable]] = {}
        self.running = False
        self._lock = threading.RLock()

    def publish(self, topic: str, event: EventSchema, key: Optional[str] = None) -> None:
        """Record the event and deliver it to subscribers synchronously"""
        with self._lock:
            self.events.append((topic, event, key))
            handlers = list(self.subscribers.get(topic, []))

        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(f"Error in event handler for {topic}")

    def subscribe(self, topic: str, handler: Callable[[EventSchema], None]) -> None:
        with self._lock:
            self.subscribers.setdefault(topic, []).append(handler)

    def start(self) -> None:
        self.running = True

    def stop(self) -> None:
        self.running = False

    def is_running(self) -> bool:
        return self.running

    def get_events(self, topic: Optional[str] = None) -> List[tuple]:
        """Get all events or events for a specific topic"""
        with self._lock:
            if topic:
                return [(t, e, k) for t, e, k in self.events if t == topic]
            return self.events.copy()

    def clear_events(self) -> None:
        """Clear all events (for testing)"""
        with self._lock:
            self.events.clear()


class KafkaEventBus(EventBus):
    """Kafka event bus backed by confluent-kafka"""

    def __init__(self, bootstrap_servers: str, client_id: str = "account-service",
                 group_id: str = "account-service-group", **config):
        self.bootstrap_servers = bootstrap_servers
        self.client_id = client_id
        self.group_id = group_id
        self.config = config
        self.producer: Optional[Producer] = None
        self.consumers: Dict[str, Consumer] = {}
        self.subscribers: Dict[str, List[Callable]] = {}
        self.running = False
        self.consumer_threads: List[threading.Thread] = []
        self._lock = threading.RLock()

    def _create_producer(self) -> Producer:
        producer_config = {
            'bootstrap.servers': self.bootstrap_servers,
            'client.id': self.client_id,
            **self.config
        }
        return Producer(producer_config)

    def _create_consumer(self) -> Consumer:
        consumer_config = {
            'bootstrap.servers': self.bootstrap_servers,
            'group.id': self.group_id,
            'auto.offset.reset': 'earliest',
            # Offsets are committed after the handlers ran
            'enable.auto.commit': False,
            **self.config
        }
        return Consumer(consumer_config)

    def publish(self, topic: str, event: EventSchema, key: Optional[str] = None) -> None:
        """Publish event to Kafka"""
        with self._lock:
            if not self.producer:
                self.producer = self._create_producer()
            producer = self.producer

        message = json.dumps(event.to_dict())

        def delivery_callback(err, msg):
            if err:
                logger.error(f"Failed to publish event to {topic}: {err}")
            else:
                logger.debug(f"Event published to {topic}:{msg.partition()}:{msg.offset()}")

        producer.produce(topic, message, key=key, callback=delivery_callback)
        producer.flush()

    def subscribe(self, topic: str, handler: Callable[[EventSchema], None]) -> None:
        """Subscribe to a topic"""
        with self._lock:
            self.subscribers.setdefault(topic, []).append(handler)

            if topic not in self.consumers:
                consumer = self._create_consumer()
                consumer.subscribe([topic])
                self.consumers[topic] = consumer

                if self.running:
                    self._start_consumer_thread(topic)

    def _dispatch(self, topic: str, raw: bytes) -> None:
        try:
            payload = json.loads(raw.decode('utf-8'))
            if not isinstance(payload, dict):
                raise ValueError("message is not a JSON object")
            event = EventSchema.from_message(payload)
        except (ValueError, TypeError, UnicodeDecodeError):
            logger.exception(f"Discarding undecodable message from {topic}")
            return

        for handler in list(self.subscribers.get(topic, [])):
            try:
                handler(event)
            except Exception:
                logger.exception(f"Error in event handler for {topic}")

    def _start_consumer_thread(self, topic: str) -> None:
        """Start consumer thread for a topic"""
        def consume_messages():
            consumer = self.consumers[topic]
            while self.running:
                msg = consumer.poll(1.0)
                if msg is None:
                    continue

                if msg.error():
                    if msg.error().code() != KafkaError._PARTITION_EOF:
                        logger.error(f"Consumer error on {topic}: {msg.error()}")
                    continue

                self._dispatch(topic, msg.value())
                consumer.commit(message=msg, asynchronous=False)

            consumer.close()

        thread = threading.Thread(target=consume_messages, name=f"kafka-consumer-{topic}")
        thread.daemon = True
        thread.start()
        self.consumer_threads.append(thread)

    def start(self) -> None:
        """Start the event bus"""
        with self._lock:
            self.running = True
            for topic in self.consumers:
                self._start_consumer_thread(topic)
        logger.info("KafkaEventBus started")

    def stop(self) -> None:
        """Stop the event bus; consumer threads close their consumers on exit"""
        self.running = False

        for thread in self.consumer_threads:
            thread.join(timeout=5.0)
        self.consumer_threads.clear()

        if self.producer:
            self.producer.flush()

        logger.info("KafkaEventBus stopped")

    def is_running(self) -> bool:
        return self.running


class AccountEventPublisher:
    """Publishes account lifecycle events"""

    def __init__(self, event_bus: EventBus):
        self.event_bus = event_bus

    def _create_event(self, event_type: str, account: Account, data: Dict[str, Any],
                      correlation_id: Optional[str] = None) -> EventSchema:
        return EventSchema(
            event_id=str(uuid.uuid4()),
            event_type=event_type,
            timestamp=datetime.now(timezone.utc),
            entity_type="account",
            entity_id=str(account.account_id),
            data={
                'account_number': account.account_number,
                'customer_id': account.customer_id,
                'account_type': account.account_type.value,
                'account_status': account.account_status.value,
                'balance': account.balance,
                **data
            },
            metadata={'correlation_id': correlation_id} if correlation_id else {}
        )

    def account_created(self, account: Account, correlation_id: Optional[str] = None) -> None:
        event = self._create_event("account.created", account, {}, correlation_id)
        self.event_bus.publish(AccountTopics.ACCOUNTS_CREATED.value, event, key=account.account_number)

    def status_changed(self, account: Account, previous: AccountStatus,
                       reason: Optional[str] = None, correlation_id: Optional[str] = None) -> None:
        event = self._create_event(
            "account.status_changed", account,
            {'previous_status': previous.value, 'reason': reason},
            correlation_id
        )
        self.event_bus.publish(AccountTopics.ACCOUNTS_STATUS_CHANGED.value, event,
                               key=account.account_number)

    def balance_updated(self, account: Account, previous_balance: Decimal,
                        reason: Optional[str] = None, correlation_id: Optional[str] = None) -> None:
        event = self._create_event(
            "account.balance_updated", account,
            {'previous_balance': previous_balance, 'reason': reason},
            correlation_id
        )
        self.event_bus.publish(AccountTopics.ACCOUNTS_BALANCE_UPDATED.value, event,
                               key=account.account_number)


class KycCompletedConsumer:
    """
    Provisions accounts when a customer's KYC verification completes.

    Provisioning runs in-process with the system context, authenticated to
    sibling services by a token from token_provider when one is given.
    A failed message is logged and forwarded to the dead-letter topic; the
    handler never raises into the consumer loop, so one bad message cannot
    block the next.
    """

    def __init__(self, event_bus: EventBus, guard: ProvisioningGuard,
                 topic: str = "customer-verified",
                 dead_letter_topic: Optional[str] = "customer-verified.dlq",
                 token_provider: Optional[Callable[[], str]] = None):
        self.event_bus = event_bus
        self.guard = guard
        self.topic = topic
        self.dead_letter_topic = dead_letter_topic
        self.token_provider = token_provider

    def start(self) -> None:
        """Start listening for verification events"""
        self.event_bus.subscribe(self.topic, self.handle)

    @staticmethod
    def _customer_id(event: EventSchema) -> Optional[int]:
        raw = event.data.get("customerId", event.data.get("customer_id"))
        if raw is None and event.entity_type == "customer":
            raw = event.entity_id
        try:
            customer_id = int(raw)
        except (TypeError, ValueError):
            return None
        return customer_id if 0 < customer_id <= MAX_IDENTIFIER else None

    def handle(self, event: EventSchema) -> Optional[ProvisioningResult]:
        """Handle one verification event"""
        customer_id = self._customer_id(event)
        if customer_id is None:
            logger.error(f"Verification event {event.event_id} carries no valid customer id")
            self._dead_letter(event, "missing or invalid customer id", None)
            return None

        ctx = RequestContext.system(correlation_id=event.event_id)
        try:
            if self.token_provider:
                ctx = replace(ctx, bearer_token=self.token_provider())
            result = self.guard.provision(ctx, customer_id)
        except AccountServiceError as e:
            log_action(logger, "error", f"Provisioning failed for customer {customer_id}: {e}",
                       ctx=ctx, action="provision",
                       resource=f"customer:{customer_id}",
                       extra={"error_code": e.error_code, "retryable": e.retryable})
            self._dead_letter(event, e.message, e)
            return None
        except Exception as e:
            logger.exception(f"Unexpected error provisioning customer {customer_id}")
            self._dead_letter(event, str(e), e)
            return None

        log_action(logger, "info",
                   f"Verification event handled for customer {customer_id}, "
                   f"created {len(result.created)} account(s)",
                   ctx=ctx, action="provision",
                   resource=f"customer:{customer_id}")
        return result

    def _dead_letter(self, event: EventSchema, reason: str,
                     error: Optional[Exception]) -> None:
        if not self.dead_letter_topic:
            return

        dlq_event = EventSchema(
            event_id=str(uuid.uuid4()),
            event_type="customer_verified.failed",
            timestamp=datetime.now(timezone.utc),
            entity_type="customer",
            entity_id=str(event.data.get("customerId", event.data.get("customer_id", ""))),
            data={
                'original_event': event.to_dict(),
                'reason': reason,
                'error_code': getattr(error, 'error_code', None),
                'retryable': getattr(error, 'retryable', False),
            },
            metadata={'correlation_id': event.event_id}
        )
        try:
            self.event_bus.publish(self.dead_letter_topic, dlq_event, key=dlq_event.entity_id)
        except Exception:
            logger.exception(f"Failed to route event {event.event_id} to {self.dead_letter_topic}")
