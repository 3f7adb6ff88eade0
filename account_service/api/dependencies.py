"""
Application container and request dependencies
"""

import uuid
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..accounts import AccountType
from ..clients import CustomerServiceClient, KycServiceClient
from ..config import AccountServiceConfig, get_config
from ..errors import Unauthenticated, Unauthorized
from ..events import AccountEventPublisher, EventBus, KafkaEventBus, KycCompletedConsumer
from ..lifecycle import AccountLifecycleService
from ..logging_config import get_logger
from ..numbering import AccountNumberGenerator
from ..principal import AuthenticatedPrincipal, PrincipalResolver, RequestContext, SYSTEM_PRINCIPAL
from ..provisioning import ProvisioningGuard
from ..storage import AccountStore, create_store


logger = get_logger("account_service.api")


class AccountSystem:
    """Account service with all components initialized"""

    def __init__(
        self,
        config: Optional[AccountServiceConfig] = None,
        store: Optional[AccountStore] = None,
        event_bus: Optional[EventBus] = None,
        customer_client: Optional[CustomerServiceClient] = None,
        kyc_client: Optional[KycServiceClient] = None
    ):
        self.config = config or get_config()
        cfg = self.config

        self.store = store or create_store(cfg.storage_backend, cfg.database_path)
        self.resolver = PrincipalResolver(
            cfg.jwt_secret,
            algorithm=cfg.jwt_algorithm,
            secret_is_base64=cfg.jwt_secret_base64,
            leeway_seconds=cfg.jwt_leeway_seconds
        )
        self.generator = AccountNumberGenerator(
            prefix=cfg.account_number_prefix,
            sequence_length=cfg.account_number_sequence_length,
            max_attempts=cfg.account_number_max_attempts
        )
        self.customer_client = customer_client or CustomerServiceClient(
            cfg.customer_service_url, timeout=cfg.service_timeout
        )
        self.kyc_client = kyc_client or KycServiceClient(
            cfg.kyc_service_url, timeout=cfg.service_timeout
        )

        # Event integration is optional; nothing is published without a bus
        self.event_bus = event_bus or self._create_event_bus()
        publisher = AccountEventPublisher(self.event_bus) if self.event_bus else None

        self.lifecycle = AccountLifecycleService(
            self.store,
            self.generator,
            customer_client=self.customer_client if cfg.verify_customer_exists else None,
            minimums={
                AccountType.SAVINGS: Decimal(cfg.savings_minimum_balance),
                AccountType.CURRENT: Decimal(cfg.current_minimum_balance),
            },
            publisher=publisher,
            insert_retries=cfg.account_number_insert_retries,
            max_page_size=cfg.max_page_size
        )
        self.provisioning = ProvisioningGuard(
            self.lifecycle,
            seed_balances={
                AccountType.SAVINGS: Decimal(cfg.provisioning_savings_seed),
                AccountType.CURRENT: Decimal(cfg.provisioning_current_seed),
            },
            kyc_client=self.kyc_client
        )
        self.kyc_consumer = None
        if self.event_bus:
            self.kyc_consumer = KycCompletedConsumer(
                self.event_bus,
                self.provisioning,
                topic=cfg.kafka_customer_verified_topic,
                dead_letter_topic=cfg.kafka_dead_letter_topic or None,
                token_provider=self.issue_system_token
            )

    def issue_system_token(self) -> str:
        """Short-lived token for calls made on behalf of the service itself"""
        return self.resolver.issue(
            SYSTEM_PRINCIPAL, expires_in=timedelta(seconds=self.config.system_token_ttl_seconds)
        )

    def _create_event_bus(self) -> Optional[EventBus]:
        cfg = self.config
        if not cfg.enable_kafka_events:
            return None
        if not cfg.kafka_bootstrap_servers:
            raise ValueError("Kafka events enabled but no bootstrap servers configured")
        return KafkaEventBus(cfg.kafka_bootstrap_servers, group_id=cfg.kafka_consumer_group)

    def start(self) -> None:
        """Start consuming verification events"""
        if self.kyc_consumer:
            self.kyc_consumer.start()
            self.event_bus.start()
            logger.info(f"Listening for verification events on {self.kyc_consumer.topic}")

    def stop(self) -> None:
        if self.event_bus and self.event_bus.is_running():
            self.event_bus.stop()

    def close(self) -> None:
        self.stop()
        self.customer_client.close()
        self.kyc_client.close()
        self.store.close()

    def resolve_customer_id(self, principal: AuthenticatedPrincipal,
                            bearer_token: Optional[str]) -> Optional[int]:
        """
        Customer id of a customer principal, resolved server-side.

        Administrators act on explicit customer ids and get None.
        """
        if principal.is_admin:
            return None
        if self.config.resolve_customer_via_service:
            return self.customer_client.get_customer_id_by_user_id(principal.user_id, bearer_token)
        return principal.user_id


# Global account system instance, created on first use
_account_system: Optional[AccountSystem] = None


def get_account_system() -> AccountSystem:
    global _account_system
    if _account_system is None:
        _account_system = AccountSystem()
    return _account_system


security = HTTPBearer(auto_error=False)


def get_request_context(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    system: AccountSystem = Depends(get_account_system)
) -> RequestContext:
    """Authenticate the bearer credential and build the caller context"""
    if credentials is None:
        raise Unauthenticated("Missing bearer credential")

    token = credentials.credentials
    principal = system.resolver.resolve(token)
    customer_id = system.resolve_customer_id(principal, token)

    return RequestContext(
        principal=principal,
        customer_id=customer_id,
        bearer_token=token,
        correlation_id=request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
    )


def require_admin(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
    if not ctx.is_admin:
        raise Unauthorized("Admin access required for this operation")
    return ctx


def require_customer_id(ctx: RequestContext) -> int:
    """Customer id of the caller for the self-service endpoints"""
    if ctx.customer_id is None:
        raise Unauthorized("No customer profile is associated with this user")
    return ctx.customer_id
