"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class AccountServiceConfig(BaseSettings):
    """Account service configuration"""

    # Database configuration
    database_path: str = "accounts.db"  # ":memory:" for an ephemeral store
    storage_backend: str = "sqlite"  # sqlite or memory

    # Security configuration
    jwt_secret: str = "change-me-in-production-use-a-32-byte-secret"
    jwt_secret_base64: bool = False  # Secret is base64 encoded (shared with the gateway)
    jwt_algorithm: str = "HS256"
    jwt_leeway_seconds: int = 0
    system_token_ttl_seconds: int = 300  # Lifetime of tokens minted for event-driven calls

    # Account number configuration
    account_number_prefix: str = "BANK1"
    account_number_sequence_length: int = 3
    account_number_max_attempts: int = 100
    account_number_insert_retries: int = 3  # Retries on store-level number conflicts

    # Business rules configuration
    savings_minimum_balance: str = "1000.00"
    current_minimum_balance: str = "5000.00"
    provisioning_savings_seed: str = "0.00"
    provisioning_current_seed: str = "0.00"
    verify_kyc_on_manual_provisioning: bool = True
    max_page_size: int = 100

    # Sibling services
    customer_service_url: str = "http://localhost:8081"
    kyc_service_url: str = "http://localhost:8084"
    service_timeout: float = 5.0
    resolve_customer_via_service: bool = False  # False: token subject is the customer id
    verify_customer_exists: bool = True

    # Kafka configuration
    enable_kafka_events: bool = False
    kafka_bootstrap_servers: str = ""
    kafka_consumer_group: str = "account-service-group"
    kafka_customer_verified_topic: str = "customer-verified"
    kafka_dead_letter_topic: str = "customer-verified.dlq"

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8083

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    class Config:
        env_prefix = "ACCOUNT_SERVICE_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = AccountServiceConfig()


def get_config() -> AccountServiceConfig:
    """Get global configuration instance"""
    return config

