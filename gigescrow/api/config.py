"""Configuration settings for the gigescrow API."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings

from gigescrow.config import EscrowConfig


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Server
    port: int = 3000
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    # CORS: Allowed origins for cross-origin requests
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Cardano / Blockfrost
    cardano_network: Literal["mainnet", "preprod", "preview"] = "preprod"
    blockfrost_url: str = "https://cardano-preprod.blockfrost.io/api/v0"
    blockfrost_project_id: str = ""
    chain_timeout_seconds: float = 30.0
    chain_retry_attempts: int = 3
    chain_retry_base_delay: float = 1.0

    # Escrow contract
    escrow_contract_address: str | None = None
    escrow_script_hash: str | None = None
    arbiter_address: str | None = None
    verify_lock_outputs: bool = True

    # Storage
    store_backend: Literal["sqlite", "memory"] = "sqlite"
    store_path: str = "data/gigescrow.db"

    # Notifications
    notification_provider: Literal["log", "webhook"] = "log"
    notification_webhook_url: str | None = None

    # Expiry monitor
    auto_refund_after_expiry: bool = True
    monitor_interval_seconds: int = 3600
    dispute_resolution_days: int = 7

    # Operator endpoints (POST /escrows/monitor); unset means open
    admin_api_key: str | None = None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra env vars not in model

    def escrow_config(self) -> EscrowConfig:
        """Core service configuration derived from these settings."""
        return EscrowConfig(
            network=self.cardano_network,
            escrow_contract_address=self.escrow_contract_address,
            escrow_script_hash=self.escrow_script_hash,
            arbiter_address=self.arbiter_address,
            verify_lock_outputs=self.verify_lock_outputs,
            dispute_resolution_days=self.dispute_resolution_days,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
