"""Service wiring for the API.

``build_services`` assembles the store, chain client, notification sink and
the escrow/dispute/monitor services from settings. The app uses one cached
instance through ``get_services``; tests override that dependency with
services built on an in-memory store.
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, status

from gigescrow.api.config import Settings, get_settings
from gigescrow.api.logging_config import get_logger
from gigescrow.chain.adapter import CardanoChainAdapter
from gigescrow.chain.client import BlockfrostClient
from gigescrow.chain.retry import RetryPolicy
from gigescrow.disputes.arbiters import ArbiterDirectory
from gigescrow.disputes.service import DisputeService
from gigescrow.escrow.monitor import ExpiryMonitor
from gigescrow.escrow.service import EscrowService
from gigescrow.notifications.service import NotificationService
from gigescrow.notifications.sinks import (
    LoggingNotificationSink,
    NotificationSink,
    WebhookNotificationSink,
)
from gigescrow.signing import Ed25519SignatureVerifier
from gigescrow.storage.base import RecordStore
from gigescrow.storage.memory import InMemoryRecordStore
from gigescrow.storage.sqlite import SQLiteRecordStore

logger = get_logger("gigescrow.api.deps")


@dataclass
class Services:
    """Everything a request handler may need."""

    store: RecordStore
    chain_client: BlockfrostClient
    chain: CardanoChainAdapter
    notifications: NotificationService
    arbiters: ArbiterDirectory
    escrows: EscrowService
    disputes: DisputeService
    monitor: ExpiryMonitor

    async def aclose(self) -> None:
        await self.chain_client.aclose()
        close_sink = getattr(self.notifications.sink, "aclose", None)
        if close_sink is not None:
            await close_sink()


def build_store(settings: Settings) -> RecordStore:
    if settings.store_backend == "memory":
        return InMemoryRecordStore()
    return SQLiteRecordStore(settings.store_path)


def build_sink(settings: Settings) -> NotificationSink:
    if settings.notification_provider == "webhook":
        return WebhookNotificationSink(settings.notification_webhook_url or "")
    return LoggingNotificationSink()


def build_services(
    settings: Settings,
    store: Optional[RecordStore] = None,
    chain_client: Optional[BlockfrostClient] = None,
    sink: Optional[NotificationSink] = None,
) -> Services:
    """Assemble the service graph from settings."""
    config = settings.escrow_config()
    store = store if store is not None else build_store(settings)
    chain_client = chain_client or BlockfrostClient(
        base_url=settings.blockfrost_url,
        project_id=settings.blockfrost_project_id,
        timeout=settings.chain_timeout_seconds,
        retry_policy=RetryPolicy(
            attempts=settings.chain_retry_attempts,
            base_delay=settings.chain_retry_base_delay,
        ),
    )
    chain = CardanoChainAdapter(chain_client, config)
    notifications = NotificationService(store, sink or build_sink(settings))
    arbiters = ArbiterDirectory(store)
    escrows = EscrowService(
        store=store,
        notifications=notifications,
        chain=chain,
        verifier=Ed25519SignatureVerifier(store),
        arbiters=arbiters,
        config=config,
    )
    disputes = DisputeService(store, escrows, arbiters, notifications, config)
    logger.info(
        f"Services ready | network={config.network} | store={type(store).__name__} | "
        f"sink={type(notifications.sink).__name__}"
    )
    return Services(
        store=store,
        chain_client=chain_client,
        chain=chain,
        notifications=notifications,
        arbiters=arbiters,
        escrows=escrows,
        disputes=disputes,
        monitor=ExpiryMonitor(escrows, disputes),
    )


@lru_cache
def get_services() -> Services:
    """Get the cached service graph."""
    return build_services(get_settings())


AppServices = Annotated[Services, Depends(get_services)]


async def require_admin(
    settings: Annotated[Settings, Depends(get_settings)],
    x_admin_key: Annotated[Optional[str], Header()] = None,
) -> None:
    """Guard operator endpoints when an admin key is configured."""
    if settings.admin_api_key and x_admin_key != settings.admin_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid X-Admin-Key header",
        )
