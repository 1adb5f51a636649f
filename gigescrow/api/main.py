"""gigescrow API - FastAPI application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .. import __version__
from .config import get_settings
from .deps import AppServices, get_services
from .errors import install_error_handlers
from .logging_config import get_logger, setup_logging
from .rate_limit import limiter
from .routes import disputes_router, escrows_router, notifications_router
from .scheduler import build_scheduler

logger = get_logger("gigescrow.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings = get_settings()
    setup_logging(settings.log_level)
    logger.info(
        f"Starting gigescrow API | env={settings.environment} | network={settings.cardano_network} | "
        f"debug={settings.debug}"
    )
    services = get_services()

    scheduler = None
    if settings.auto_refund_after_expiry:
        scheduler = build_scheduler(services.monitor, settings.monitor_interval_seconds)
        scheduler.start()
    yield
    if scheduler is not None:
        scheduler.shutdown(wait=False)
    await services.aclose()
    logger.info("Shutting down gigescrow API")


app = FastAPI(
    title="gigescrow API",
    description="Escrow backend for a freelance marketplace settling on Cardano",
    version=__version__,
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
install_error_handlers(app)

settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(escrows_router)
app.include_router(disputes_router)
app.include_router(notifications_router)


@app.get("/")
async def root():
    return {
        "service": "gigescrow",
        "version": __version__,
        "status": "ok",
    }


@app.get("/health")
async def health(services: AppServices):
    """Health check including the chain indexer."""
    chain_ok = await services.chain_client.health_check()
    return {
        "status": "healthy" if chain_ok else "degraded",
        "chain": "connected" if chain_ok else "unreachable",
        "network": get_settings().cardano_network,
    }
