"""Background scheduling of the expiry sweep."""

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from gigescrow.api.logging_config import get_logger
from gigescrow.escrow.monitor import ExpiryMonitor

logger = get_logger("gigescrow.api.scheduler")

EXPIRY_SWEEP_JOB_ID = "expiry_sweep"


def build_scheduler(monitor: ExpiryMonitor, interval_seconds: int) -> AsyncIOScheduler:
    """Create a scheduler running ``monitor.sweep`` every ``interval_seconds``."""
    scheduler = AsyncIOScheduler(
        jobstores={"default": MemoryJobStore()},
        executors={"default": AsyncIOExecutor()},
        job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 60},
        timezone="UTC",
    )

    async def run_sweep() -> None:
        report = await monitor.sweep()
        if report.refunded or report.errors:
            logger.info(
                f"Scheduled expiry sweep | refunded={len(report.refunded)} | "
                f"errors={len(report.errors)}"
            )

    scheduler.add_job(
        run_sweep,
        trigger=IntervalTrigger(seconds=interval_seconds),
        id=EXPIRY_SWEEP_JOB_ID,
        name="Refund Expired Escrows",
        replace_existing=True,
    )
    logger.info(f"Expiry sweep scheduled | every={interval_seconds}s")
    return scheduler
