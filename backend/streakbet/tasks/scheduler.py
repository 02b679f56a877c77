"""
APScheduler задачи STREAKBET.
"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from streakbet.core.config import settings
from streakbet.core.database import get_session_factory, run_in_transaction
from streakbet.core.errors import TransientConflict

scheduler = AsyncIOScheduler(timezone="UTC")


async def _expire_challenges() -> None:
    """Переводит просроченные активные испытания в expired."""
    from streakbet.services.challenge_manager import ChallengeManager
    try:
        expired_ids = await run_in_transaction(
            get_session_factory(),
            lambda s: ChallengeManager(s).expire(),
            label="expiry_sweep",
        )
    except TransientConflict:
        logger.warning("Expiry sweep conflicted with another transaction, will retry on next run")
        return
    except Exception as e:
        logger.error(f"Expiry sweep error: {e}", exc_info=True)
        return
    if expired_ids:
        logger.info(f"Expiry sweep: {len(expired_ids)} challenges expired")


def setup_scheduler() -> AsyncIOScheduler:
    """Настраивает и возвращает планировщик."""
    scheduler.add_job(
        _expire_challenges,
        trigger=IntervalTrigger(seconds=settings.expiry_sweep_interval_seconds),
        id="challenge_expiry",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    logger.info("APScheduler configured with all tasks")
    return scheduler
