# app/tasks/expiry_sweeper.py
import asyncio
import logging
from typing import Optional

from app.core.celery_app import celery_app
from app.core.config import settings
from app.core.subscription import SubscriptionStateMachine

logger = logging.getLogger("tikiti.expiry")


async def sweep_expired_subscriptions(state_machine: Optional[SubscriptionStateMachine] = None) -> int:
    if state_machine is None:
        from app.core.dependencies import get_state_machine
        state_machine = get_state_machine()

    logger.info("🔄 Checking for expired subscriptions...")
    return await state_machine.sweep_expired()


async def expiry_sweep_loop(
    state_machine: Optional[SubscriptionStateMachine] = None,
    interval: int = None,
):
    interval = interval or settings.EXPIRY_SWEEP_INTERVAL
    logger.info(f"🚀 Starting expiry sweep loop (every {interval}s)")
    while True:
        try:
            await sweep_expired_subscriptions(state_machine)
        except Exception as e:
            logger.exception(f"Critical error in expiry loop: {e}")

        await asyncio.sleep(interval)


@celery_app.task(name="app.tasks.expiry_sweeper.sweep_expired_task")
def sweep_expired_task() -> int:
    """Same sweep, for deployments that run Celery beat instead of the in-process loop."""
    return asyncio.run(sweep_expired_subscriptions())
