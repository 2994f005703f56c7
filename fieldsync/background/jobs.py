from apscheduler.schedulers.asyncio import AsyncIOScheduler

from fieldsync.core.config import settings
from fieldsync.core.logging import set_job_id
from fieldsync.services.sync_runtime import SyncRuntime


async def flush_outbox_job(runtime: SyncRuntime):
    """
    APScheduler job draining the outbox. Also makes items due again once
    their backoff expires, since nothing else would trigger a flush then.
    """
    set_job_id("flush_outbox_job")
    await runtime.connectivity.flush_outbox()


async def probe_connectivity_job(runtime: SyncRuntime):
    set_job_id("probe_connectivity_job")
    await runtime.connectivity.probe()


async def poll_notifications_job(runtime: SyncRuntime):
    set_job_id("poll_notifications_job")
    if runtime.notifications is not None:
        await runtime.notifications.poll()


def build_scheduler(runtime: SyncRuntime) -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler(timezone=settings.SCHEDULER_TIMEZONE)
    scheduler.add_job(
        flush_outbox_job,
        'interval',
        seconds=settings.OUTBOX_FLUSH_INTERVAL_SECONDS,
        args=[runtime],
        id='flush_outbox',
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        probe_connectivity_job,
        'interval',
        seconds=settings.CONNECTIVITY_INTERVAL_SECONDS,
        args=[runtime],
        id='probe_connectivity',
        max_instances=1,
        coalesce=True,
    )
    if runtime.notifications is not None:
        scheduler.add_job(
            poll_notifications_job,
            'interval',
            seconds=settings.NOTIFICATIONS_POLL_INTERVAL_SECONDS,
            args=[runtime],
            id='poll_notifications',
            max_instances=1,
            coalesce=True,
        )
    return scheduler
