"""
Scheduler for automated WooCommerce syncs

Uses APScheduler to pull new orders from every storefront, collapse duplicate
orders and drop expired sessions once a night.
"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from zoneinfo import ZoneInfo

from app.models.base import session_scope
from app.services import auth_service
from app.services.order_sync_service import OrderSyncService
from app.services.reconciliation import PACIFIC_TZ
from app.config import get_settings
from app.utils.logger import log

settings = get_settings()
scheduler = AsyncIOScheduler()


# Job functions

async def sync_woocommerce():
    """Pull new orders from every active storefront"""
    try:
        with session_scope() as db:
            log.info("Starting scheduled WooCommerce sync...")
            result = await OrderSyncService(db).sync_all()
        log.info(
            f"Scheduled WooCommerce sync finished: {result['total_new_orders']} new, "
            f"{result['status_updates']} status updates, {len(result['errors'])} errors"
        )
        for error in result['errors']:
            log.warning(f"WooCommerce sync: {error}")
    except Exception as e:
        log.error(f"Scheduled WooCommerce sync error: {str(e)}")


async def cleanup_duplicates():
    """Collapse orders sharing an order_id (nightly)"""
    try:
        with session_scope() as db:
            result = OrderSyncService(db).resolve_duplicates()
        log.info(f"Duplicate cleanup: {result['groups']} groups, {result['deleted']} rows removed")
    except Exception as e:
        log.error(f"Duplicate cleanup error: {str(e)}")


async def cleanup_sessions():
    """Drop expired login sessions (nightly)"""
    try:
        with session_scope() as db:
            removed = auth_service.cleanup_expired(db)
        log.info(f"Session cleanup: {removed} expired sessions removed")
    except Exception as e:
        log.error(f"Session cleanup error: {str(e)}")


def setup_scheduler():
    """
    Configure the scheduler.

    - WooCommerce sync:   every `sync_woocommerce_interval_minutes`
    - Duplicate cleanup:  `cleanup_duplicates_schedule` (crontab, Pacific time)
    - Session cleanup:    daily at 04:00 Pacific time
    """

    # ── WooCommerce ──────────────────────────────────────
    scheduler.add_job(
        sync_woocommerce,
        trigger=IntervalTrigger(minutes=settings.sync_woocommerce_interval_minutes),
        id='woocommerce_sync',
        name='WooCommerce Orders Sync',
        replace_existing=True,
        max_instances=1,
        coalesce=True
    )

    # ── Duplicates ───────────────────────────────────────
    scheduler.add_job(
        cleanup_duplicates,
        trigger=CronTrigger.from_crontab(
            settings.cleanup_duplicates_schedule, timezone=ZoneInfo(PACIFIC_TZ)
        ),
        id='duplicate_cleanup',
        name='Duplicate Order Cleanup',
        replace_existing=True,
        max_instances=1
    )

    # ── Sessions ─────────────────────────────────────────
    scheduler.add_job(
        cleanup_sessions,
        trigger=CronTrigger(hour=4, minute=0, timezone=ZoneInfo(PACIFIC_TZ)),
        id='session_cleanup',
        name='Expired Session Cleanup',
        replace_existing=True,
        max_instances=1
    )

    log.info("Scheduler configured with WooCommerce sync, duplicate and session cleanup")


def start_scheduler():
    """Start the scheduler (no-op when disabled in settings)"""
    if not settings.enable_scheduler:
        log.info("Scheduler disabled")
        return
    setup_scheduler()
    scheduler.start()
    log.info("Scheduler started")


def stop_scheduler():
    """Stop the scheduler"""
    if scheduler.running:
        scheduler.shutdown()
        log.info("Scheduler stopped")


def get_scheduled_jobs() -> list:
    """
    Get list of all scheduled jobs

    Returns:
        List of job info dicts
    """
    jobs = []

    for job in scheduler.get_jobs():
        # pending jobs (scheduler not started yet) have no next_run_time
        next_run = getattr(job, 'next_run_time', None)

        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': next_run.isoformat() if next_run else None,
            'trigger': str(job.trigger)
        })

    return jobs
