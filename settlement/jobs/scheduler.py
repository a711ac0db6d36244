"""
APScheduler Configuration

Background job scheduler for payment reconciliation:
- Sync stale PENDING/OVERDUE payments from the gateway
- Reprocess failed webhook events
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from settlement.config import settings
from settlement.services.gateway_client import GatewayClient

logger = logging.getLogger(__name__)

# Job stores
jobstores = {
    'default': MemoryJobStore()
}

# Executors
executors = {
    'default': AsyncIOExecutor(),
}

# Job defaults
job_defaults = {
    'coalesce': True,  # Combine multiple pending executions into one
    'max_instances': 1,  # Only one instance of each job at a time
    'misfire_grace_time': 60,  # Allow 60 seconds grace time for misfires
}

# Create scheduler
scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone=settings.SCHEDULER_TIMEZONE
)


def start_scheduler(gateway: GatewayClient):
    """Start the background job scheduler."""
    if not scheduler.running:
        from settlement.jobs.reconciliation_jobs import (
            sync_pending_payments,
            reprocess_failed_webhooks,
        )

        scheduler.add_job(
            sync_pending_payments,
            'interval',
            minutes=settings.PAYMENT_SYNC_INTERVAL_MINUTES,
            args=[gateway],
            id='sync_pending_payments',
            name='Sync Pending Payments',
            replace_existing=True,
        )

        scheduler.add_job(
            reprocess_failed_webhooks,
            'interval',
            minutes=settings.WEBHOOK_REPROCESS_INTERVAL_MINUTES,
            id='reprocess_failed_webhooks',
            name='Reprocess Failed Webhooks',
            replace_existing=True,
        )

        scheduler.start()
        logger.info("Background job scheduler started")

        for job in scheduler.get_jobs():
            logger.info(f"Scheduled job: {job.name} - Next run: {job.next_run_time}")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background job scheduler stopped")


def get_job_status():
    """Get status of all scheduled jobs."""
    jobs = scheduler.get_jobs()
    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run_time': str(job.next_run_time) if job.next_run_time else None,
            'trigger': str(job.trigger),
        }
        for job in jobs
    ]
