"""
Background Jobs Module

Handles scheduled tasks for:
- Payment status sync with the gateway
- Failed webhook reprocessing
"""

from settlement.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler
from settlement.jobs.reconciliation_jobs import sync_pending_payments, reprocess_failed_webhooks

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "sync_pending_payments",
    "reprocess_failed_webhooks",
]
