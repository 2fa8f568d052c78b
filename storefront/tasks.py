"""
Celery Tasks
Background jobs of the storefront: the orphaned-order sweep that cleans up
after checkouts whose compensating delete failed.
"""

import asyncio
import logging
import time
from datetime import datetime

from storefront.celery_worker import celery_app
from storefront.services.backend import get_service_backend_client, reset_backend_client
from storefront.services.reconciliation import purge_orphaned_orders

logger = logging.getLogger(__name__)


async def _reconcile(dry_run: bool) -> dict:
    backend = get_service_backend_client()
    try:
        report = await purge_orphaned_orders(backend, dry_run=dry_run)
    finally:
        await backend.close()
    return report.to_dict()


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=30,
    autoretry_for=(ConnectionError, TimeoutError),
    retry_backoff=True
)
def reconcile_orphaned_orders(self, dry_run: bool = False) -> dict:
    """
    Delete orders older than the grace period that have no items.

    Args:
        dry_run: Only report the orphaned orders

    Returns:
        dict: The reconciliation report plus task timing
    """
    task_id = self.request.id
    print(f"🧹 Task {task_id}: Sweeping orphaned orders (dry_run={dry_run})")
    start_time = time.time()

    # Each run gets a fresh loop, so the cached client must not outlive it
    reset_backend_client()
    result = asyncio.run(_reconcile(dry_run))

    elapsed = round(time.time() - start_time, 3)
    result['task_id'] = task_id
    result['processing_time_seconds'] = elapsed
    print(
        f"✅ Task {task_id}: {len(result['orphaned'])} orphaned, "
        f"{len(result['purged'])} purged in {elapsed}s"
    )
    if result['failed']:
        logger.error(f"Task {task_id}: could not purge {result['failed']}")
    return result


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        'status': 'healthy',
        'worker': 'celery',
        'timestamp': datetime.now().isoformat()
    }
