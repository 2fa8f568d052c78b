"""
Orphaned Order Reconciliation

An order whose item batch failed and whose compensating delete also
failed is left with zero items. This sweep finds such orders once they
are older than a grace period and deletes them.

Runs periodically from Celery beat (see storefront.tasks) and from
scripts/verify.py.

Author: Khalil_Bannouri
Version: 1.0.0
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from storefront.core.config import get_settings
from storefront.services.backend.base import BaseBackendClient, Row, in_, lt

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationReport:
    """
    Attributes:
        checked: Orders older than the grace period that were inspected
        orphaned: Ids of orders found without items
        purged: Ids actually deleted
        failed: Ids whose delete failed
    """
    checked: int = 0
    orphaned: list[str] = field(default_factory=list)
    purged: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "checked": self.checked,
            "orphaned": self.orphaned,
            "purged": self.purged,
            "failed": self.failed,
        }


async def find_orphaned_orders(
    backend: BaseBackendClient,
    grace_minutes: Optional[int] = None,
    now: Optional[datetime] = None,
) -> tuple[list[Row], int]:
    """
    Orders older than the grace period that have no items.

    Returns:
        (orphaned orders, number of orders checked)
    """
    if grace_minutes is None:
        grace_minutes = get_settings().orphan_grace_minutes
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(minutes=grace_minutes)

    orders = (await backend.select(
        "orders",
        [lt("created_at", cutoff.isoformat())],
        order_by="created_at",
    )).unwrap("list orders for reconciliation")
    if not orders:
        return [], 0

    items = (await backend.select(
        "order_items",
        [in_("order_id", [order["id"] for order in orders])],
    )).unwrap("list items for reconciliation")
    with_items = {item["order_id"] for item in items}

    return [order for order in orders if order["id"] not in with_items], len(orders)


async def purge_orphaned_orders(
    backend: BaseBackendClient,
    grace_minutes: Optional[int] = None,
    dry_run: bool = False,
    now: Optional[datetime] = None,
) -> ReconciliationReport:
    """Delete orders left without items by a failed checkout rollback."""
    orphaned, checked = await find_orphaned_orders(backend, grace_minutes, now)
    report = ReconciliationReport(checked=checked, orphaned=[o["id"] for o in orphaned])

    if dry_run or not orphaned:
        logger.info(f"Reconciliation: {len(orphaned)} orphaned order(s) of {checked} checked")
        return report

    for order in orphaned:
        result = await backend.delete("orders", order["id"])
        if result.success:
            report.purged.append(order["id"])
        else:
            logger.error(f"Reconciliation: could not delete order {order['id']}: {result.error.message}")
            report.failed.append(order["id"])

    logger.info(
        f"🧹 Reconciliation: purged {len(report.purged)} orphaned order(s), "
        f"{len(report.failed)} failed"
    )
    return report
