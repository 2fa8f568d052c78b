"""
Order Verification Script

Verifies order data integrity after a simulation: every order has items,
and every order total matches the sum of its items. Optionally purges the
orphaned orders left by failed checkout rollbacks.
Run from project root: python scripts/verify.py [--purge]

Author: Khalil_Bannouri
Version: 1.0.0
"""

import argparse
import asyncio
from collections import defaultdict
from datetime import datetime
from decimal import Decimal

from storefront.core.config import get_settings, setup_logging
from storefront.services.backend import get_service_backend_client
from storefront.services.reconciliation import purge_orphaned_orders


async def verify_orders(purge: bool = False, grace_minutes: int = 0) -> bool:
    """Print the integrity report of the configured backend's orders."""
    settings = get_settings()
    backend = get_service_backend_client()

    print("=" * 60)
    print("🔍 ORDER VERIFICATION REPORT")
    print("=" * 60)
    print(f"⏰ Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"🗄️  Backend: {backend.provider_name}")
    print("=" * 60)

    try:
        orders = (await backend.select("orders", order_by="created_at")).unwrap("list orders")
        items = (await backend.select("order_items")).unwrap("list order items")

        totals: dict[str, Decimal] = defaultdict(Decimal)
        for item in items:
            totals[item["order_id"]] += Decimal(str(item["unit_price"])) * item["quantity"]

        print("\n📊 STATISTICS:")
        print(f"   Total Orders: {len(orders)}")
        print(f"   Total Items: {len(items)}")

        mismatched = [
            order for order in orders
            if order["id"] in totals
            and totals[order["id"]].quantize(Decimal("0.01")) != Decimal(str(order["total_amount"])).quantize(Decimal("0.01"))
        ]
        if mismatched:
            print(f"\n⚠️ {len(mismatched)} order(s) whose total differs from their items:")
            for order in mismatched[:5]:
                print(f"   #{order['id'][:8]}: {order['total_amount']} vs {totals[order['id']]}")
        else:
            print("\n✅ All order totals match their items")

        report = await purge_orphaned_orders(backend, grace_minutes=grace_minutes, dry_run=not purge)
        if report.orphaned:
            verb = "Purged" if purge else "Found"
            print(f"\n⚠️ {verb} {len(report.orphaned)} order(s) without items:")
            for order_id in report.orphaned[:5]:
                print(f"   #{order_id[:8]}")
            if report.failed:
                print(f"   ❌ Could not delete: {report.failed}")
        else:
            print("✅ No orders without items")

        revenue = sum(Decimal(str(order["total_amount"])) for order in orders)
        print("\n💰 REVENUE:")
        print(f"   Total: {settings.currency_symbol}{revenue:.2f}")
        if orders:
            print(f"   Average: {settings.currency_symbol}{revenue / len(orders):.2f}")
    finally:
        await backend.close()

    print("\n" + "=" * 60)
    print("✅ VERIFICATION COMPLETE")
    print("=" * 60)
    return not mismatched and not report.failed


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Order Verification Script")
    parser.add_argument("--purge", action="store_true", help="Delete orders without items")
    parser.add_argument("--grace-minutes", type=int, default=0, help="Ignore orders younger than this")
    args = parser.parse_args()

    setup_logging()
    asyncio.run(verify_orders(purge=args.purge, grace_minutes=args.grace_minutes))
