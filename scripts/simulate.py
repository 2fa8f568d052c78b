"""
Checkout Load Simulation Script

Simulates many customers signing up, filling their carts and checking out
at the same time, to test checkout under concurrency.
Run from project root: python scripts/simulate.py

Author: Khalil_Bannouri
Version: 1.0.0
"""

import argparse
import asyncio
import random
import sys
import time
import uuid
from datetime import datetime
from typing import Any

import httpx

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8001"
TOTAL_CUSTOMERS = 50

# Sample data for random customers
FIRST_NAMES = ["Aarav", "Priya", "Rohan", "Ananya", "Vikram", "Sneha", "Arjun", "Kavya", "Rahul", "Meera"]
LAST_NAMES = ["Sharma", "Patel", "Iyer", "Reddy", "Nair", "Gupta", "Khan", "Das", "Rao", "Singh"]
STREETS = ["MG Road", "Brigade Road", "Residency Road", "Church Street", "Indiranagar 100ft Rd"]
VALID_PINCODES = ["560001", "560025", "560038", "560047", "560095"]


def generate_random_customer() -> dict[str, str]:
    """Generate random sign-up details."""
    first = random.choice(FIRST_NAMES)
    last = random.choice(LAST_NAMES)
    return {
        "email": f"{first.lower()}.{last.lower()}.{uuid.uuid4().hex[:8]}@example.com",
        "password": "pizza-lover-123",
        "full_name": f"{first} {last}",
        "address": f"{random.randint(1, 999)} {random.choice(STREETS)}, Bengaluru",
        "pincode": random.choice(VALID_PINCODES),
    }


# =============================================================================
# CUSTOMER FLOW
# =============================================================================

async def run_customer(client: httpx.AsyncClient, customer_num: int) -> dict[str, Any]:
    """Sign up, add random pizzas to the cart and check out."""
    customer = generate_random_customer()
    start_time = time.time()

    def failure(step: str, response: httpx.Response) -> dict[str, Any]:
        return {
            "customer_num": customer_num,
            "success": False,
            "step": step,
            "error": response.text[:100],
            "time": round(time.time() - start_time, 3),
        }

    try:
        response = await client.post(f"{API_BASE_URL}/api/auth/sign-up", json=customer)
        if response.status_code != 201 or not response.json().get("access_token"):
            return failure("sign-up", response)
        headers = {"Authorization": f"Bearer {response.json()['access_token']}"}

        response = await client.get(f"{API_BASE_URL}/api/menu", headers=headers)
        if response.status_code != 200:
            return failure("menu", response)
        products = response.json()["products"]

        for product in random.sample(products, k=min(len(products), random.randint(1, 4))):
            for _ in range(random.randint(1, 3)):
                response = await client.post(
                    f"{API_BASE_URL}/api/cart/items",
                    json={"product_id": product["id"]},
                    headers=headers,
                )
                if response.status_code != 200:
                    return failure("cart", response)

        response = await client.post(f"{API_BASE_URL}/api/checkout", json={}, headers=headers)
        if response.status_code != 200:
            return failure("checkout", response)

        data = response.json()
        return {
            "customer_num": customer_num,
            "success": True,
            "order_id": data["order_id"],
            "total": data["total"],
            "points": data["points_earned"],
            "time": round(time.time() - start_time, 3),
        }
    except httpx.HTTPError as e:
        return {
            "customer_num": customer_num,
            "success": False,
            "step": "network",
            "error": str(e)[:100],
            "time": round(time.time() - start_time, 3),
        }


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(num_customers: int = TOTAL_CUSTOMERS) -> dict[str, Any]:
    """
    Run the checkout simulation.

    Args:
        num_customers: Number of concurrent customers
    """
    print("=" * 70)
    print("🍕 CHECKOUT SIMULATION - HIGH CONCURRENCY TEST")
    print("=" * 70)
    print(f"📋 Customers: {num_customers}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()
    async with httpx.AsyncClient(timeout=30.0) as client:
        tasks = [run_customer(client, i + 1) for i in range(num_customers)]
        results = await asyncio.gather(*tasks)
    total_time = round(time.time() - start_time, 2)

    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n✅ Successful Checkouts: {len(successful)}/{num_customers}")
    print(f"❌ Failed Checkouts: {len(failed)}/{num_customers}")
    print(f"⏱️  Total Time: {total_time}s")

    if successful:
        avg_time = round(sum(r["time"] for r in successful) / len(successful), 3)
        total_revenue = sum(r["total"] for r in successful)
        total_points = sum(r["points"] for r in successful)

        print("\n📈 Performance Metrics:")
        print(f"   Average Flow Time: {avg_time}s")
        print(f"   Fastest: {min(r['time'] for r in successful)}s")
        print(f"   Slowest: {max(r['time'] for r in successful)}s")
        print(f"   💰 Total Revenue: ₹{total_revenue:.2f}")
        print(f"   ⭐ Points Awarded: {total_points}")

    if failed:
        print("\n⚠️  Failed Flow Details (showing first 5):")
        for f in failed[:5]:
            print(f"   Customer #{f['customer_num']} [{f['step']}]: {f['error']}")

    print("\n" + "=" * 70)
    print("🔍 VERIFICATION STEPS")
    print("=" * 70)
    print("1. Run: python scripts/verify.py")
    print("2. Visit http://localhost:8001/admin to see the orders")
    print("=" * 70)

    return {
        "total": num_customers,
        "successful": len(successful),
        "failed": len(failed),
        "total_time": total_time,
        "results": results,
    }


async def check_health() -> bool:
    """Make sure the API is up before firing the simulation."""
    async with httpx.AsyncClient() as client:
        print("\n🩺 Health Check...")
        try:
            response = await client.get(f"{API_BASE_URL}/health")
        except httpx.HTTPError as e:
            print(f"   ❌ API unreachable: {e}")
            return False
        data = response.json()
        print(f"   Status: {data.get('status')}")
        print(f"   Backend: {data.get('backend')}  Auth: {data.get('auth')}")
        return data.get("backend") == "healthy" and data.get("auth") == "healthy"


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Checkout Simulation Script")
    parser.add_argument("--customers", type=int, default=TOTAL_CUSTOMERS, help="Number of customers")
    parser.add_argument("--base-url", default=API_BASE_URL, help="Storefront base URL")
    args = parser.parse_args()

    API_BASE_URL = args.base_url.rstrip("/")

    if not asyncio.run(check_health()):
        print("\n❌ Pre-flight check failed. Fix issues before running simulation.")
        sys.exit(1)

    asyncio.run(run_simulation(args.customers))
