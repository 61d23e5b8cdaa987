"""
Concurrent Customer Simulation

Drives many customers through the product configurator at once to exercise
session handling, state persistence and the cart export queue.
Run from project root: python scripts/simulate.py --customers 25
"""

import argparse
import asyncio
import random
import time
import uuid
from datetime import datetime
from typing import Any

import httpx

API_BASE_URL = "http://localhost:8001"
TOTAL_CUSTOMERS = 25

SAUCES = ["buffalo-mild", "buffalo-hot", "honey-bbq", "garlic-parm", "mango-habanero"]
DIPS = ["ranch", "blue-cheese", "honey-mustard"]

PRODUCTS = {
    "boneInWings": {
        "id": "boneInWings",
        "name": "Bone-In Wings",
        "basePrice": 12.14,
        "variants": [
            {"id": "6pc", "name": "6 Wings", "price": 12.14, "count": 6},
            {"id": "12pc", "name": "12 Wings", "price": 21.59, "count": 12},
        ],
    },
    "bonelessWings": {
        "id": "bonelessWings",
        "name": "Boneless Wings",
        "basePrice": 10.79,
        "variants": [
            {"id": "8pc", "name": "8 Boneless", "price": 10.79, "count": 8},
            {"id": "16pc", "name": "16 Boneless", "price": 19.97, "count": 16},
        ],
    },
}


class CustomerError(Exception):
    """A configurator call returned an unexpected response."""


async def _call(client: httpx.AsyncClient, client_id: str, method: str, path: str, **kwargs) -> dict[str, Any]:
    response = await client.request(
        method,
        f"{API_BASE_URL}{path}",
        headers={"X-Client-Id": client_id},
        timeout=30.0,
        **kwargs,
    )
    if response.status_code >= 400:
        raise CustomerError(f"{method} {path} → {response.status_code}: {response.text[:100]}")
    return response.json()


async def _finish_current_step(client: httpx.AsyncClient, client_id: str, base: str, view: dict[str, Any]) -> None:
    """Make the current step valid with random choices."""
    step = view["current_step"]
    step_type = step["type"]

    if step_type == "single-choice":
        option = random.choice(step["options"])
        await _call(client, client_id, "POST", f"{base}/select-option",
                    json={"step_id": step["id"], "option_id": option["id"]})
    elif step_type == "variant-selector":
        await _call(client, client_id, "POST", f"{base}/select-variant",
                    json={"variant": random.choice(view["options"])})
    elif step_type == "multi-choice":
        for sauce in random.sample(SAUCES, random.randint(1, 3)):
            await _call(client, client_id, "POST", f"{base}/toggle",
                        json={"step_id": step["id"], "option_id": sauce})
    elif step_type == "included-dips":
        if random.random() < 0.2:
            await _call(client, client_id, "POST", f"{base}/no-dip", json={"step_id": step["id"]})
        else:
            for dip in random.sample(DIPS, 2):
                await _call(client, client_id, "POST", f"{base}/addon-quantity",
                            json={"step_id": step["id"], "item_id": dip, "delta": 1})
    elif step_type == "optional-addons" and random.random() < 0.5:
        await _call(client, client_id, "POST", f"{base}/addon-quantity",
                    json={"step_id": step["id"], "item_id": random.choice(DIPS), "delta": 1})


async def run_customer(client: httpx.AsyncClient, customer_num: int) -> dict[str, Any]:
    """Open a product, walk every step and add it to the cart."""
    product_id = random.choice(list(PRODUCTS))
    client_id = f"sim-{uuid.uuid4().hex[:12]}"
    start_time = time.time()

    try:
        opened = await _call(client, client_id, "POST", "/api/configurator/sessions",
                             json={"product_id": product_id, "product_data": PRODUCTS[product_id]})
        base = f"/api/configurator/sessions/{opened['session_id']}"
        view = opened["view"]

        while True:
            await _finish_current_step(client, client_id, base, view)
            moved = await _call(client, client_id, "POST", f"{base}/next")
            view = moved["view"]
            if not moved["result"]["advanced"]:
                if moved["result"]["error"]:
                    raise CustomerError(moved["result"]["error"])
                break

        cart = await _call(client, client_id, "POST", f"{base}/add-to-cart")
        elapsed = round(time.time() - start_time, 3)
        if not cart["added"]:
            raise CustomerError(cart["error"])

        return {
            "customer_num": customer_num,
            "success": True,
            "product_id": product_id,
            "total": cart["item"]["pricing"]["total"],
            "time": elapsed,
        }
    except (httpx.HTTPError, CustomerError) as e:
        return {
            "customer_num": customer_num,
            "success": False,
            "product_id": product_id,
            "error": str(e)[:100],
            "time": round(time.time() - start_time, 3),
        }


async def run_simulation(num_customers: int = TOTAL_CUSTOMERS) -> dict[str, Any]:
    print("=" * 70)
    print("🔥 CONFIGURATOR SIMULATION - CONCURRENT CUSTOMERS")
    print("=" * 70)
    print(f"👥 Customers: {num_customers}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()
    async with httpx.AsyncClient() as client:
        results = await asyncio.gather(*[run_customer(client, i + 1) for i in range(num_customers)])
    total_time = round(time.time() - start_time, 2)

    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]

    print(f"\n✅ Successful: {len(successful)}")
    print(f"❌ Failed: {len(failed)}")
    for r in failed[:5]:
        print(f"   #{r['customer_num']} {r['product_id']}: {r['error']}")

    if successful:
        revenue = sum(r["total"] for r in successful)
        avg_time = sum(r["time"] for r in successful) / len(successful)
        print(f"\n💰 Cart total: ${revenue:.2f}")
        print(f"⏱️  Average flow time: {avg_time:.3f}s")
    print(f"⏱️  Wall time: {total_time}s")
    print("=" * 70)

    return {
        "total": num_customers,
        "successful": len(successful),
        "failed": len(failed),
        "time": total_time,
    }


def main() -> None:
    global API_BASE_URL

    parser = argparse.ArgumentParser(description="Simulate concurrent configurator customers")
    parser.add_argument("--customers", type=int, default=TOTAL_CUSTOMERS)
    parser.add_argument("--url", default=API_BASE_URL)
    args = parser.parse_args()

    API_BASE_URL = args.url.rstrip("/")
    asyncio.run(run_simulation(args.customers))


if __name__ == "__main__":
    main()
