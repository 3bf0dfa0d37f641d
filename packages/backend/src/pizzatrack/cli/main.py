"""Pizzatrack CLI — inspect and drive the order tracker from a terminal.

Usage:
    pizzatrack health                              # Server, Postgres and Redis status
    pizzatrack orders                              # List recent orders
    pizzatrack orders --status Preparing           # Orders in one status
    pizzatrack show <order-id>                     # One order with its items
    pizzatrack create -i Margherita:2:pizza -- "Office Lunch" 40.71 -74.0
    pizzatrack status <order-id> En-Route          # Move an order along
    pizzatrack delete <order-id>                   # Remove an order
    pizzatrack stats                               # Counts and average delivery time
    pizzatrack seed --count 25                     # Fill an empty dev database

Every state change goes through the HTTP API, so connected dashboards see
it live exactly as they would for a change made in the UI.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import random
import sys
from typing import Optional

import click
import httpx

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8000"

STATUSES = ["Received", "Preparing", "Ready", "En-Route", "Delivered"]
ITEM_TYPES = ["pizza", "drink", "salad", "dessert", "appetizer", "other"]


def _api_url() -> str:
    return os.environ.get("PIZZATRACK_API_URL", DEFAULT_API_URL).rstrip("/")


def _client() -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the pizzatrack backend."""
    return httpx.AsyncClient(base_url=_api_url(), timeout=30.0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _fail(message: str):
    click.secho(f"Error: {message}", fg="red", err=True)
    sys.exit(1)


def _check(r: httpx.Response) -> dict:
    """Return the JSON body, or exit with the server's error message."""
    if r.status_code >= 400:
        try:
            body = r.json()
            message = body.get("message") or body.get("detail") or r.text
        except ValueError:
            message = r.text
        _fail(f"{r.status_code} {message}")
    return r.json()


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table.

    columns: list of (header, dict_key, width)
    """
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(str(row.get(k, "-"))[:w].ljust(w) for _, k, w in columns)
        click.echo(line)


def _status_color(status: str) -> str:
    """Map order statuses to click colors."""
    colors = {
        "Received": "white",
        "Preparing": "yellow",
        "Ready": "cyan",
        "En-Route": "blue",
        "Delivered": "green",
    }
    return colors.get(status, "white")


def _parse_item(spec: str) -> dict:
    """Parse 'Margherita:2:pizza' into a sub-item body. Type defaults to other."""
    parts = spec.split(":")
    if len(parts) not in (2, 3):
        raise click.BadParameter(f"expected TITLE:AMOUNT[:TYPE], got {spec!r}")
    title, amount = parts[0], parts[1]
    item_type = parts[2] if len(parts) == 3 else "other"
    if item_type not in ITEM_TYPES:
        raise click.BadParameter(f"unknown item type {item_type!r}")
    try:
        count = int(amount)
    except ValueError:
        raise click.BadParameter(f"amount must be a number, got {amount!r}")
    return {"title": title, "amount": count, "type": item_type}


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version="0.1.0", prog_name="pizzatrack")
def main():
    """Pizzatrack — follow pizza orders from oven to doorstep."""


# ---------------------------------------------------------------------------
# pizzatrack health
# ---------------------------------------------------------------------------


@main.command()
def health():
    """Check that the backend and its dependencies are up."""
    _run(_health_impl())


async def _health_impl():
    async with _client() as c:
        try:
            r = await c.get("/api/v1/health")
        except httpx.ConnectError:
            _fail(f"cannot reach {_api_url()}")
        data = _check(r)

    overall = data.get("status", "unknown")
    click.secho(f"Status: {overall}", bold=True, fg="green" if overall == "healthy" else "yellow")
    for key in ("server", "postgres", "redis"):
        value = data.get(key, "-")
        click.echo(f"  {key:10s} {click.style(value, fg='green' if value == 'ok' else 'red')}")
    click.echo(f"  {'version':10s} {data.get('version', '-')}")


# ---------------------------------------------------------------------------
# pizzatrack orders
# ---------------------------------------------------------------------------


@main.command()
@click.option("--status", "-s", "status_filter", type=click.Choice(STATUSES), help="Filter by status")
@click.option("--limit", "-l", default=20, help="Max results")
@click.option("--offset", "-o", default=0, help="Skip this many orders")
def orders(status_filter: Optional[str], limit: int, offset: int):
    """List orders, newest first."""
    _run(_orders_impl(status_filter, limit, offset))


async def _orders_impl(status_filter: Optional[str], limit: int, offset: int):
    params: dict = {"limit": limit, "offset": offset, "includeSubItems": "false"}
    if status_filter:
        params["status"] = status_filter

    async with _client() as c:
        body = _check(await c.get("/api/v1/orders", params=params))

    rows = body["data"]
    if not rows:
        click.echo("No orders found.")
        return

    page = body["pagination"]
    click.secho(f"Orders ({len(rows)} of {page['total']}):", bold=True)
    click.echo()
    _print_table(rows, [
        ("ID", "id", 36),
        ("Status", "status", 10),
        ("Ordered", "orderTime", 19),
        ("Title", "title", 40),
    ])
    if page["hasMore"]:
        click.echo(f"\n  More with: pizzatrack orders --offset {offset + limit}")


# ---------------------------------------------------------------------------
# pizzatrack show
# ---------------------------------------------------------------------------


@main.command()
@click.argument("order_id")
@click.option("--json", "as_json", is_flag=True, help="Print the raw order")
def show(order_id: str, as_json: bool):
    """Show one order with its sub-items."""
    _run(_show_impl(order_id, as_json))


async def _show_impl(order_id: str, as_json: bool):
    async with _client() as c:
        order = _check(await c.get(f"/api/v1/orders/{order_id}"))["data"]

    if as_json:
        click.echo(_pretty_json(order))
        return

    status_str = click.style(order["status"], fg=_status_color(order["status"]))
    click.secho(order["title"], bold=True)
    click.echo(f"  id        {order['id']}")
    click.echo(f"  status    {status_str}")
    click.echo(f"  ordered   {order['orderTime']}")
    click.echo(f"  location  {order['latitude']:.5f}, {order['longitude']:.5f}")

    items = order.get("subItems") or []
    click.echo()
    click.secho("Items:", bold=True)
    if not items:
        click.echo("  (none)")
        return
    total = 0
    for item in items:
        total += item["totalPrice"]
        click.echo(
            f"  {item['amount']:3d} x {item['title'][:30]:30s}  {item['type']:10s}"
            f"  ${item['totalPrice'] / 100:8.2f}"
        )
    click.echo(f"  {'':47s}  ${total / 100:8.2f}")


# ---------------------------------------------------------------------------
# pizzatrack create
# ---------------------------------------------------------------------------


@main.command()
@click.argument("title")
@click.argument("latitude", type=float)
@click.argument("longitude", type=float)
@click.option(
    "--item", "-i", "items", multiple=True,
    help="Sub-item as TITLE:AMOUNT[:TYPE], e.g. Margherita:2:pizza (repeatable)",
)
def create(title: str, latitude: float, longitude: float, items: tuple[str, ...]):
    """Place a new order. It starts out as Received."""
    sub_items = [_parse_item(spec) for spec in items]
    _run(_create_impl(title, latitude, longitude, sub_items))


async def _create_impl(title: str, latitude: float, longitude: float, sub_items: list[dict]):
    payload = {
        "title": title,
        "latitude": latitude,
        "longitude": longitude,
        "subItems": sub_items,
    }
    async with _client() as c:
        order = _check(await c.post("/api/v1/orders", json=payload))["data"]

    click.secho(f"Created order {order['id']}", fg="green")
    click.echo(f"  {order['title']} ({len(order.get('subItems') or [])} items)")


# ---------------------------------------------------------------------------
# pizzatrack status
# ---------------------------------------------------------------------------


@main.command()
@click.argument("order_id")
@click.argument("new_status", type=click.Choice(STATUSES))
def status(order_id: str, new_status: str):
    """Change an order's status."""
    _run(_status_impl(order_id, new_status))


async def _status_impl(order_id: str, new_status: str):
    async with _client() as c:
        order = _check(
            await c.put(f"/api/v1/orders/{order_id}/status", json={"status": new_status})
        )["data"]

    status_str = click.style(order["status"], fg=_status_color(order["status"]))
    click.echo(f"Order {order['id'][:8]} is now {status_str}")


# ---------------------------------------------------------------------------
# pizzatrack delete
# ---------------------------------------------------------------------------


@main.command()
@click.argument("order_id")
@click.option("--yes", "-y", is_flag=True, help="Don't ask for confirmation")
def delete(order_id: str, yes: bool):
    """Delete an order and its sub-items."""
    if not yes:
        click.confirm(f"Delete order {order_id}?", abort=True)
    _run(_delete_impl(order_id))


async def _delete_impl(order_id: str):
    async with _client() as c:
        _check(await c.delete(f"/api/v1/orders/{order_id}"))
    click.secho(f"Deleted order {order_id}", fg="green")


# ---------------------------------------------------------------------------
# pizzatrack stats
# ---------------------------------------------------------------------------


@main.command()
def stats():
    """Order counts by status and average delivery time."""
    _run(_stats_impl())


async def _stats_impl():
    async with _client() as c:
        data = _check(await c.get("/api/v1/orders/statistics"))["data"]
        r = await c.get("/api/v1/realtime/stats")
        live = r.json().get("data", {}) if r.status_code == 200 else {}

    click.secho("Orders:", bold=True)
    click.echo(f"  total      {data['totalOrders']}")
    click.echo(f"  active     {data['activeOrders']}")
    click.echo(f"  delivered  {data['deliveredOrders']}")
    click.echo(f"  avg time   {data['averageOrderTime']:.1f} min")

    click.echo()
    click.secho("By status:", bold=True)
    for name in STATUSES:
        count = data["byStatus"].get(name, 0)
        click.echo(f"  {click.style(f'{name:10s}', fg=_status_color(name))} {count}")

    if live:
        click.echo()
        click.secho(f"Live connections: {live.get('totalConnections', 0)}", bold=True)
        for room, count in sorted(live.get("rooms", {}).items()):
            if count:
                click.echo(f"  {room:22s} {count}")


# ---------------------------------------------------------------------------
# pizzatrack seed
# ---------------------------------------------------------------------------

SEED_TITLES = [
    "Family Pizza Night", "Office Lunch Order", "Quick Dinner", "Weekend Party",
    "Late Night Snack", "Birthday Celebration", "Game Night", "Date Night",
    "Study Session", "Movie Night", "Sports Party", "Team Meeting",
]

SEED_ITEMS = {
    "pizza": ["Margherita", "Pepperoni", "Hawaiian", "Supreme", "Veggie", "BBQ Chicken"],
    "drink": ["Coca Cola", "Sprite", "Water", "Orange Juice", "Iced Tea"],
    "salad": ["Caesar", "Greek", "Garden", "Caprese"],
    "dessert": ["Tiramisu", "Cannoli", "Cheesecake", "Brownie"],
    "appetizer": ["Garlic Bread", "Chicken Wings", "Mozzarella Sticks", "Bruschetta"],
}

SEED_LOCATIONS = [
    (40.7128, -74.0060),  # Manhattan
    (40.7589, -73.9851),  # Times Square
    (40.7505, -73.9934),  # Chelsea
    (40.7831, -73.9712),  # Upper West Side
    (40.7282, -73.7949),  # Queens
    (40.6892, -73.9442),  # Brooklyn
]


def _random_order(rng: random.Random) -> tuple[dict, str]:
    """A plausible order body plus the status to move it to afterwards."""
    lat, lng = rng.choice(SEED_LOCATIONS)
    items = []
    for _ in range(rng.randint(1, 4)):
        item_type = rng.choice(list(SEED_ITEMS))
        items.append({
            "title": rng.choice(SEED_ITEMS[item_type]),
            "amount": rng.randint(1, 3),
            "type": item_type,
        })
    body = {
        "title": rng.choice(SEED_TITLES),
        # Jitter within a few blocks so markers don't stack on the map
        "latitude": round(lat + rng.uniform(-0.01, 0.01), 6),
        "longitude": round(lng + rng.uniform(-0.01, 0.01), 6),
        "subItems": items,
    }
    return body, rng.choice(STATUSES)


@main.command()
@click.option("--count", "-n", default=25, help="How many orders to create")
@click.option("--seed", "random_seed", type=int, help="Random seed for repeatable data")
def seed(count: int, random_seed: Optional[int]):
    """Create sample orders spread over every status."""
    _run(_seed_impl(count, random_seed))


async def _seed_impl(count: int, random_seed: Optional[int]):
    rng = random.Random(random_seed)
    by_status: dict[str, int] = {}

    async with _client() as c:
        for _ in range(count):
            body, target = _random_order(rng)
            order = _check(await c.post("/api/v1/orders", json=body))["data"]
            if target != order["status"]:
                _check(await c.put(
                    f"/api/v1/orders/{order['id']}/status", json={"status": target}
                ))
            by_status[target] = by_status.get(target, 0) + 1

    click.secho(f"Seeded {count} orders", fg="green")
    for name in STATUSES:
        if by_status.get(name):
            click.echo(f"  {name:10s} {by_status[name]}")


if __name__ == "__main__":
    main()
