#!/usr/bin/env python3
"""
CLI: operator tools for the stock ledger and orders.

Usage:
    # Create missing tables
    python -m cli.stock --init-db

    # Seed products from a JSON file: [{"id", "name", "price", "stock": {size: {color: qty}}}]
    python -m cli.stock --seed products.json

    # Show a product's stock map
    python -m cli.stock --show TSHIRT-01

    # Restock one (size, color) cell
    python -m cli.stock --restock TSHIRT-01 --size M --color black --qty 20

    # Recent stock movements (optionally for one product)
    python -m cli.stock --movements [--product TSHIRT-01]

    # Recent orders
    python -m cli.stock --orders [--status pending]
"""
from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from decimal import Decimal

# Allow running from project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from storefront.database import AsyncSessionLocal, get_db_ctx, init_models
from storefront.exceptions import NotFoundError
from storefront.deps import get_order_pipeline
from storefront.services import ledger


async def cmd_init_db() -> None:
    await init_models()
    print("Tables created.")


async def cmd_seed(path: str) -> None:
    with open(path, encoding="utf-8") as fh:
        products = json.load(fh)

    async with get_db_ctx() as session:
        for p in products:
            await ledger.create_product(
                session,
                product_id=p["id"],
                name=p.get("name", p["id"]),
                price=Decimal(str(p.get("price", 0))),
                stock=p.get("stock") or {},
                sizes=p.get("sizes"),
                colors=p.get("colors"),
            )
            print(f"  + {p['id']}")
    print(f"Seeded {len(products)} product(s).")


def _print_stock(product_id: str, stock: ledger.StockMap) -> None:
    print(f"\n{product_id}")
    print(f"{'SIZE':<10} {'COLOR':<20} {'QTY':>8}")
    print("-" * 40)
    for size, by_color in stock.items():
        for color, qty in by_color.items():
            print(f"{size:<10} {color:<20} {qty:>8}")


async def cmd_show(product_id: str) -> None:
    async with AsyncSessionLocal() as session:
        try:
            stock = await ledger.get_stock(session, product_id)
        except NotFoundError as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            sys.exit(1)
    if not stock:
        print(f"{product_id} has no stock cells.")
        return
    _print_stock(product_id, stock)


async def cmd_restock(product_id: str, size: str, color: str, qty: int) -> None:
    try:
        async with get_db_ctx() as session:
            stock = await ledger.increment_stock(session, product_id, size, color, qty)
    except (NotFoundError, ValueError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)
    _print_stock(product_id, stock)


async def cmd_movements(product_id: str | None) -> None:
    async with AsyncSessionLocal() as session:
        rows = await ledger.list_movements(session, product_id=product_id, limit=100)

    if not rows:
        print("No stock movements recorded.")
        return

    print(f"\n{'PRODUCT':<20} {'SIZE':<8} {'COLOR':<12} {'DELTA':>7} {'AFTER':>7} {'REASON':<14} ORDER")
    print("-" * 100)
    for r in rows:
        print(
            f"{r.product_id:<20} {r.size:<8} {r.color:<12} {r.delta:>7} "
            f"{r.quantity_after:>7} {r.reason:<14} {r.order_id or '-'}"
        )


async def cmd_orders(status: str | None) -> None:
    pipeline = get_order_pipeline()
    async with AsyncSessionLocal() as session:
        orders = await pipeline.search_orders(session, status=status, limit=50)

    if not orders:
        print("No orders found.")
        return

    print(f"\n{'ORDER':<24} {'STATUS':<11} {'PAYMENT':<8} {'TOTAL':>10} CUSTOMER")
    print("-" * 90)
    for o in orders:
        print(
            f"{o.id:<24} {o.status.value:<11} {o.payment_status.value:<8} "
            f"{o.total:>10} {o.customer_name} ({o.customer_phone})"
        )


def main() -> None:
    parser = argparse.ArgumentParser(description="Storefront stock & orders CLI")
    parser.add_argument("--init-db", action="store_true", help="Create missing tables")
    parser.add_argument("--seed", metavar="PATH", help="Seed products from a JSON file")
    parser.add_argument("--show", metavar="PRODUCT_ID", help="Print a product's stock map")
    parser.add_argument("--restock", metavar="PRODUCT_ID", help="Add units to one cell")
    parser.add_argument("--size")
    parser.add_argument("--color")
    parser.add_argument("--qty", type=int)
    parser.add_argument("--movements", action="store_true", help="Print recent stock movements")
    parser.add_argument("--product", metavar="PRODUCT_ID", help="Filter --movements")
    parser.add_argument("--orders", action="store_true", help="Print recent orders")
    parser.add_argument("--status", help="Filter --orders by status")
    args = parser.parse_args()

    if args.init_db:
        asyncio.run(cmd_init_db())
    elif args.seed:
        asyncio.run(cmd_seed(args.seed))
    elif args.show:
        asyncio.run(cmd_show(args.show))
    elif args.restock:
        if not (args.size and args.color and args.qty):
            parser.error("--restock needs --size, --color and --qty")
        asyncio.run(cmd_restock(args.restock, args.size, args.color, args.qty))
    elif args.movements:
        asyncio.run(cmd_movements(args.product))
    elif args.orders:
        asyncio.run(cmd_orders(args.status))
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
