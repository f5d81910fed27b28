"""Seed the credit product catalog.

Usage:
    DATABASE_URL=... python scripts/seed_products.py [--currency usd] \
        [--stripe-price Creator=price_123 ...]

Idempotent: an active product with the same name is updated in place.
--stripe-price attaches a recurring Stripe price, which makes the product
available as a subscription.
"""

from __future__ import annotations

import argparse
import os
import sys

# (name, price in minor units, credits, description)
DEFAULT_PRODUCTS: list[tuple[str, int, int, str]] = [
    ("Starter", 499, 10, "10 images"),
    ("Creator", 1499, 40, "40 images, best for regular use"),
    ("Studio", 3999, 120, "120 images for heavy users"),
]


def parse_price_ids(pairs: list[str]) -> dict[str, str]:
    """Parse NAME=PRICE_ID pairs."""
    price_ids: dict[str, str] = {}
    for pair in pairs:
        name, sep, price_id = pair.partition("=")
        if not sep or not name or not price_id:
            raise argparse.ArgumentTypeError(f"expected NAME=PRICE_ID, got {pair!r}")
        price_ids[name] = price_id
    return price_ids


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--currency", default="usd", help="ISO currency code (default: usd)")
    parser.add_argument(
        "--stripe-price",
        action="append",
        default=[],
        metavar="NAME=PRICE_ID",
        help="Recurring Stripe price for a product (repeatable)",
    )
    args = parser.parse_args()

    try:
        price_ids = parse_price_ids(args.stripe_price)
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))

    unknown = set(price_ids) - {name for name, *_ in DEFAULT_PRODUCTS}
    if unknown:
        parser.error(f"unknown product(s): {', '.join(sorted(unknown))}")

    if not os.environ.get("DATABASE_URL"):
        print("ERROR: DATABASE_URL not set")
        sys.exit(1)

    # Import after env validation so a missing DB doesn't blow up on import
    from chatcanvas.infra.db import txn
    from chatcanvas.infra.repositories.products_repository import upsert_product

    with txn() as cur:
        for name, price, credits, description in DEFAULT_PRODUCTS:
            product_id = upsert_product(
                cur,
                name=name,
                price=price,
                currency=args.currency.lower(),
                credits_amount=credits,
                description=description,
                stripe_price_id=price_ids.get(name),
            )
            recurring = " (subscription)" if name in price_ids else ""
            print(
                f"  {name:<8} {credits:>4} credits  {price / 100:>7.2f} "
                f"{args.currency.upper()}  {product_id}{recurring}"
            )

    print("Catalog seeded.")


if __name__ == "__main__":
    main()
