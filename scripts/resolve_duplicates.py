#!/usr/bin/env python3
"""
Collapse orders sharing an order_id down to one row.

Run this before applying the migration that makes orders.order_id unique.

Usage: python scripts/resolve_duplicates.py [--dry-run]
"""
import argparse
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import func

from app.models.base import session_scope
from app.models.order import Order
from app.services.order_sync_service import OrderSyncService


def report(db) -> int:
    groups = (
        db.query(Order.order_id, func.count(Order.id))
        .group_by(Order.order_id)
        .having(func.count(Order.id) > 1)
        .all()
    )
    for order_id, count in groups:
        print(f"  {order_id}: {count} rows")
    print(f"Found {len(groups)} duplicated order ids")
    return len(groups)


def main():
    parser = argparse.ArgumentParser(description="Resolve duplicate orders")
    parser.add_argument("--dry-run", action="store_true", help="Only report duplicates, don't delete")
    args = parser.parse_args()

    with session_scope() as db:
        if not report(db) or args.dry_run:
            return
        result = OrderSyncService(db).resolve_duplicates()
        print(f"Removed {result['deleted']} rows across {result['groups']} groups")


if __name__ == "__main__":
    main()
