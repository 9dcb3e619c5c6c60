#!/usr/bin/env python3
"""
Full WooCommerce sync, run directly (not through the API) to avoid HTTP timeouts.

Pulls new orders and re-checks recent ones for every active storefront, or
for a single one. --full pages from the newest order down to --max-pages
regardless of what is stored, to fill gaps left when a sync hit the page cap.

Usage: python scripts/full_sync.py [--site SITE_NAME] [--cleanup-duplicates] [--full] [--max-pages N]
"""
import asyncio
import argparse
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.config import get_settings
from app.models.base import session_scope, init_db
from app.services.order_sync_service import OrderSyncService
from app.services.site_config import get_woo_site


def print_site_result(result: dict):
    print(f"\n--- {result['site']} ---")
    print(f"  New orders:     {result['new_orders']}")
    print(f"  Status updates: {result['status_updates']}")
    for warning in result.get('warnings') or []:
        print(f"  WARN  {warning}")
    for error in result.get('errors') or []:
        print(f"  ERROR {error}")


async def run(site_name: str = None, cleanup_duplicates: bool = False, full: bool = False) -> int:
    init_db()
    with session_scope() as db:
        service = OrderSyncService(db)

        if site_name:
            site = get_woo_site(db, site_name)
            if not site:
                print(f"Unknown or inactive site: {site_name}")
                return 1
            result = await service.sync_site(site, full=full)
            print_site_result(result)
            if cleanup_duplicates:
                cleanup = service.resolve_duplicates()
                print(f"\nDuplicates: {cleanup['groups']} groups, {cleanup['deleted']} rows removed")
            return 0 if not result['errors'] else 2

        result = await service.sync_all(cleanup_duplicates=cleanup_duplicates, full=full)
        for site_result in result['sites']:
            print_site_result(site_result)

        print(f"\nTotal new orders:     {result['total_new_orders']}")
        print(f"Total status updates: {result['status_updates']}")
        if cleanup_duplicates:
            print(f"Merged duplicates:    {result['merged_duplicates']}")
        return 0 if result['success'] else 2


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Sync WooCommerce orders into the back office")
    parser.add_argument("--site", help="Only sync this site_name")
    parser.add_argument("--cleanup-duplicates", action="store_true", help="Collapse duplicate orders afterwards")
    parser.add_argument("--full", action="store_true", help="Re-page from the newest order to fill skipped ranges")
    parser.add_argument("--max-pages", type=int, help="Override WOO_MAX_PAGES for this run")
    args = parser.parse_args()

    if args.max_pages:
        get_settings().woo_max_pages = args.max_pages

    sys.exit(asyncio.run(run(args.site, args.cleanup_duplicates, args.full)))
