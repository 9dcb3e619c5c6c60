#!/usr/bin/env python3
"""
Move manual statuses (reserved_date, awaiting_reply) into tags and rename
legacy status values.

Usage: python scripts/migrate_statuses_to_tags.py [--skip-legacy-fix]
"""
import argparse
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.models.base import session_scope
from app.services.maintenance_service import MaintenanceService


def main():
    parser = argparse.ArgumentParser(description="Migrate order statuses to tags")
    parser.add_argument("--skip-legacy-fix", action="store_true",
                        help="Don't rename complete -> completed / new -> unprocessed")
    args = parser.parse_args()

    with session_scope() as db:
        service = MaintenanceService(db)
        result = service.migrate_statuses_to_tags()
        print(f"Migrated {result['updated_count']} orders to tags")
        for detail in result.get('details') or []:
            print(f"  {detail}")

        if not args.skip_legacy_fix:
            fixed = service.fix_legacy_statuses()
            print(f"Renamed {fixed['total_fixed']} legacy statuses: {fixed['by_status']}")


if __name__ == "__main__":
    main()
