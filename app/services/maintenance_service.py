"""
Maintenance Service

Reusable data migrations an admin can run (and re-run) safely: moving
manual statuses into tags, normalising legacy status spellings, and
backfilling fields older imports left empty.
"""
from typing import Any, Dict, List, Optional

import httpx
from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.models.ad_spend import AdSpend
from app.models.order import Order
from app.services.order_sync_service import OrderSyncService
from app.services.reconciliation import MANUAL_STATUSES, extract_payment_data, parse_external_order_id
from app.services.site_config import WooSite, load_woo_sites
from app.utils.errors import RateLimitError, WooCommerceAPIError
from app.utils.logger import log

LEGACY_STATUS_FIXES = {
    "new": "unprocessed",
    "complete": "completed",
}

PAYMENT_FIELDS = ("payment_method", "payment_transaction_id", "payment_status", "payment_captured")


class MaintenanceService:
    """One-shot, idempotent fixes over stored orders"""

    def __init__(
        self,
        db: Session,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        request_delay: Optional[float] = None,
        backoff_seconds: Optional[float] = None,
    ):
        self.db = db
        self.sync_service = OrderSyncService(
            db, transport=transport, request_delay=request_delay, backoff_seconds=backoff_seconds
        )

    def _sites_by_name(self) -> Dict[str, WooSite]:
        return {site.site_name: site for site in load_woo_sites(self.db)}

    def migrate_statuses_to_tags(self) -> Dict[str, Any]:
        """
        Move reserved_date / awaiting_reply from status into tags

        The status becomes unprocessed; legacy "new" is renamed too.
        """
        orders = (
            self.db.query(Order)
            .filter(Order.status.in_(list(MANUAL_STATUSES) + ["new"]))
            .all()
        )

        details: List[str] = []
        for order in orders:
            tags = list(order.tags or [])
            previous = order.status
            if previous in MANUAL_STATUSES and previous not in tags:
                tags.append(previous)
            order.tags = tags
            order.status = "unprocessed"
            suffix = " + tag" if previous in MANUAL_STATUSES else ""
            details.append(f"{order.order_id or order.id}: {previous} -> unprocessed{suffix}")

        self.db.commit()
        log.info(f"Status migration: {len(orders)} orders moved to unprocessed")
        return {
            "success": True,
            "updated_count": len(orders),
            "details": details,
            "message": f"Migrated {len(orders)} orders",
        }

    def fix_legacy_statuses(self) -> Dict[str, Any]:
        """Rename legacy status spellings (complete -> completed, new -> unprocessed)"""
        counts: Dict[str, int] = {}
        for legacy, current in LEGACY_STATUS_FIXES.items():
            counts[legacy] = (
                self.db.query(Order)
                .filter(Order.status == legacy)
                .update({Order.status: current}, synchronize_session=False)
            )
        self.db.commit()

        total = sum(counts.values())
        log.info(f"Legacy status fix: {counts}")
        return {"success": True, "total_fixed": total, "by_status": counts}

    async def backfill_payment_data(self, limit: int = 50) -> Dict[str, Any]:
        """
        Fill payment fields for WooCommerce orders imported without them

        Fetches each order from its storefront; existing values are only
        replaced by non-null ones. Stops early when a store keeps rate
        limiting.
        """
        sites = self._sites_by_name()
        candidates = (
            self.db.query(Order)
            .filter(or_(Order.payment_method.is_(None), Order.payment_transaction_id.is_(None)))
            .order_by(Order.purchase_date.desc())
            .all()
        )
        candidates = [order for order in candidates if parse_external_order_id(order.order_id)]
        batch = candidates[:limit]

        updated = 0
        skipped = 0
        errors: List[str] = []
        processed = 0

        for order in batch:
            site_name, woo_id = parse_external_order_id(order.order_id)
            site = sites.get(site_name)
            if not site:
                processed += 1
                errors.append(f"Unknown site: {site_name} for order {order.order_id}")
                continue

            try:
                woo_order = await self.sync_service.connector_for(site).fetch_order(woo_id)
            except RateLimitError:
                errors.append(f"{site_name}: rate limited after retry, run again in a few minutes")
                break
            except WooCommerceAPIError as e:
                processed += 1
                errors.append(f"{order.order_id}: {str(e)}")
                continue

            processed += 1
            if woo_order is None:
                skipped += 1
                continue

            payment = extract_payment_data(woo_order)
            changes = {
                field: payment[field]
                for field in PAYMENT_FIELDS
                if payment[field] is not None and getattr(order, field) != payment[field]
            }
            if not changes:
                skipped += 1
                continue

            for field, value in changes.items():
                setattr(order, field, value)
            self.db.commit()
            updated += 1

        remaining = len(candidates) - processed
        message = f"Updated {updated} orders, skipped {skipped}"
        if remaining > 0:
            message += ". More orders need payment data, run again"

        log.info(f"Payment backfill: {message} ({len(errors)} errors)")
        return {
            "success": not errors,
            "updated": updated,
            "skipped": skipped,
            "remaining": remaining,
            "errors": errors[:10],
            "message": message,
        }

    def backfill_purchase_urls(self) -> Dict[str, Any]:
        """Set purchase_url to the storefront URL where it is empty"""
        sites = self._sites_by_name()
        orders = (
            self.db.query(Order)
            .filter(or_(Order.purchase_url.is_(None), Order.purchase_url == ""))
            .all()
        )

        updated = 0
        errors: List[str] = []
        for order in orders:
            parsed = parse_external_order_id(order.order_id)
            if not parsed:
                continue
            site = sites.get(parsed[0])
            if not site:
                errors.append(f"Unknown site: {parsed[0]} for order {order.order_id}")
                continue
            order.purchase_url = site.website_url
            updated += 1

        self.db.commit()
        log.info(f"Purchase URL backfill: {updated} updated, {len(errors)} unknown sites")
        return {"success": True, "updated": updated, "errors": errors or None}

    def consolidate_tours(self, mapping: Dict[str, str]) -> Dict[str, Any]:
        """
        Rename tour name variants on orders and ad spend

        Ad-spend rows that would collide with an existing canonical row are
        merged into it (costs added).

        Args:
            mapping: {variant name: canonical name}
        """
        orders_updated = 0
        ad_spend_updated = 0
        ad_spend_merged = 0

        for old_name, new_name in mapping.items():
            if not old_name or not new_name or old_name == new_name:
                continue

            orders_updated += (
                self.db.query(Order)
                .filter(Order.tour == old_name)
                .update({Order.tour: new_name}, synchronize_session=False)
            )

            for row in self.db.query(AdSpend).filter(AdSpend.tour_name == old_name).all():
                target = self.db.query(AdSpend).filter(
                    AdSpend.date == row.date,
                    AdSpend.tour_name == new_name,
                    AdSpend.source == row.source,
                ).first()
                if target:
                    target.cost = (target.cost or 0) + (row.cost or 0)
                    self.db.delete(row)
                    ad_spend_merged += 1
                else:
                    row.tour_name = new_name
                    ad_spend_updated += 1
                self.db.flush()

        self.db.commit()
        log.info(
            f"Tour consolidation: {orders_updated} orders, {ad_spend_updated} ad spend renamed, "
            f"{ad_spend_merged} merged"
        )
        return {
            "success": True,
            "orders_updated": orders_updated,
            "ad_spend_updated": ad_spend_updated,
            "ad_spend_merged": ad_spend_merged,
        }
