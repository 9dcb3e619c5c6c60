"""
Order Sync Service

Persists WooCommerce orders through the reconciliation rules. Every entry
point (scheduled sync, admin sync, webhook, CLI scripts) calls this service;
they differ only in how they obtain the WooCommerce payload.
"""
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

import httpx
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.connectors.woocommerce import WooCommerceConnector
from app.models.order import Order
from app.services.reconciliation import (
    build_external_order_id,
    choose_survivor,
    is_manually_protected,
    map_woo_status,
    parse_external_order_id,
    plan_order_updates,
    transform_woo_order,
)
from app.services.site_config import WooSite, load_woo_sites
from app.utils.errors import RateLimitError, WooCommerceAPIError
from app.utils.logger import log


@dataclass
class UpsertResult:
    """Outcome of reconciling one WooCommerce order"""
    outcome: str  # created, updated, unchanged, skipped_manual, race_resolved
    order: Optional[Order] = None
    changes: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_new(self) -> bool:
        return self.outcome == "created"


class OrderSyncService:
    """Idempotent WooCommerce → orders reconciliation"""

    def __init__(
        self,
        db: Session,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        request_delay: Optional[float] = None,
        backoff_seconds: Optional[float] = None,
    ):
        self.db = db
        self.transport = transport
        self.request_delay = request_delay
        self.backoff_seconds = backoff_seconds
        self.settings = get_settings()

    def connector_for(self, site: WooSite) -> WooCommerceConnector:
        return WooCommerceConnector(
            site,
            db=self.db,
            transport=self.transport,
            request_delay=self.request_delay,
            backoff_seconds=self.backoff_seconds,
        )

    # ────────────────────────────────────────────
    # UPSERT
    # ────────────────────────────────────────────

    def _find(self, order_id: str) -> Optional[Order]:
        return (
            self.db.query(Order)
            .filter(Order.order_id == order_id)
            .order_by(Order.updated_at.desc(), Order.id.desc())
            .first()
        )

    def upsert_woo_order(self, site: WooSite, woo_order: Mapping[str, Any]) -> UpsertResult:
        """
        Create or non-destructively update the order for a WooCommerce payload.

        A concurrent writer inserting the same order_id first (webhook racing
        a batch sync) is not an error: the other row is reloaded and the
        update path applied to it.

        Args:
            site: Storefront the payload came from
            woo_order: WooCommerce order payload

        Returns:
            UpsertResult

        Raises:
            ValueError: Payload has no order id
        """
        if not woo_order.get("id"):
            raise ValueError(f"{site.site_name}: WooCommerce payload has no order id")

        order_id = build_external_order_id(site.site_name, woo_order["id"])
        existing = self._find(order_id)
        if existing is not None:
            return self._apply_updates(existing, site, woo_order)

        order = Order(**transform_woo_order(site, woo_order))
        self.db.add(order)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            existing = self._find(order_id)
            if existing is None:
                raise
            log.warning(f"Order {order_id} was inserted concurrently, applying update path")
            result = self._apply_updates(existing, site, woo_order)
            return UpsertResult("race_resolved", existing, result.changes)

        self.db.refresh(order)
        log.info(f"Created order {order_id} ({order.status}, {order.currency} {order.total_cost})")
        return UpsertResult("created", order)

    def _apply_updates(self, existing: Order, site: WooSite, woo_order: Mapping[str, Any]) -> UpsertResult:
        updates = plan_order_updates(existing, woo_order, site)
        status_blocked = (
            is_manually_protected(existing.status, existing.tags)
            and map_woo_status(woo_order.get("status")) != existing.status
        )

        if updates:
            for column, value in updates.items():
                setattr(existing, column, value)
            existing.updated_at = datetime.utcnow()
            self.db.commit()
            log.info(f"Updated order {existing.order_id}: {', '.join(sorted(updates))}")

        if status_blocked:
            log.info(f"Order {existing.order_id} is manually protected, status left as {existing.status}")
            return UpsertResult("skipped_manual", existing, updates)
        return UpsertResult("updated" if updates else "unchanged", existing, updates)

    def process_webhook(self, site: WooSite, payload: Mapping[str, Any]) -> Optional[UpsertResult]:
        """
        Reconcile a webhook delivery

        Returns:
            UpsertResult, or None for WooCommerce's ping (payload without id)
        """
        if not payload.get("id"):
            log.info(f"Webhook ping from {site.site_name}")
            return None
        return self.upsert_woo_order(site, payload)

    # ────────────────────────────────────────────
    # BATCH SYNC
    # ────────────────────────────────────────────

    def _site_orders_query(self, site_name: str):
        return self.db.query(Order).filter(Order.order_id.like(f"{site_name}-%"))

    def highest_stored_woo_id(self, site_name: str) -> int:
        """Highest WooCommerce id already stored for a storefront (0 if none)"""
        highest = 0
        rows = self._site_orders_query(site_name).with_entities(Order.order_id).all()
        for (order_id,) in rows:
            parsed = parse_external_order_id(order_id)
            if parsed and parsed[0] == site_name:
                highest = max(highest, parsed[1])
        return highest

    async def sync_site(self, site: WooSite, full: bool = False) -> Dict[str, Any]:
        """
        Pull new orders for one storefront and re-check its recent ones

        Args:
            site: Storefront to sync
            full: Page from the newest order regardless of what is stored,
                filling gaps left by an earlier run that hit the page cap

        Returns:
            {"site", "new_orders", "status_updates", "errors", "warnings"}
        """
        connector = self.connector_for(site)
        sync_start = time.time()
        result: Dict[str, Any] = {
            "site": site.site_name,
            "new_orders": 0,
            "status_updates": 0,
            "errors": [],
            "warnings": [],
        }

        await connector.log_sync_start()

        highest = 0 if full else self.highest_stored_woo_id(site.site_name)
        recent_ids = self._recent_order_ids(site.site_name)
        try:
            fetched = await connector.fetch_new_orders(highest)
        except RateLimitError:
            message = f"{site.site_name}: rate limited after retry, run again in a few minutes"
            result["errors"].append(message)
            await connector.log_sync_failure(message)
            return result
        except WooCommerceAPIError as e:
            result["errors"].append(str(e))
            await connector.log_sync_failure(str(e))
            return result

        new_orders = sorted(fetched["new_orders"], key=lambda o: int(o.get("id") or 0))
        for woo_order in new_orders:
            try:
                upsert = self.upsert_woo_order(site, woo_order)
                if upsert.outcome in ("created", "race_resolved"):
                    result["new_orders"] += 1
            except (ValueError, SQLAlchemyError) as e:
                self.db.rollback()
                log.error(f"Error saving {site.site_name} order {woo_order.get('id')}: {str(e)}")
                result["errors"].append(f"{site.site_name} order {woo_order.get('id')}: {str(e)}")

        result["status_updates"] = self._recheck_recent(site, recent_ids, fetched["fetched"], result)

        if fetched["pages"] >= connector.max_pages and len(new_orders) >= connector.max_pages * connector.per_page:
            result["warnings"].append(
                f"{site.site_name}: page limit reached, orders below this page were skipped and later syncs "
                f"will not fetch them; backfill with scripts/full_sync.py --site {site.site_name} --full --max-pages N"
            )

        duration = time.time() - sync_start
        if result["errors"]:
            await connector.log_sync_failure("; ".join(result["errors"]), records_failed=len(result["errors"]))
        else:
            await connector.log_sync_success(
                new_orders=result["new_orders"],
                status_updates=result["status_updates"],
                highest_order_id=self.highest_stored_woo_id(site.site_name),
                sync_duration_seconds=duration,
            )
        return result

    def _recent_order_ids(self, site_name: str) -> List[int]:
        """Row ids of the most recent orders stored before this run's inserts"""
        rows = (
            self._site_orders_query(site_name)
            .with_entities(Order.id)
            .order_by(Order.purchase_date.desc(), Order.id.desc())
            .limit(self.settings.woo_recent_orders_to_check)
            .all()
        )
        return [row_id for (row_id,) in rows]

    def _recheck_recent(
        self, site: WooSite, recent_ids: List[int], fetched: List[Dict[str, Any]], result: Dict[str, Any]
    ) -> int:
        """Apply the update path to previously stored recent orders that were fetched again"""
        if not recent_ids:
            return 0
        by_id = {int(order["id"]): order for order in fetched if order.get("id")}
        recent = self.db.query(Order).filter(Order.id.in_(recent_ids)).all()

        updated = 0
        for order in recent:
            parsed = parse_external_order_id(order.order_id)
            if not parsed or parsed[0] != site.site_name or parsed[1] not in by_id:
                continue
            try:
                upsert = self._apply_updates(order, site, by_id[parsed[1]])
            except SQLAlchemyError as e:
                self.db.rollback()
                result["errors"].append(f"{order.order_id}: {str(e)}")
                continue
            if upsert.changes:
                updated += 1
        return updated

    async def sync_all(self, cleanup_duplicates: bool = False, full: bool = False) -> Dict[str, Any]:
        """
        Sync every active storefront

        Args:
            cleanup_duplicates: Run the duplicate resolver afterwards
            full: Re-page every storefront from its newest order (see sync_site)

        Returns:
            {success, total_new_orders, status_updates, merged_duplicates,
             warnings, errors, sites}
        """
        sites = load_woo_sites(self.db)
        summary: Dict[str, Any] = {
            "success": True,
            "total_new_orders": 0,
            "status_updates": 0,
            "merged_duplicates": 0,
            "warnings": [],
            "errors": [],
            "sites": [],
        }

        if not sites:
            summary["warnings"].append("No active WooCommerce sites configured")
            log.warning("WooCommerce sync skipped: no active sites")

        for site in sites:
            site_result = await self.sync_site(site, full=full)
            summary["sites"].append(site_result)
            summary["total_new_orders"] += site_result["new_orders"]
            summary["status_updates"] += site_result["status_updates"]
            summary["warnings"].extend(site_result["warnings"])
            summary["errors"].extend(site_result["errors"])

        if cleanup_duplicates:
            summary["merged_duplicates"] = self.resolve_duplicates()["deleted"]

        summary["success"] = not summary["errors"]
        log.info(
            f"WooCommerce sync complete: {summary['total_new_orders']} new, "
            f"{summary['status_updates']} updated, {len(summary['errors'])} errors"
        )
        return summary

    # ────────────────────────────────────────────
    # DUPLICATES
    # ────────────────────────────────────────────

    def resolve_duplicates(self) -> Dict[str, Any]:
        """
        Collapse rows sharing an order_id down to one survivor each

        Returns:
            {"groups": int, "deleted": int, "kept": [ids]}
        """
        groups = (
            self.db.query(Order.order_id, func.count(Order.id))
            .filter(Order.order_id.isnot(None), Order.order_id != "")
            .group_by(Order.order_id)
            .having(func.count(Order.id) > 1)
            .all()
        )

        deleted = 0
        kept = []
        try:
            for order_id, _count in groups:
                rows = self.db.query(Order).filter(Order.order_id == order_id).all()
                survivor = choose_survivor(rows)
                for row in rows:
                    if row.id != survivor.id:
                        self.db.delete(row)
                        deleted += 1
                kept.append(survivor.id)
                log.info(f"Duplicate {order_id}: kept #{survivor.id}, removed {len(rows) - 1}")
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

        log.info(f"Duplicate cleanup: {len(groups)} groups, {deleted} rows deleted")
        return {"groups": len(groups), "deleted": deleted, "kept": kept}
