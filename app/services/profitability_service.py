"""
Profitability Service

Batch recompute of ticket cost and projected profit for orders whose
profit data is missing or implausible (imported before the calculator
existed, or stored with the whole total as profit).
"""
import asyncio
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.config import get_settings
from app.models.order import Order
from app.models.woocommerce import Tour, WooCommerceCredential
from app.services.reconciliation import ProfitBreakdown, calculate_profit, parse_external_order_id
from app.utils.logger import log

SKIP_STATUSES = ("cancelled", "failed", "refunded")

# Above this projected_profit / total_cost ratio the stored profit is
# assumed wrong (ticket cost never deducted)
IMPLAUSIBLE_MARGIN = 0.90

MAX_REPORTED_ERRORS = 10


def needs_profit_update(order: Order) -> bool:
    """Whether an order should be picked up by the batch recompute"""
    if not order.total_cost or order.total_cost <= 0:
        return False
    if order.status in SKIP_STATUSES:
        return False
    if order.projected_profit is None or order.total_ticket_cost is None:
        return True
    return order.projected_profit / order.total_cost > IMPLAUSIBLE_MARGIN


class ProfitabilityService:
    """Recalculates order profit in small, throttled batches"""

    def __init__(
        self,
        db: Session,
        max_orders: Optional[int] = None,
        batch_size: Optional[int] = None,
        delay_between_updates_ms: Optional[int] = None,
        delay_between_batches_ms: Optional[int] = None,
    ):
        settings = get_settings()
        self.db = db
        self.max_orders = max_orders or settings.profit_max_orders_per_run
        self.batch_size = batch_size or settings.profit_batch_size
        self.delay_between_updates_ms = (
            settings.profit_delay_between_updates_ms if delay_between_updates_ms is None
            else delay_between_updates_ms
        )
        self.delay_between_batches_ms = (
            settings.profit_delay_between_batches_ms if delay_between_batches_ms is None
            else delay_between_batches_ms
        )

    def margin_for(self, order: Order) -> Optional[float]:
        """
        Configured fallback margin for an order's tour.

        Tour.profit_margin first, then the storefront credential's
        profit_margin. None lets the calculator use its built-in table.
        """
        if order.tour:
            tour = self.db.query(Tour).filter(Tour.name == order.tour).first()
            if tour and tour.profit_margin is not None:
                return tour.profit_margin

        parsed = parse_external_order_id(order.order_id)
        if parsed:
            credential = self.db.query(WooCommerceCredential).filter(
                WooCommerceCredential.site_name == parsed[0]
            ).first()
            if credential and credential.profit_margin is not None:
                return credential.profit_margin
        return None

    def apply_profit(self, order: Order) -> ProfitBreakdown:
        """Recompute and assign profit fields on an order (no commit)"""
        profit = calculate_profit(
            order.tickets or [],
            order.total_cost or 0,
            tour_name=order.tour,
            margin=self.margin_for(order),
        )
        order.tickets = profit.tickets
        order.total_ticket_cost = profit.total_ticket_cost
        order.projected_profit = profit.projected_profit
        return profit

    def find_candidates(self) -> List[Order]:
        orders = (
            self.db.query(Order)
            .filter(Order.total_cost > 0, Order.status.notin_(SKIP_STATUSES))
            .order_by(Order.purchase_date.desc(), Order.id.desc())
            .all()
        )
        return [order for order in orders if needs_profit_update(order)]

    async def recalculate(self) -> Dict[str, Any]:
        """
        Recompute profit for up to max_orders candidates

        Returns:
            {success, processed, updated, failed, remaining, errors, message}
        """
        candidates = self.find_candidates()
        batch = candidates[:self.max_orders]
        remaining = len(candidates) - len(batch)

        log.info(f"Profit recalculation: {len(candidates)} candidates, processing {len(batch)}")

        updated = 0
        errors: List[str] = []

        for index, order in enumerate(batch, start=1):
            try:
                profit = self.apply_profit(order)
                self.db.commit()
                updated += 1
                log.debug(f"Order {order.order_id}: profit {profit.projected_profit} of {order.total_cost}")
            except Exception as e:
                self.db.rollback()
                log.error(f"Error recalculating profit for order {order.order_id}: {str(e)}")
                errors.append(f"{order.order_id}: {str(e)}")

            if index < len(batch):
                if index % self.batch_size == 0:
                    await asyncio.sleep(self.delay_between_batches_ms / 1000)
                else:
                    await asyncio.sleep(self.delay_between_updates_ms / 1000)

        message = f"Updated {updated} of {len(batch)} orders"
        if remaining > 0:
            message += f". {remaining} orders still need updates, run again"

        log.info(f"Profit recalculation complete: {message}")
        return {
            "success": not errors,
            "processed": len(batch),
            "updated": updated,
            "failed": len(errors),
            "remaining": remaining,
            "errors": errors[:MAX_REPORTED_ERRORS],
            "message": message,
        }
