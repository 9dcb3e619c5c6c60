"""
Booking Service

Direct landing-page bookings: charge the card through a Stripe
PaymentIntent, then create the order with the next sequential display id
("{tour} | Online Tickets - Order 1000").
"""
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

import stripe
from sqlalchemy.orm import Session

from app.config import get_settings
from app.models.order import Order
from app.models.woocommerce import Tour
from app.services.email_service import EmailService
from app.services.email_templates import booking_receipt_html
from app.services.reconciliation import PACIFIC_TZ, calculate_profit, format_in_timezone
from app.utils.errors import BackOfficeError, ConfigurationError, PaymentError
from app.utils.logger import log

FIRST_ORDER_NUMBER = 1000

_ORDER_NUMBER = re.compile(r"Order (\d+)$")


def build_booking_order_id(tour_name: str, number: int) -> str:
    return f"{tour_name} | Online Tickets - Order {number}"


def next_order_number(order_ids: List[Optional[str]]) -> int:
    """One past the highest display number in use, starting at 1000"""
    highest = FIRST_ORDER_NUMBER - 1
    for order_id in order_ids:
        match = _ORDER_NUMBER.search(order_id or "")
        if match:
            highest = max(highest, int(match.group(1)))
    return highest + 1


def _balance_amounts(intent: Any) -> Dict[str, Optional[float]]:
    """Fee and net from the expanded latest charge, in currency units"""
    charge = getattr(intent, "latest_charge", None)
    balance = getattr(charge, "balance_transaction", None)
    fee = getattr(balance, "fee", None)
    net = getattr(balance, "net", None)
    return {
        "payment_fee": fee / 100 if fee is not None else None,
        "payment_net_amount": net / 100 if net is not None else None,
    }


class BookingService:
    """Takes payment for and records landing-page bookings"""

    def __init__(self, db: Session, email_service: Optional[EmailService] = None):
        self.db = db
        self.settings = get_settings()
        self.email_service = email_service

    def next_order_id(self, tour_name: str) -> str:
        rows = (
            self.db.query(Order.order_id)
            .filter(Order.order_id.like("% | Online Tickets - Order %"))
            .all()
        )
        return build_booking_order_id(tour_name, next_order_number([row[0] for row in rows]))

    def charge(self, order_id: str, total: float, currency: str, payment_method_id: str) -> Any:
        """
        Confirm a PaymentIntent server-side

        Raises:
            ConfigurationError: Stripe secret key not configured
            PaymentError: Stripe declined or the intent did not succeed
        """
        if not self.settings.stripe_secret_key:
            raise ConfigurationError("Stripe secret key not configured")

        try:
            intent = stripe.PaymentIntent.create(
                api_key=self.settings.stripe_secret_key,
                amount=int(round(total * 100)),
                currency=currency.lower(),
                payment_method=payment_method_id,
                confirm=True,
                description=order_id,
                automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
                expand=["latest_charge.balance_transaction"],
            )
        except stripe.StripeError as e:
            log.warning(f"Stripe declined {order_id}: {e.user_message or str(e)}")
            raise PaymentError(e.user_message or "Payment failed. Please try again.")

        if intent.status != "succeeded":
            log.warning(f"PaymentIntent {intent.id} for {order_id} ended as {intent.status}")
            raise PaymentError("Payment failed. Please try again.")
        return intent

    async def create_booking(self, booking: Dict[str, Any]) -> Order:
        """
        Charge and record a booking

        Args:
            booking: {tour_name, date, time, tickets: [{type, quantity, price}],
                      customer: {first_name, last_name, email, ...},
                      total, currency, payment_method_id}

        Returns:
            The created Order
        """
        tour_name = booking["tour_name"]
        order_id = self.next_order_id(tour_name)
        currency = str(booking.get("currency") or "USD").upper()
        total = float(booking["total"])

        intent = self.charge(order_id, total, currency, booking["payment_method_id"])

        tour = self.db.query(Tour).filter(Tour.name == tour_name).first()
        tickets = [
            {"type": t["type"], "quantity": int(t["quantity"]), "cost_per_ticket": 0}
            for t in booking.get("tickets") or []
        ]
        profit = calculate_profit(
            tickets, total, tour_name=tour_name,
            margin=tour.profit_margin if tour else None,
        )
        customer = booking.get("customer") or {}
        purchase_date = datetime.utcnow()

        order = Order(
            order_id=order_id,
            tour=tour_name,
            tour_date=booking.get("date"),
            tour_time=booking.get("time") or "",
            tour_timezone=tour.timezone if tour else None,
            tickets=profit.tickets,
            extras=[],
            first_name=customer.get("first_name") or "",
            last_name=customer.get("last_name") or "",
            email=customer.get("email") or "",
            phone=customer.get("phone") or "",
            address=customer.get("address") or "",
            city=customer.get("city") or "",
            state_region=customer.get("state_region") or "",
            zip=customer.get("zip") or "",
            country=customer.get("country") or "",
            status="unprocessed",
            tags=[],
            priority="normal",
            purchase_date=purchase_date,
            purchase_date_pst=format_in_timezone(purchase_date, PACIFIC_TZ),
            purchase_date_tour_tz=format_in_timezone(purchase_date, tour.timezone if tour else None),
            purchase_url=f"Landing Page - {tour_name}",
            official_site_url=tour.official_ticketing_url if tour else None,
            currency=currency,
            total_cost=total,
            total_ticket_cost=profit.total_ticket_cost,
            projected_profit=profit.projected_profit,
            payment_method="stripe",
            payment_status=intent.status,
            payment_captured=True,
            payment_transaction_id=intent.id,
            payment_customer_id=getattr(intent, "customer", None),
            **_balance_amounts(intent),
        )
        self.db.add(order)
        self.db.commit()
        self.db.refresh(order)
        log.info(f"Created landing-page booking {order_id}: {currency} {total:.2f} ({intent.id})")

        await self._send_receipt(order, booking)
        return order

    async def _send_receipt(self, order: Order, booking: Dict[str, Any]):
        """Best effort; the booking is paid and stored whatever happens here"""
        if not self.email_service or not order.email:
            return
        try:
            await self.email_service.send_email(
                to=order.email,
                subject=f"Your {order.tour} order has been received",
                html=booking_receipt_html(
                    tour_name=order.tour,
                    order_id=order.order_id,
                    tour_date=order.tour_date or "",
                    tour_time=order.tour_time or "",
                    currency=order.currency,
                    total=order.total_cost,
                    tickets=booking.get("tickets") or [],
                ),
            )
        except (BackOfficeError, ValueError) as e:
            log.error(f"Booking {order.order_id} saved but receipt email failed: {str(e)}")

    def publishable_key(self) -> str:
        if not self.settings.stripe_publishable_key:
            raise ConfigurationError("Stripe publishable key not configured")
        return self.settings.stripe_publishable_key
