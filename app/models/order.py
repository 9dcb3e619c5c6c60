"""
Order model

One row per purchased tour-ticket bundle, whether it came from a
WooCommerce storefront or a direct landing-page booking.
"""
from sqlalchemy import Column, Integer, String, Float, DateTime, JSON, Boolean, Text
from datetime import datetime

from app.models.base import Base


class Order(Base):
    """
    Internal order

    `order_id` is the idempotency key: `{site_name}-{wooOrderId}` for
    WooCommerce orders, `{tour} | Online Tickets - Order {N}` for direct
    bookings. The unique index is created by migration once historical
    duplicates are cleaned up (see scripts/resolve_duplicates.py).
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String, index=True, nullable=True)

    # Tour
    tour = Column(String, index=True, nullable=True)
    tour_date = Column(String, index=True, nullable=True)  # YYYY-MM-DD
    tour_time = Column(String, nullable=True)
    tour_timezone = Column(String, nullable=True)
    venue = Column(String, nullable=True)

    # [{type, quantity, cost_per_ticket}, ...]
    tickets = Column(JSON, default=list)
    extras = Column(JSON, default=list)

    # Customer
    first_name = Column(String, default="")
    last_name = Column(String, default="")
    email = Column(String, index=True, default="")
    phone = Column(String, default="")
    address = Column(String, default="")
    city = Column(String, default="")
    state_region = Column(String, default="")
    zip = Column(String, default="")
    country = Column(String, default="")

    # Workflow
    status = Column(String, index=True, default="unprocessed")
    tags = Column(JSON, default=list)  # manual markers, e.g. ["reserved_date"]
    priority = Column(String, default="normal")
    fulfilled_by = Column(String, nullable=True)

    # Purchase
    purchase_date = Column(DateTime, index=True, nullable=True)  # UTC
    purchase_date_pst = Column(String, nullable=True)
    purchase_date_tour_tz = Column(String, nullable=True)
    purchase_url = Column(String, nullable=True)
    official_site_url = Column(String, nullable=True)

    # Money
    currency = Column(String, default="USD")
    total_cost = Column(Float, default=0)
    total_ticket_cost = Column(Float, nullable=True)
    projected_profit = Column(Float, nullable=True)

    # Payment
    payment_method = Column(String, nullable=True)
    payment_status = Column(String, nullable=True)
    payment_captured = Column(Boolean, nullable=True)
    payment_transaction_id = Column(String, nullable=True)
    payment_customer_id = Column(String, nullable=True)
    payment_fee = Column(Float, nullable=True)
    payment_net_amount = Column(Float, nullable=True)

    # Fulfilment and communication logs
    ticket_files = Column(JSON, default=list)  # PDF URLs
    email_communications = Column(JSON, default=list)
    customer_communication = Column(JSON, default=list)
    notes = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
