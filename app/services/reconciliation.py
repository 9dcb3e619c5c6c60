"""
WooCommerce → internal order reconciliation

Pure functions only: no database, no HTTP. Every entry point (scheduled
sync, admin sync, webhook, CLI scripts) goes through this module so the
parsing, status mapping and profit rules exist exactly once.
"""
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import parser as date_parser

from app.services.site_config import WooSite

# Profit the business keeps per ticket, in the storefront currency
FIXED_MARGIN_PER_TICKET = 11

# Percentage fallback when an order carries no usable ticket rows
DEFAULT_TOUR_MARGIN = 0.25
TOUR_PROFIT_MARGINS = {
    "Alcatraz Island Tour": 0.20,
    "Peles Castle Tour": 0.25,
    "Bran Castle Tour": 0.25,
    "Corvin Castle Tour": 0.25,
    "Statue of Liberty Tour": 0.20,
    "Hadrian's Villa Tour": 0.30,
    "Pena Palace Tour": 0.25,
    "Villa d'Este Tour": 0.30,
    "Casa di Giulietta Tour": 0.30,
}

DEFAULT_STATUS = "unprocessed"
WOO_STATUS_MAP = {
    "pending": "pending",
    "processing": "unprocessed",
    "on-hold": "on-hold",
    "completed": "completed",
    "cancelled": "cancelled",
    "refunded": "refunded",
    "failed": "failed",
    "pending-payment": "pending-payment",
}

# woo status -> (payment_status, payment_captured)
PAYMENT_STATUS_MAP = {
    "completed": ("succeeded", True),
    "processing": ("processing", True),
    "pending": ("pending", False),
    "failed": ("failed", False),
    "cancelled": ("canceled", False),
    "refunded": ("refunded", True),
}

# Set by staff; automatic syncs must never overwrite these
MANUAL_STATUSES = ("reserved_date", "awaiting_reply")

BACKFILL_FIELDS = (
    ("address", "address_1"),
    ("city", "city"),
    ("state_region", "state"),
    ("zip", "postcode"),
    ("country", "country"),
)

PACIFIC_TZ = "America/Los_Angeles"

_SUFFIX_QTY = re.compile(r"\s+x(\d+)$", re.IGNORECASE)
_PAREN_QTY = re.compile(r"\s*\(x(\d+)\)", re.IGNORECASE)
_TOUR_TIME = re.compile(r"(\d{1,2}:\d{2}\s*(?:am|pm))", re.IGNORECASE)


# ────────────────────────────────────────────
# TICKETS
# ────────────────────────────────────────────

def _as_quantity(value: Any) -> int:
    try:
        quantity = int(value)
    except (TypeError, ValueError):
        return 1
    return quantity if quantity >= 1 else 1


def parse_ticket_line(item: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Extract ticket type and count from a WooCommerce line item.

    Storefronts encode multiplicity in the product title ("Adult x2",
    "Adult (x2)"), and the quantity field is unreliable for those catalogs,
    so a count found in the name wins over the quantity field.

    Args:
        item: Line item with at least `name` and optionally `quantity`

    Returns:
        {"type": str, "quantity": int, "cost_per_ticket": 0}
    """
    name = str(item.get("name") or "").strip()
    quantity = _as_quantity(item.get("quantity") or 1)

    match = _SUFFIX_QTY.search(name)
    if match and int(match.group(1)) >= 1:
        quantity = int(match.group(1))
        name = _SUFFIX_QTY.sub("", name).strip()
    else:
        match = _PAREN_QTY.search(name)
        if match and int(match.group(1)) >= 1:
            quantity = int(match.group(1))
            name = _PAREN_QTY.sub("", name, count=1).strip()

    return {"type": name, "quantity": quantity, "cost_per_ticket": 0}


def derive_tickets(woo_order: Mapping[str, Any]) -> List[Dict[str, Any]]:
    """Ticket rows for every line item of a WooCommerce order."""
    return [parse_ticket_line(item) for item in woo_order.get("line_items") or []]


# ────────────────────────────────────────────
# STATUS / PAYMENT
# ────────────────────────────────────────────

def map_woo_status(woo_status: Optional[str]) -> str:
    """Map a WooCommerce status to the internal status; unknown -> unprocessed."""
    return WOO_STATUS_MAP.get(str(woo_status or "").strip().lower(), DEFAULT_STATUS)


def extract_payment_method(woo_order: Mapping[str, Any]) -> Optional[str]:
    """Normalise the gateway name: airwallex, stripe, paypal or the raw id."""
    method = str(woo_order.get("payment_method") or "")
    title = str(woo_order.get("payment_method_title") or "").lower()
    method_lower = method.lower()

    if "airwallex" in title:
        return "airwallex"
    if "stripe" in title:
        return "stripe"
    if "paypal" in title:
        return "paypal"

    if "airwallex" in method_lower:
        return "airwallex"
    if "stripe" in method_lower or "card" in method_lower:
        return "stripe"
    if "paypal" in method_lower:
        return "paypal"
    return method or None


def extract_payment_data(woo_order: Mapping[str, Any]) -> Dict[str, Any]:
    """Payment fields derived from a WooCommerce order."""
    woo_status = str(woo_order.get("status") or "").strip().lower()
    payment_status, captured = PAYMENT_STATUS_MAP.get(woo_status, (None, None))
    return {
        "payment_method": extract_payment_method(woo_order),
        "payment_transaction_id": woo_order.get("transaction_id") or None,
        "payment_status": payment_status,
        "payment_captured": captured,
    }


def is_manually_protected(status: Optional[str], tags: Optional[Iterable[str]] = None) -> bool:
    """True when staff marked the order and automatic status updates must skip it."""
    if status in MANUAL_STATUSES:
        return True
    return any(tag in MANUAL_STATUSES for tag in (tags or []))


# ────────────────────────────────────────────
# PROFIT
# ────────────────────────────────────────────

@dataclass
class ProfitBreakdown:
    tickets: List[Dict[str, Any]]
    total_ticket_cost: float
    projected_profit: float


def tour_margin(tour_name: Optional[str], override: Optional[float] = None) -> float:
    """Fallback percentage margin for a tour."""
    if override is not None:
        return float(override)
    return TOUR_PROFIT_MARGINS.get(tour_name or "", DEFAULT_TOUR_MARGIN)


def calculate_profit(
    tickets: Sequence[Mapping[str, Any]],
    total_cost: float,
    tour_name: Optional[str] = None,
    margin: Optional[float] = None,
) -> ProfitBreakdown:
    """
    Derive ticket cost and projected profit for an order.

    Every ticket costs the agent what the customer paid per ticket minus
    FIXED_MARGIN_PER_TICKET (never below zero); the same cost applies to
    every ticket type. Only the order totals are rounded to cents. Without
    ticket data the tour's percentage margin is applied to the total instead.

    Args:
        tickets: Quantity-resolved ticket rows
        total_cost: What the customer paid
        tour_name: Used to look up the fallback margin
        margin: Explicit fallback margin (tour or storefront setting)

    Returns:
        ProfitBreakdown with per-ticket costs filled in.
        total_ticket_cost + projected_profit == total_cost.
    """
    total_cost = float(total_cost or 0)
    rows = [dict(ticket) for ticket in tickets or []]
    total_tickets = sum(int(row.get("quantity") or 0) for row in rows)

    if total_tickets > 0:
        paid_per_ticket = total_cost / total_tickets
        agent_cost = max(0.0, paid_per_ticket - FIXED_MARGIN_PER_TICKET)
        for row in rows:
            row["cost_per_ticket"] = agent_cost
        total_ticket_cost = round(
            sum(row["cost_per_ticket"] * int(row.get("quantity") or 0) for row in rows), 2
        )
    else:
        profit_share = tour_margin(tour_name, margin)
        total_ticket_cost = round(total_cost - total_cost * profit_share, 2)

    return ProfitBreakdown(
        tickets=rows,
        total_ticket_cost=total_ticket_cost,
        projected_profit=round(total_cost - total_ticket_cost, 2),
    )


# ────────────────────────────────────────────
# DATES
# ────────────────────────────────────────────

def _parse_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return date_parser.parse(str(value))
    except (ValueError, OverflowError):
        return None


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_purchase_date(woo_order: Mapping[str, Any]) -> datetime:
    """Order creation time as naive UTC (WooCommerce *_gmt fields preferred)."""
    parsed = (_parse_datetime(woo_order.get("date_created_gmt"))
              or _parse_datetime(woo_order.get("date_created")))
    if parsed is None:
        return datetime.utcnow()
    return _to_naive_utc(parsed)


def format_in_timezone(utc_value: Optional[datetime], tz_name: Optional[str]) -> Optional[str]:
    """Render a UTC timestamp as MM/DD/YYYY, HH:MM:SS in the given zone."""
    if not utc_value or not tz_name:
        return None
    try:
        zone = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        return None
    aware = utc_value.replace(tzinfo=timezone.utc) if utc_value.tzinfo is None else utc_value
    return aware.astimezone(zone).strftime("%m/%d/%Y, %H:%M:%S")


def _meta_value(woo_order: Mapping[str, Any], key: str) -> Iterable[Any]:
    for item in woo_order.get("line_items") or []:
        for meta in item.get("meta_data") or []:
            if str(meta.get("key") or "").lower() == key and meta.get("value"):
                yield meta["value"]


def extract_tour_date(woo_order: Mapping[str, Any], today: Optional[date] = None) -> str:
    """Tour date from the `date` line-item meta, else the order date."""
    for value in _meta_value(woo_order, "date"):
        parsed = _parse_datetime(value)
        if parsed:
            return parsed.date().isoformat()
    created = _parse_datetime(woo_order.get("date_created"))
    if created:
        return created.date().isoformat()
    return (today or datetime.utcnow().date()).isoformat()


def extract_tour_time(woo_order: Mapping[str, Any]) -> str:
    """Tour time ("9:30 am") from the `time` line-item meta, else ""."""
    for value in _meta_value(woo_order, "time"):
        match = _TOUR_TIME.search(str(value))
        if match:
            return match.group(0)
    return ""


# ────────────────────────────────────────────
# ORDER IDS
# ────────────────────────────────────────────

def build_external_order_id(site_name: str, woo_order_id: Any) -> str:
    return f"{site_name}-{woo_order_id}"


def parse_external_order_id(order_id: Optional[str]) -> Optional[Tuple[str, int]]:
    """
    Split "{site_name}-{wooId}" into its parts.

    Returns None for direct bookings and malformed ids.
    """
    if not order_id or "-" not in order_id:
        return None
    site_name, _, raw_id = order_id.rpartition("-")
    if not site_name or not raw_id.isdigit():
        return None
    return site_name, int(raw_id)


# ────────────────────────────────────────────
# TRANSFORM / UPDATE
# ────────────────────────────────────────────

def _money(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def transform_woo_order(site: WooSite, woo_order: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Build a complete internal order row from a WooCommerce order.

    Args:
        site: Storefront the order came from
        woo_order: Order payload from /wp-json/wc/v3/orders

    Returns:
        Column values for a new Order
    """
    total_cost = _money(woo_order.get("total"))
    profit = calculate_profit(
        derive_tickets(woo_order), total_cost,
        tour_name=site.tour_name, margin=site.profit_margin,
    )
    purchase_date = parse_purchase_date(woo_order)
    billing = woo_order.get("billing") or {}

    row = {
        "order_id": build_external_order_id(site.site_name, woo_order.get("id")),
        "tour": site.tour_name,
        "tour_date": extract_tour_date(woo_order),
        "tour_time": extract_tour_time(woo_order),
        "tour_timezone": site.timezone,
        "tickets": profit.tickets,
        "extras": [],
        "first_name": billing.get("first_name") or "",
        "last_name": billing.get("last_name") or "",
        "email": billing.get("email") or "",
        "phone": billing.get("phone") or "",
        "address": billing.get("address_1") or "",
        "city": billing.get("city") or "",
        "state_region": billing.get("state") or "",
        "zip": billing.get("postcode") or "",
        "country": billing.get("country") or "",
        "status": map_woo_status(woo_order.get("status")),
        "tags": [],
        "priority": "normal",
        "purchase_date": purchase_date,
        "purchase_date_pst": format_in_timezone(purchase_date, PACIFIC_TZ),
        "purchase_date_tour_tz": format_in_timezone(purchase_date, site.timezone),
        "purchase_url": site.website_url,
        "official_site_url": site.official_site_url,
        "fulfilled_by": None,
        "venue": f"{site.site_name} - Main Location",
        "currency": str(woo_order.get("currency") or "USD").upper(),
        "total_cost": total_cost,
        "total_ticket_cost": profit.total_ticket_cost,
        "projected_profit": profit.projected_profit,
    }
    row.update(extract_payment_data(woo_order))
    return row


def plan_order_updates(existing: Any, woo_order: Mapping[str, Any], site: Optional[WooSite] = None) -> Dict[str, Any]:
    """
    Non-destructive updates for an order that already exists.

    Status follows WooCommerce unless staff marked the order; payment
    fields only move to a new non-null value; address and official URL are
    only backfilled when empty. Tickets, tags and totals are never touched.

    Args:
        existing: Stored order (anything with Order's attributes)
        woo_order: Latest WooCommerce payload
        site: Storefront, for the official URL backfill

    Returns:
        Dict of column -> new value (empty when nothing changes)
    """
    updates: Dict[str, Any] = {}

    mapped_status = map_woo_status(woo_order.get("status"))
    if (not is_manually_protected(existing.status, existing.tags)
            and existing.status != mapped_status):
        updates["status"] = mapped_status

    payment = extract_payment_data(woo_order)
    for field in ("payment_transaction_id", "payment_status", "payment_method"):
        value = payment[field]
        if value and getattr(existing, field) != value:
            updates[field] = value
    if payment["payment_captured"] is not None and existing.payment_captured != payment["payment_captured"]:
        updates["payment_captured"] = payment["payment_captured"]

    billing = woo_order.get("billing") or {}
    for column, billing_key in BACKFILL_FIELDS:
        if not getattr(existing, column) and billing.get(billing_key):
            updates[column] = billing[billing_key]

    if site and site.official_site_url and not existing.official_site_url:
        updates["official_site_url"] = site.official_site_url

    return updates


# ────────────────────────────────────────────
# DUPLICATES
# ────────────────────────────────────────────

def _recency_key(order: Any) -> Tuple[datetime, datetime, datetime, int]:
    return (
        order.updated_at or datetime.min,
        order.purchase_date or datetime.min,
        order.created_at or datetime.min,
        order.id or 0,
    )


def choose_survivor(orders: Sequence[Any]) -> Any:
    """
    Pick the row to keep among orders sharing one order_id.

    Rows with manual tags win; otherwise (and among tagged rows) the most
    recently updated, then purchased, then created row is kept.
    """
    if not orders:
        raise ValueError("choose_survivor needs at least one order")
    tagged = [order for order in orders if order.tags]
    return max(tagged or list(orders), key=_recency_key)
