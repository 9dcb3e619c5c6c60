"""
Unit tests for the WooCommerce reconciliation rules.

Covers the pure functions only:
  - Ticket-line parsing ("x2" suffix, "(x2)" infix, quantity fallback)
  - Status and payment mapping
  - Profit calculation (fixed margin per ticket, percentage fallback)
  - Order transformation and the non-destructive update plan
  - Duplicate survivor selection

These are unit tests that do NOT require a database.
"""
from datetime import datetime
from types import SimpleNamespace

import pytest

from app.services.reconciliation import (
    DEFAULT_TOUR_MARGIN,
    FIXED_MARGIN_PER_TICKET,
    build_external_order_id,
    calculate_profit,
    choose_survivor,
    extract_payment_data,
    extract_payment_method,
    extract_tour_date,
    extract_tour_time,
    format_in_timezone,
    is_manually_protected,
    map_woo_status,
    parse_external_order_id,
    parse_ticket_line,
    plan_order_updates,
    transform_woo_order,
)


def _stored(**fields):
    """Stand-in for a stored Order row."""
    defaults = dict(
        status="unprocessed", tags=[], payment_transaction_id=None, payment_status=None,
        payment_method=None, payment_captured=None, address="", city="", state_region="",
        zip="", country="", official_site_url=None,
    )
    defaults.update(fields)
    return SimpleNamespace(**defaults)


# ────────────────────────────────────────────
# TICKET LINES
# ────────────────────────────────────────────


class TestParseTicketLine:

    def test_suffix_count_wins_over_quantity(self):
        assert parse_ticket_line({"name": "Adult x2", "quantity": 1}) == {
            "type": "Adult", "quantity": 2, "cost_per_ticket": 0,
        }

    def test_parenthesised_count(self):
        ticket = parse_ticket_line({"name": "Child (x3) - Skip the line", "quantity": 1})
        assert ticket["type"] == "Child - Skip the line"
        assert ticket["quantity"] == 3

    def test_plain_name_uses_quantity_field(self):
        ticket = parse_ticket_line({"name": "Student", "quantity": 4})
        assert ticket == {"type": "Student", "quantity": 4, "cost_per_ticket": 0}

    def test_suffix_is_case_insensitive(self):
        assert parse_ticket_line({"name": "Senior X5"})["quantity"] == 5

    def test_zero_count_in_name_is_ignored(self):
        ticket = parse_ticket_line({"name": "Adult x0", "quantity": 2})
        assert ticket["quantity"] == 2
        assert ticket["type"] == "Adult x0"

    def test_missing_or_invalid_quantity_defaults_to_one(self):
        assert parse_ticket_line({"name": "Adult"})["quantity"] == 1
        assert parse_ticket_line({"name": "Adult", "quantity": "abc"})["quantity"] == 1
        assert parse_ticket_line({"name": "Adult", "quantity": -3})["quantity"] == 1

    def test_x_inside_a_word_is_not_a_count(self):
        ticket = parse_ticket_line({"name": "Max Experience", "quantity": 1})
        assert ticket == {"type": "Max Experience", "quantity": 1, "cost_per_ticket": 0}


# ────────────────────────────────────────────
# STATUS / PAYMENT
# ────────────────────────────────────────────


class TestStatusMapping:

    @pytest.mark.parametrize("woo_status,expected", [
        ("processing", "unprocessed"),
        ("completed", "completed"),
        ("on-hold", "on-hold"),
        ("cancelled", "cancelled"),
        ("refunded", "refunded"),
        ("failed", "failed"),
        ("pending", "pending"),
        ("Processing", "unprocessed"),
    ])
    def test_known_statuses(self, woo_status, expected):
        assert map_woo_status(woo_status) == expected

    def test_unknown_or_missing_status_is_unprocessed(self):
        assert map_woo_status("checkout-draft") == "unprocessed"
        assert map_woo_status(None) == "unprocessed"

    def test_manual_protection_by_status_or_tag(self):
        assert is_manually_protected("reserved_date")
        assert is_manually_protected("unprocessed", ["awaiting_reply"])
        assert not is_manually_protected("unprocessed", ["vip"])


class TestPaymentMapping:

    def test_title_decides_gateway(self):
        assert extract_payment_method({"payment_method": "woo_gateway", "payment_method_title": "Airwallex Card"}) == "airwallex"
        assert extract_payment_method({"payment_method": "ppcp", "payment_method_title": "PayPal"}) == "paypal"

    def test_method_id_fallback(self):
        assert extract_payment_method({"payment_method": "airwallex_card"}) == "airwallex"
        assert extract_payment_method({"payment_method": "wc_card"}) == "stripe"
        assert extract_payment_method({"payment_method": "paypal_express"}) == "paypal"
        assert extract_payment_method({"payment_method": "bacs"}) == "bacs"
        assert extract_payment_method({}) is None

    def test_payment_data_for_completed_order(self):
        data = extract_payment_data({"status": "completed", "payment_method": "stripe", "transaction_id": "pi_1"})
        assert data == {
            "payment_method": "stripe",
            "payment_transaction_id": "pi_1",
            "payment_status": "succeeded",
            "payment_captured": True,
        }

    def test_payment_data_for_unmapped_status(self):
        data = extract_payment_data({"status": "on-hold", "transaction_id": ""})
        assert data["payment_status"] is None
        assert data["payment_captured"] is None
        assert data["payment_transaction_id"] is None


# ────────────────────────────────────────────
# PROFIT
# ────────────────────────────────────────────


class TestCalculateProfit:

    def test_fixed_margin_per_ticket(self):
        profit = calculate_profit([{"type": "Adult", "quantity": 2}], 100)
        assert profit.tickets[0]["cost_per_ticket"] == 39
        assert profit.total_ticket_cost == 78
        assert profit.projected_profit == 22

    def test_same_cost_for_every_ticket_type(self):
        profit = calculate_profit(
            [{"type": "Adult", "quantity": 1}, {"type": "Child", "quantity": 3}], 120
        )
        assert [t["cost_per_ticket"] for t in profit.tickets] == [19, 19]
        assert profit.total_ticket_cost == 76
        assert profit.projected_profit == 44

    def test_cost_never_negative(self):
        profit = calculate_profit([{"type": "Adult", "quantity": 2}], 10)
        assert profit.tickets[0]["cost_per_ticket"] == 0
        assert profit.total_ticket_cost == 0
        assert profit.projected_profit == 10

    def test_only_totals_are_rounded(self):
        profit = calculate_profit([{"type": "Adult", "quantity": 3}], 100)
        assert round(profit.total_ticket_cost + profit.projected_profit, 2) == 100
        assert profit.total_ticket_cost == 67
        assert profit.projected_profit == 33

    def test_percentage_fallback_without_tickets(self):
        profit = calculate_profit([], 200, tour_name="Unknown Tour")
        assert profit.projected_profit == 200 * DEFAULT_TOUR_MARGIN
        assert profit.total_ticket_cost == 200 - 200 * DEFAULT_TOUR_MARGIN

    def test_tour_table_and_explicit_margin(self):
        assert calculate_profit([], 100, tour_name="Alcatraz Island Tour").projected_profit == 20
        assert calculate_profit([], 100, tour_name="Alcatraz Island Tour", margin=0.4).projected_profit == 40

    def test_input_tickets_are_not_mutated(self):
        tickets = [{"type": "Adult", "quantity": 1, "cost_per_ticket": 0}]
        calculate_profit(tickets, 50)
        assert tickets[0]["cost_per_ticket"] == 0

    def test_margin_constant(self):
        assert FIXED_MARGIN_PER_TICKET == 11


# ────────────────────────────────────────────
# DATES / IDS
# ────────────────────────────────────────────


class TestDatesAndIds:

    def test_tour_date_and_time_from_line_item_meta(self, woo_order):
        order = woo_order(1)
        assert extract_tour_date(order) == "2025-06-12"
        assert extract_tour_time(order) == "9:30 am"

    def test_tour_date_falls_back_to_order_date(self, woo_order):
        order = woo_order(1, line_items=[{"name": "Adult", "quantity": 1}])
        assert extract_tour_date(order) == "2025-06-01"
        assert extract_tour_time(order) == ""

    def test_format_in_timezone(self):
        assert format_in_timezone(datetime(2025, 6, 1, 8, 15), "America/Los_Angeles") == "06/01/2025, 01:15:00"
        assert format_in_timezone(datetime(2025, 6, 1, 8, 15), "Not/AZone") is None
        assert format_in_timezone(None, "UTC") is None

    def test_external_order_id_round_trip(self):
        assert build_external_order_id("BranCastle", 1892) == "BranCastle-1892"
        assert parse_external_order_id("Casa-Di-Giulietta-77") == ("Casa-Di-Giulietta", 77)

    @pytest.mark.parametrize("order_id", [
        None, "", "NoDash", "BranCastle-abc", "-12",
        "Bran Castle Tour | Online Tickets - Order 1000",
    ])
    def test_non_woocommerce_ids(self, order_id):
        assert parse_external_order_id(order_id) is None


# ────────────────────────────────────────────
# TRANSFORM / UPDATE PLAN
# ────────────────────────────────────────────


class TestTransformWooOrder:

    def test_full_row(self, bran_site, woo_order):
        row = transform_woo_order(bran_site, woo_order(1892))

        assert row["order_id"] == "BranCastle-1892"
        assert row["tour"] == "Bran Castle Tour"
        assert row["status"] == "unprocessed"
        assert row["currency"] == "USD"
        assert row["tickets"] == [{"type": "Adult Ticket", "quantity": 2, "cost_per_ticket": 39}]
        assert row["total_cost"] == 100
        assert row["total_ticket_cost"] == 78
        assert row["projected_profit"] == 22
        assert row["tour_date"] == "2025-06-12"
        assert row["tour_time"] == "9:30 am"
        assert row["purchase_date"] == datetime(2025, 6, 1, 8, 15)
        assert row["purchase_date_pst"] == "06/01/2025, 01:15:00"
        assert row["purchase_date_tour_tz"] == "06/01/2025, 11:15:00"
        assert row["purchase_url"] == "https://branshop.example"
        assert row["official_site_url"] == "https://bran-castle.example/tickets"
        assert row["email"] == "ana@example.com"
        assert row["zip"] == "500001"
        assert row["payment_method"] == "stripe"
        assert row["payment_status"] == "processing"
        assert row["payment_captured"] is True
        assert row["tags"] == []

    def test_missing_billing_fields_become_empty_strings(self, bran_site, woo_order):
        row = transform_woo_order(bran_site, woo_order(5, billing={}))
        assert row["first_name"] == ""
        assert row["country"] == ""


class TestPlanOrderUpdates:

    def test_status_follows_woocommerce(self, woo_order):
        updates = plan_order_updates(_stored(status="unprocessed"), woo_order(1, status="completed"))
        assert updates["status"] == "completed"
        assert updates["payment_status"] == "succeeded"

    def test_manual_status_is_never_overwritten(self, woo_order):
        updates = plan_order_updates(_stored(status="reserved_date"), woo_order(1, status="completed"))
        assert "status" not in updates

    def test_manual_tag_blocks_status_change(self, woo_order):
        updates = plan_order_updates(_stored(tags=["awaiting_reply"]), woo_order(1, status="cancelled"))
        assert "status" not in updates

    def test_payment_fields_only_move_to_non_null(self, woo_order):
        existing = _stored(payment_transaction_id="pi_old", payment_method="stripe")
        updates = plan_order_updates(existing, woo_order(1, transaction_id="", payment_method="", payment_method_title=""))
        assert "payment_transaction_id" not in updates
        assert "payment_method" not in updates

    def test_address_is_backfilled_not_overwritten(self, woo_order):
        existing = _stored(address="", city="Bucharest")
        updates = plan_order_updates(existing, woo_order(1))
        assert updates["address"] == "Strada Lunga 5"
        assert "city" not in updates

    def test_official_url_backfill(self, bran_site, woo_order):
        updates = plan_order_updates(_stored(), woo_order(1), bran_site)
        assert updates["official_site_url"] == "https://bran-castle.example/tickets"

    def test_identical_order_produces_no_updates(self, bran_site, woo_order):
        payload = woo_order(1)
        existing = _stored(**{
            k: v for k, v in transform_woo_order(bran_site, payload).items()
            if k in _stored().__dict__
        })
        assert plan_order_updates(existing, payload, bran_site) == {}


# ────────────────────────────────────────────
# DUPLICATES
# ────────────────────────────────────────────


class TestChooseSurvivor:

    @staticmethod
    def _row(id, tags=None, updated_at=None, purchase_date=None, created_at=None):
        return SimpleNamespace(id=id, tags=tags or [], updated_at=updated_at,
                               purchase_date=purchase_date, created_at=created_at)

    def test_tagged_row_wins(self):
        rows = [
            self._row(1, tags=["reserved_date"], updated_at=datetime(2025, 1, 1)),
            self._row(2, updated_at=datetime(2025, 6, 1)),
        ]
        assert choose_survivor(rows).id == 1

    def test_most_recent_update_wins(self):
        rows = [
            self._row(1, updated_at=datetime(2025, 1, 1)),
            self._row(2, updated_at=datetime(2025, 6, 1)),
            self._row(3, updated_at=datetime(2025, 3, 1)),
        ]
        assert choose_survivor(rows).id == 2

    def test_ties_fall_through_to_purchase_date_then_id(self):
        same = datetime(2025, 1, 1)
        rows = [
            self._row(1, updated_at=same, purchase_date=datetime(2025, 5, 1)),
            self._row(2, updated_at=same, purchase_date=datetime(2025, 4, 1)),
        ]
        assert choose_survivor(rows).id == 1
        assert choose_survivor([self._row(4), self._row(9)]).id == 9

    def test_empty_group_raises(self):
        with pytest.raises(ValueError):
            choose_survivor([])
