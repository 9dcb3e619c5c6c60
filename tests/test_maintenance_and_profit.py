"""
Profit recompute batches and the admin maintenance operations.
"""
import asyncio
from datetime import datetime

import httpx

from app.models.ad_spend import AdSpend
from app.models.order import Order
from app.models.woocommerce import Tour, WooCommerceCredential
from app.services.maintenance_service import MaintenanceService
from app.services.profitability_service import ProfitabilityService, needs_profit_update


def _order(order_id, total=100.0, **fields):
    defaults = dict(tour="Bran Castle Tour", status="unprocessed", tags=[], tickets=[],
                    purchase_date=datetime(2025, 6, 1))
    defaults.update(fields)
    return Order(order_id=order_id, total_cost=total, **defaults)


# ────────────────────────────────────────────
# PROFIT
# ────────────────────────────────────────────


class TestNeedsProfitUpdate:

    def test_missing_profit(self):
        assert needs_profit_update(_order("A-1"))

    def test_implausible_profit(self):
        assert needs_profit_update(_order("A-1", projected_profit=95, total_ticket_cost=5))
        assert not needs_profit_update(_order("A-1", projected_profit=22, total_ticket_cost=78))

    def test_skipped_orders(self):
        assert not needs_profit_update(_order("A-1", total=0))
        assert not needs_profit_update(_order("A-1", status="refunded"))


class TestProfitabilityService:

    def test_recalculates_capped_batch(self, db, settings):
        db.add_all([
            _order("BranCastle-1", tickets=[{"type": "Adult", "quantity": 2, "cost_per_ticket": 0}]),
            _order("BranCastle-2", projected_profit=100, total_ticket_cost=0),
            _order("BranCastle-3"),
            _order("BranCastle-4", projected_profit=22, total_ticket_cost=78),
            _order("BranCastle-5", status="cancelled"),
        ])
        db.commit()

        service = ProfitabilityService(db, max_orders=2, batch_size=1)
        first = asyncio.run(service.recalculate())

        assert first["processed"] == 2
        assert first["updated"] == 2
        assert first["remaining"] == 1
        assert "run again" in first["message"]

        second = asyncio.run(service.recalculate())
        assert second["processed"] == 1
        assert second["remaining"] == 0

        one = db.query(Order).filter(Order.order_id == "BranCastle-1").one()
        assert one.total_ticket_cost == 78
        assert one.tickets[0]["cost_per_ticket"] == 39
        cancelled = db.query(Order).filter(Order.order_id == "BranCastle-5").one()
        assert cancelled.projected_profit is None

    def test_margin_prefers_tour_then_storefront(self, db, settings):
        db.add(WooCommerceCredential(site_name="BranCastle", tour_name="Bran Castle Tour",
                                     api_url="https://x/wp-json/wc/v3", website_url="https://x",
                                     consumer_key="ck", consumer_secret="cs", profit_margin=0.4))
        db.add(_order("BranCastle-9", total=200))
        db.commit()
        service = ProfitabilityService(db)
        order = db.query(Order).one()

        assert service.margin_for(order) == 0.4
        db.add(Tour(name="Bran Castle Tour", profit_margin=0.1))
        db.commit()
        assert service.margin_for(order) == 0.1

        service.apply_profit(order)
        assert order.projected_profit == 20


# ────────────────────────────────────────────
# MAINTENANCE
# ────────────────────────────────────────────


class TestStatusMigrations:

    def test_manual_statuses_move_to_tags(self, db, settings):
        db.add_all([
            _order("A-1", status="reserved_date"),
            _order("A-2", status="awaiting_reply", tags=["awaiting_reply"]),
            _order("A-3", status="new"),
            _order("A-4", status="completed"),
        ])
        db.commit()

        result = MaintenanceService(db).migrate_statuses_to_tags()

        assert result["updated_count"] == 3
        rows = {o.order_id: o for o in db.query(Order).all()}
        assert rows["A-1"].status == "unprocessed"
        assert rows["A-1"].tags == ["reserved_date"]
        assert rows["A-2"].tags == ["awaiting_reply"]
        assert rows["A-3"].tags == []
        assert rows["A-4"].status == "completed"

    def test_legacy_status_spellings(self, db, settings):
        db.add_all([_order("A-1", status="complete"), _order("A-2", status="complete"), _order("A-3", status="new")])
        db.commit()

        result = MaintenanceService(db).fix_legacy_statuses()

        assert result["total_fixed"] == 3
        assert result["by_status"] == {"new": 1, "complete": 2}
        db.expire_all()
        assert {o.status for o in db.query(Order).all()} == {"completed", "unprocessed"}


class TestBackfills:

    def test_payment_backfill(self, db, settings, bran_site, woo_order):
        db.add_all([
            _order("BranCastle-1"),
            _order("BranCastle-2"),
            _order("Gone-3"),
            _order("Bran Castle Tour | Online Tickets - Order 1000"),
        ])
        db.commit()

        def handler(request):
            woo_id = int(request.url.path.rsplit("/", 1)[1])
            if woo_id == 2:
                return httpx.Response(404, json={})
            return httpx.Response(200, json=woo_order(woo_id, status="completed"))

        result = asyncio.run(
            MaintenanceService(db, transport=httpx.MockTransport(handler)).backfill_payment_data(limit=10)
        )

        assert result["updated"] == 1
        assert result["skipped"] == 1
        assert result["remaining"] == 0
        assert result["errors"] == ["Unknown site: Gone for order Gone-3"]
        one = db.query(Order).filter(Order.order_id == "BranCastle-1").one()
        assert one.payment_method == "stripe"
        assert one.payment_transaction_id == "pi_1"
        assert one.payment_status == "succeeded"
        assert one.payment_captured is True

    def test_purchase_url_backfill(self, db, settings, bran_site):
        db.add_all([_order("BranCastle-1", purchase_url=""), _order("BranCastle-2", purchase_url="https://kept")])
        db.commit()

        result = MaintenanceService(db).backfill_purchase_urls()

        assert result["updated"] == 1
        assert db.query(Order).filter(Order.order_id == "BranCastle-1").one().purchase_url == "https://branshop.example"

    def test_consolidate_tours(self, db, settings):
        db.add_all([
            _order("A-1", tour="Bran Castle"),
            _order("A-2", tour="Bran Castle Tour"),
            AdSpend(date="2025-06-01", tour_name="Bran Castle", source="google_ads", cost=5),
            AdSpend(date="2025-06-01", tour_name="Bran Castle Tour", source="google_ads", cost=7),
            AdSpend(date="2025-06-02", tour_name="Bran Castle", source="google_ads", cost=3),
        ])
        db.commit()

        result = MaintenanceService(db).consolidate_tours({"Bran Castle": "Bran Castle Tour"})

        assert result == {"success": True, "orders_updated": 1, "ad_spend_updated": 1, "ad_spend_merged": 1}
        db.expire_all()
        assert {o.tour for o in db.query(Order).all()} == {"Bran Castle Tour"}
        merged = db.query(AdSpend).filter(AdSpend.date == "2025-06-01").one()
        assert merged.cost == 12
