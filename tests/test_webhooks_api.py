"""
Webhook endpoint tests: WooCommerce HMAC verification and order upsert,
ad-spend and email feeds with their shared secrets.
"""
import base64
import hashlib
import hmac
import json

import pytest

from app.api.webhooks import verify_woocommerce_signature
from app.models.ad_spend import AdSpend
from app.models.order import Order


def _sign(body: bytes, secret: str = "whsec-bran") -> str:
    return base64.b64encode(hmac.new(secret.encode(), body, hashlib.sha256).digest()).decode()


def _post_woo(client, payload, site="BranCastle", signature=None, secret="whsec-bran"):
    body = json.dumps(payload).encode()
    headers = {"content-type": "application/json"}
    headers["x-wc-webhook-signature"] = signature if signature is not None else _sign(body, secret)
    url = "/webhooks/woocommerce" + (f"?site={site}" if site else "")
    return client.post(url, content=body, headers=headers)


# ────────────────────────────────────────────
# SIGNATURES
# ────────────────────────────────────────────


class TestSignature:

    def test_valid_signature(self):
        body = b'{"id": 1}'
        assert verify_woocommerce_signature(body, _sign(body), "whsec-bran")

    def test_signature_over_different_body_fails(self):
        assert not verify_woocommerce_signature(b'{"id": 2}', _sign(b'{"id": 1}'), "whsec-bran")

    def test_missing_secret_or_signature_fails(self):
        assert not verify_woocommerce_signature(b"{}", _sign(b"{}"), None)
        assert not verify_woocommerce_signature(b"{}", None, "whsec-bran")


# ────────────────────────────────────────────
# WOOCOMMERCE
# ────────────────────────────────────────────


class TestWooCommerceWebhook:

    def test_get_reports_active(self, client):
        assert client.get("/webhooks/woocommerce").json() == {"message": "Webhook endpoint active"}

    def test_missing_site(self, client, bran_site, woo_order):
        assert _post_woo(client, woo_order(1), site=None).status_code == 400

    def test_unknown_site(self, client, bran_site, woo_order):
        assert _post_woo(client, woo_order(1), site="Atlantis").status_code == 400

    def test_missing_signature(self, client, bran_site, woo_order):
        response = client.post("/webhooks/woocommerce?site=BranCastle", json=woo_order(1))
        assert response.status_code == 401

    def test_wrong_secret(self, client, db, bran_site, woo_order):
        assert _post_woo(client, woo_order(1), secret="not-the-secret").status_code == 401
        assert db.query(Order).count() == 0

    def test_ping_without_id(self, client, db, bran_site):
        response = _post_woo(client, {"webhook_id": 12})
        assert response.status_code == 200
        assert response.json()["message"] == "Ping received"
        assert db.query(Order).count() == 0

    def test_created_then_updated(self, client, db, bran_site, woo_order):
        created = _post_woo(client, woo_order(1892))
        assert created.status_code == 201
        assert created.json()["order_id"] == "BranCastle-1892"

        updated = _post_woo(client, woo_order(1892, status="completed"))
        assert updated.status_code == 200
        assert updated.json()["outcome"] == "updated"
        assert "status" in updated.json()["changes"]

        order = db.query(Order).filter(Order.order_id == "BranCastle-1892").one()
        assert order.status == "completed"
        assert order.projected_profit == 22

    def test_consumer_secret_is_the_default_secret(self, client, db, bran_site, woo_order):
        from app.models.woocommerce import WooCommerceCredential
        credential = db.query(WooCommerceCredential).one()
        credential.webhook_secret = None
        db.commit()

        assert _post_woo(client, woo_order(3), secret="cs_test").status_code == 201


# ────────────────────────────────────────────
# AD SPEND
# ────────────────────────────────────────────


class TestAdSpendWebhook:

    def test_secret_not_configured(self, client):
        response = client.post("/webhooks/ad-spend", json={"date": "2025-06-01", "tour_name": "Bran", "cost": 5})
        assert response.status_code == 500

    def test_wrong_secret(self, client, settings, monkeypatch):
        monkeypatch.setattr(settings, "ad_spend_webhook_secret", "spend-secret")
        response = client.post(
            "/webhooks/ad-spend",
            json={"date": "2025-06-01", "tour_name": "Bran", "cost": 5},
            headers={"Authorization": "Bearer nope"},
        )
        assert response.status_code == 401

    def test_records_are_normalised_and_upserted(self, client, db, settings, monkeypatch):
        monkeypatch.setattr(settings, "ad_spend_webhook_secret", "spend-secret")
        headers = {"x-webhook-secret": "spend-secret"}
        records = [
            {"date": "2025-06-01", "tour_name": "Bran Castle Tour", "source": "google_ads", "cost": 12_500_000},
            {"date": "06/02/2025", "tour": "Bran Castle Tour", "cost": "7.5", "currency": "usd"},
            {"date": "", "tour_name": "Bran Castle Tour", "cost": 3},
            {"date": "2025-06-03", "tour_name": "Bran Castle Tour", "cost": -1},
        ]

        response = client.post("/webhooks/ad-spend", json=records, headers=headers)

        data = response.json()
        assert response.status_code == 200
        assert data["processed"] == 4
        assert data["created"] == 2
        assert data["invalid"] == 2
        assert len(data["errors"]) == 2

        google = db.query(AdSpend).filter(AdSpend.source == "google_ads").one()
        assert google.cost == 12.5
        assert google.currency == "EUR"
        manual = db.query(AdSpend).filter(AdSpend.source == "unknown").one()
        assert manual.date == "2025-06-02"
        assert manual.currency == "USD"

        again = client.post(
            "/webhooks/ad-spend",
            json={"date": "2025-06-01", "tour_name": "Bran Castle Tour", "source": "google_ads", "cost": 14},
            headers={"Authorization": "Bearer spend-secret"},
        ).json()
        assert again["updated"] == 1
        db.expire_all()
        assert db.query(AdSpend).count() == 2
        assert db.query(AdSpend).filter(AdSpend.source == "google_ads").one().cost == 14

    def test_listing_requires_login(self, client, db, user_headers):
        db.add(AdSpend(date="2025-06-01", tour_name="Bran Castle Tour", source="meta", cost=10, currency="EUR"))
        db.add(AdSpend(date="2025-06-02", tour_name="Bran Castle Tour", source="meta", cost=5.5, currency="EUR"))
        db.commit()

        assert client.get("/ad-spend").status_code == 401
        data = client.get("/ad-spend?start_date=2025-06-02", headers=user_headers).json()
        assert [row["date"] for row in data["data"]] == ["2025-06-02"]
        assert data["totals"] == {"EUR": 5.5}


# ────────────────────────────────────────────
# EMAIL FEEDS
# ────────────────────────────────────────────


class TestEmailWebhooks:

    @pytest.fixture
    def order(self, db):
        order = Order(order_id="BranCastle-1892", email="ana@example.com", tour="Bran Castle Tour",
                      tags=[], email_communications=[], customer_communication=[])
        db.add(order)
        db.commit()
        return order

    def test_sendgrid_requires_a_list(self, client):
        assert client.post("/webhooks/sendgrid", json={"event": "open"}).status_code == 400

    def test_sendgrid_checks_secret_when_configured(self, client, settings, monkeypatch):
        monkeypatch.setattr(settings, "email_webhook_secret", "mail-secret")
        assert client.post("/webhooks/sendgrid", json=[]).status_code == 401

    def test_sendgrid_events_are_logged_once(self, client, db, order):
        events = [
            {"event": "delivered", "email": "ana@example.com", "sg_message_id": "m1", "timestamp": 1749000000,
             "order_id": "BranCastle-1892"},
            {"event": "delivered", "email": "ana@example.com", "sg_message_id": "m1", "timestamp": 1749000000,
             "order_id": "BranCastle-1892"},
            {"event": "open", "email": "nobody@example.com", "sg_message_id": "m2"},
        ]

        data = client.post("/webhooks/sendgrid", json=events).json()

        assert data == {"success": True, "processed": 3, "logged": 1, "unmatched": 1, "duplicates": 1}
        db.refresh(order)
        assert order.email_communications[0]["type"] == "email_delivered"
        assert order.email_communications[0]["sent_by"] == "system"

    def test_inbound_email_requires_secret(self, client, order):
        response = client.post("/webhooks/email", json={"from": "ana@example.com", "subject": "Hi", "body": "Hello"})
        assert response.status_code == 500

    def test_inbound_email_logged_on_order(self, client, db, settings, monkeypatch, order):
        monkeypatch.setattr(settings, "email_webhook_secret", "mail-secret")
        headers = {"Authorization": "Bearer mail-secret"}

        response = client.post(
            "/webhooks/email",
            json={"from": "someone@else.com", "subject": "Re: [Order: BranCastle-1892] dates", "body": "Can we move?"},
            headers=headers,
        )

        assert response.status_code == 200
        db.refresh(order)
        assert order.customer_communication[0]["message"] == "Can we move?"
        assert order.customer_communication[0]["sent_by"] == "someone@else.com"

    def test_inbound_email_without_match(self, client, settings, monkeypatch, order):
        monkeypatch.setattr(settings, "email_webhook_secret", "mail-secret")
        response = client.post(
            "/webhooks/email",
            json={"from": "stranger@example.com", "subject": "Question", "body": "Hello"},
            headers={"x-webhook-secret": "mail-secret"},
        )
        assert response.status_code == 404
