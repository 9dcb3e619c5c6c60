"""
Landing-page booking tests with Stripe monkeypatched.
"""
import asyncio
from types import SimpleNamespace

import pytest
import stripe

from app.connectors.sendgrid import SendGridClient
from app.models.order import Order
from app.services.booking_service import (
    BookingService,
    build_booking_order_id,
    next_order_number,
)
from app.utils.errors import ConfigurationError, PaymentError


def _booking(**overrides):
    booking = {
        "tour_name": "Bran Castle Tour",
        "date": "2025-07-01",
        "time": "10:00 am",
        "tickets": [{"type": "Adult", "quantity": 2, "price": 50}],
        "customer": {"first_name": "Ana", "last_name": "Popescu", "email": "ana@example.com", "country": "RO"},
        "total": 100,
        "currency": "eur",
        "payment_method_id": "pm_card_visa",
    }
    booking.update(overrides)
    return booking


@pytest.fixture
def stripe_calls(settings, monkeypatch):
    """Successful PaymentIntent.create; records its kwargs."""
    monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_123")
    calls = []

    def fake_create(**kwargs):
        calls.append(kwargs)
        balance = SimpleNamespace(fee=320, net=9680)
        return SimpleNamespace(
            id=f"pi_{len(calls)}", status="succeeded", customer=None,
            latest_charge=SimpleNamespace(balance_transaction=balance),
        )

    monkeypatch.setattr(stripe.PaymentIntent, "create", fake_create)
    return calls


@pytest.fixture
def sent_mail(monkeypatch):
    sent = []

    async def fake_send(self, payload):
        sent.append(payload)
        return "sg-1"

    monkeypatch.setattr(SendGridClient, "send", fake_send)
    return sent


class TestOrderNumbers:

    def test_first_number(self):
        assert next_order_number([]) == 1000
        assert next_order_number(["BranCastle-77", None]) == 1000

    def test_one_past_highest(self):
        ids = [build_booking_order_id("Bran Castle Tour", 1004), build_booking_order_id("Peles Castle Tour", 1010)]
        assert next_order_number(ids) == 1011


class TestCreateBooking:

    def test_charges_and_records_order(self, db, stripe_calls, sent_mail):
        from app.services.email_service import EmailService
        service = BookingService(db, email_service=EmailService(db))

        order = asyncio.run(service.create_booking(_booking()))

        assert order.order_id == "Bran Castle Tour | Online Tickets - Order 1000"
        assert stripe_calls[0]["amount"] == 10000
        assert stripe_calls[0]["currency"] == "eur"
        assert stripe_calls[0]["confirm"] is True
        assert stripe_calls[0]["description"] == order.order_id
        assert stripe_calls[0]["automatic_payment_methods"] == {"enabled": True, "allow_redirects": "never"}

        assert order.currency == "EUR"
        assert order.status == "unprocessed"
        assert order.purchase_url == "Landing Page - Bran Castle Tour"
        assert order.payment_method == "stripe"
        assert order.payment_transaction_id == "pi_1"
        assert order.payment_fee == 3.2
        assert order.payment_net_amount == 96.8
        assert order.total_ticket_cost == 78
        assert order.projected_profit == 22
        assert sent_mail[0]["subject"] == "Your Bran Castle Tour order has been received"

    def test_numbers_are_sequential(self, db, stripe_calls):
        service = BookingService(db)
        first = asyncio.run(service.create_booking(_booking()))
        second = asyncio.run(service.create_booking(_booking(tour_name="Peles Castle Tour")))
        assert first.order_id.endswith("Order 1000")
        assert second.order_id == "Peles Castle Tour | Online Tickets - Order 1001"

    def test_declined_card(self, db, settings, monkeypatch):
        monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_123")

        def declined(**kwargs):
            raise stripe.CardError("Your card was declined.", "card", "card_declined")

        monkeypatch.setattr(stripe.PaymentIntent, "create", declined)

        with pytest.raises(PaymentError):
            asyncio.run(BookingService(db).create_booking(_booking()))
        assert db.query(Order).count() == 0

    def test_intent_not_succeeded(self, db, settings, monkeypatch):
        monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_123")
        monkeypatch.setattr(stripe.PaymentIntent, "create",
                            lambda **kwargs: SimpleNamespace(id="pi_x", status="requires_action"))

        with pytest.raises(PaymentError):
            asyncio.run(BookingService(db).create_booking(_booking()))
        assert db.query(Order).count() == 0

    def test_missing_secret_key(self, db, settings):
        with pytest.raises(ConfigurationError):
            asyncio.run(BookingService(db).create_booking(_booking()))

    def test_receipt_failure_keeps_the_order(self, db, stripe_calls, monkeypatch):
        from app.services.email_service import EmailService
        from app.utils.errors import EmailDeliveryError

        async def failing_send(self, payload):
            raise EmailDeliveryError("Failed to send email", status_code=500)

        monkeypatch.setattr(SendGridClient, "send", failing_send)

        order = asyncio.run(BookingService(db, email_service=EmailService(db)).create_booking(_booking()))
        assert db.query(Order).filter(Order.order_id == order.order_id).count() == 1


class TestBookingApi:

    def test_create_returns_201(self, client, stripe_calls, sent_mail):
        response = client.post("/bookings", json=_booking())
        assert response.status_code == 201
        assert response.json()["order_id"] == "Bran Castle Tour | Online Tickets - Order 1000"

    def test_declined_returns_402(self, client, settings, monkeypatch):
        monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_123")
        monkeypatch.setattr(stripe.PaymentIntent, "create",
                            lambda **kwargs: SimpleNamespace(id="pi_x", status="requires_payment_method"))
        assert client.post("/bookings", json=_booking()).status_code == 402

    def test_invalid_body_returns_422(self, client):
        assert client.post("/bookings", json=_booking(tickets=[])).status_code == 422

    def test_stripe_key(self, client, settings, monkeypatch):
        assert client.get("/bookings/stripe-key").status_code == 500
        monkeypatch.setattr(settings, "stripe_publishable_key", "pk_test_1")
        assert client.get("/bookings/stripe-key").json() == {"publishable_key": "pk_test_1"}
