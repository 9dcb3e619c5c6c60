"""
Direct landing-page bookings paid through Stripe

Public endpoints: the landing sites call these from the browser after
collecting a payment method with Stripe.js.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.models.base import get_db
from app.services.booking_service import BookingService
from app.services.email_service import EmailService
from app.utils.errors import ConfigurationError, PaymentError
from app.utils.logger import log

router = APIRouter(prefix="/bookings", tags=["bookings"])


# ── Schemas ──────────────────────────────────────────────

class BookingTicket(BaseModel):
    type: str
    quantity: int = Field(ge=1)
    price: float = Field(default=0, ge=0)


class BookingCustomer(BaseModel):
    first_name: str
    last_name: str
    email: str
    phone: str = ""
    address: str = ""
    city: str = ""
    state_region: str = ""
    zip: str = ""
    country: str = ""


class BookingRequest(BaseModel):
    tour_name: str
    date: str
    time: str = ""
    tickets: List[BookingTicket] = Field(min_length=1)
    customer: BookingCustomer
    total: float = Field(gt=0)
    currency: str = "USD"
    payment_method_id: str


# ── Endpoints ────────────────────────────────────────────

@router.post("")
async def create_booking(body: BookingRequest, db: Session = Depends(get_db)):
    """
    Charge the card and record the order

    Returns 201 with the new order id, 402 when the payment does not go through.
    """
    service = BookingService(db, email_service=EmailService(db))
    try:
        order = await service.create_booking(body.model_dump())
    except PaymentError as e:
        raise HTTPException(status_code=402, detail=str(e))
    except ConfigurationError as e:
        log.error(f"Booking rejected: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
    except Exception as e:
        log.error(f"Booking failed for {body.tour_name}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

    return JSONResponse(
        status_code=201,
        content={
            "success": True,
            "order_id": order.order_id,
            "payment_intent_id": order.payment_transaction_id,
            "total": order.total_cost,
            "currency": order.currency,
        },
    )


@router.get("/stripe-key")
async def stripe_publishable_key(db: Session = Depends(get_db)):
    """Publishable key for Stripe.js on the landing pages"""
    try:
        return {"publishable_key": BookingService(db).publishable_key()}
    except ConfigurationError as e:
        raise HTTPException(status_code=500, detail=str(e))
