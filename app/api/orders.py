"""
Order endpoints: WooCommerce sync, duplicate cleanup, profit recompute and
customer emails
"""
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, require_admin, require_staff
from app.models.base import get_db
from app.models.order import Order
from app.models.user import User
from app.services.email_service import EmailService
from app.services.order_sync_service import OrderSyncService
from app.services.profitability_service import ProfitabilityService
from app.utils.errors import ConfigurationError, EmailDeliveryError, OrderNotFoundError
from app.utils.logger import log

router = APIRouter(prefix="/orders", tags=["orders"])


class TicketEmailRequest(BaseModel):
    order_id: str
    download_link: str | None = None


class ReservedEmailRequest(BaseModel):
    order_id: str


def _order_out(order: Order) -> dict:
    out = {}
    for column in order.__table__.columns:
        value = getattr(order, column.name)
        out[column.name] = value.isoformat() if hasattr(value, "isoformat") else value
    return out


@router.post("/sync")
async def sync_woocommerce_orders(
    cleanup_duplicates: bool = True,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    """
    Pull new orders from every active storefront and re-check recent ones

    Per-site failures are reported in `errors` without failing the request.
    """
    try:
        return await OrderSyncService(db).sync_all(cleanup_duplicates=cleanup_duplicates)
    except Exception as e:
        log.error(f"WooCommerce sync failed: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/resolve-duplicates")
async def resolve_duplicates(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    """Collapse orders sharing an order_id down to one"""
    try:
        result = OrderSyncService(db).resolve_duplicates()
        return {"success": True, **result}
    except Exception as e:
        log.error(f"Duplicate cleanup failed: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/calculate-profits")
async def calculate_profits(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    """Recompute profit for a capped batch of orders; call again while `remaining` > 0"""
    try:
        return await ProfitabilityService(db).recalculate()
    except Exception as e:
        log.error(f"Profit recalculation failed: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


async def _send_customer_email(send):
    try:
        return await send()
    except OrderNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except EmailDeliveryError as e:
        raise HTTPException(status_code=502, detail={"error": str(e), "details": e.details})
    except ConfigurationError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/send-ticket-email")
async def send_ticket_email(
    body: TicketEmailRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_staff),
):
    """Email the customer their ticket PDFs"""
    service = EmailService(db)
    return await _send_customer_email(
        lambda: service.send_ticket_email(body.order_id, current_user.email, body.download_link)
    )


@router.post("/send-reserved-email")
async def send_reserved_email(
    body: ReservedEmailRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_staff),
):
    """Tell the customer their spots are reserved"""
    service = EmailService(db)
    return await _send_customer_email(
        lambda: service.send_reserved_email(body.order_id, current_user.email)
    )


@router.get("/{order_id:path}")
async def get_order(
    order_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Fetch one order by its order_id"""
    order = db.query(Order).filter(Order.order_id == order_id).first()
    if not order:
        raise HTTPException(status_code=404, detail=f"Order {order_id} not found")
    return _order_out(order)
