"""
Inbound webhooks: WooCommerce order events, SendGrid delivery events,
forwarded customer emails and ad spend pushes
"""
import base64
import hashlib
import hmac
import json
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.deps import check_webhook_secret
from app.config import get_settings
from app.models.base import get_db
from app.services.ad_spend_service import AdSpendService
from app.services.email_service import EmailService
from app.services.order_sync_service import OrderSyncService
from app.services.site_config import get_woo_site, resolve_webhook_secret
from app.utils.errors import OrderNotFoundError
from app.utils.logger import log

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def verify_woocommerce_signature(body: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """
    Check x-wc-webhook-signature: base64(HMAC-SHA256(raw body, secret))

    Args:
        body: Raw request body, exactly as received
        signature: Header value
        secret: Site webhook secret

    Returns:
        True if the signature matches
    """
    if not secret or not signature:
        return False
    computed = base64.b64encode(
        hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    ).decode()
    return hmac.compare_digest(computed, signature.strip())


async def _json_body(request: Request):
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Body must be valid JSON")


# ── WooCommerce ──────────────────────────────────────────

@router.get("/woocommerce")
async def woocommerce_webhook_status():
    """WooCommerce checks the delivery URL with a GET when saving a webhook."""
    return {"message": "Webhook endpoint active"}


@router.post("/woocommerce")
async def woocommerce_webhook(
    request: Request,
    site: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """
    Receive order.created / order.updated deliveries for one storefront

    Query:
        site: site_name of the storefront the webhook was registered on
    """
    if not site:
        raise HTTPException(status_code=400, detail="Missing 'site' query parameter")

    woo_site = get_woo_site(db, site)
    if not woo_site:
        raise HTTPException(status_code=400, detail=f"Unknown site '{site}'")

    signature = request.headers.get("x-wc-webhook-signature")
    if not signature:
        raise HTTPException(status_code=401, detail="Missing webhook signature")

    body = await request.body()
    if not verify_woocommerce_signature(body, signature, resolve_webhook_secret(woo_site)):
        log.warning(f"Invalid WooCommerce webhook signature for {site}")
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    # WooCommerce's ping after saving a webhook is form-encoded, not JSON
    try:
        payload = json.loads(body or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError):
        payload = {}
    if not isinstance(payload, dict):
        payload = {}

    try:
        result = OrderSyncService(db).process_webhook(woo_site, payload)
    except Exception as e:
        log.error(f"WooCommerce webhook failed for {site}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

    if result is None:
        return {"success": True, "message": "Ping received"}

    content = {
        "success": True,
        "outcome": result.outcome,
        "order_id": result.order.order_id if result.order else None,
        "changes": sorted(result.changes),
    }
    return JSONResponse(status_code=201 if result.is_new else 200, content=content)


# ── SendGrid ─────────────────────────────────────────────

@router.post("/sendgrid")
async def sendgrid_events(request: Request, db: Session = Depends(get_db)):
    """SendGrid event webhook; logs delivery/open/click/bounce events on orders."""
    settings = get_settings()
    if settings.email_webhook_secret:
        check_webhook_secret(request, settings.email_webhook_secret, "EMAIL_WEBHOOK_SECRET")

    events = await _json_body(request)
    if not isinstance(events, list):
        raise HTTPException(status_code=400, detail="Expected a list of events")

    try:
        return EmailService(db).record_sendgrid_events(events)
    except Exception as e:
        log.error(f"SendGrid webhook error: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


# ── Inbound email ────────────────────────────────────────

@router.post("/email")
async def inbound_email(request: Request, db: Session = Depends(get_db)):
    """Log a forwarded customer email (from Zapier / Make.com) on its order."""
    check_webhook_secret(request, get_settings().email_webhook_secret, "EMAIL_WEBHOOK_SECRET")

    payload = await _json_body(request)
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Body must be an object")

    try:
        order = EmailService(db).log_inbound_email(
            payload.get("from") or "", payload.get("subject") or "", payload.get("body") or ""
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except OrderNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {"success": True, "message": f"Successfully logged communication for order {order.order_id}"}


# ── Ad spend ─────────────────────────────────────────────

@router.post("/ad-spend")
async def log_ad_spend(request: Request, db: Session = Depends(get_db)):
    """
    Record one ad-spend entry or a list of them

    Auth: Authorization: Bearer <secret> or x-webhook-secret
    """
    check_webhook_secret(request, get_settings().ad_spend_webhook_secret, "AD_SPEND_WEBHOOK_SECRET")

    payload = await _json_body(request)
    if not isinstance(payload, (dict, list)):
        raise HTTPException(status_code=400, detail="Body must be an object or a list")

    try:
        return AdSpendService(db).log_records(payload)
    except Exception as e:
        log.error(f"Ad spend webhook error: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
