"""
Email Service

Customer emails sent through SendGrid (tickets, reserved notice, ad hoc
messages) and the two inbound feeds that annotate orders: SendGrid delivery
events and forwarded customer replies.
"""
import asyncio
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.config import get_settings
from app.connectors.sendgrid import SendGridClient, build_attachment, build_mail_payload
from app.models.order import Order
from app.models.woocommerce import Tour
from app.services.email_templates import reserved_email_html, ticket_email_html
from app.utils.errors import OrderNotFoundError
from app.utils.logger import log

DRIVE_DOWNLOAD_URL = "https://www.googleapis.com/drive/v3/files/{file_id}?alt=media"

_DRIVE_FILE_ID = re.compile(r"/file/d/([a-zA-Z0-9_-]+)")
_DRIVE_OPEN_ID = re.compile(r"[?&]id=([a-zA-Z0-9_-]+)")
_SUBJECT_ORDER_ID = re.compile(r"(?:Order:?\s*|#)([a-zA-Z0-9-]+)", re.IGNORECASE)

EVENT_MESSAGES = {
    "processed": "Email processed",
    "delivered": "Email delivered",
    "open": "Email opened",
    "click": "Link clicked",
    "bounce": "Email bounced",
    "dropped": "Email dropped",
    "deferred": "Email deferred",
    "spamreport": "Marked as spam",
    "unsubscribe": "Unsubscribed",
}

MAX_RECOMMENDED_TOURS = 3


def extract_drive_file_id(url: str) -> Optional[str]:
    """File id from a Google Drive share link, None for other URLs"""
    if "drive.google.com" not in (url or ""):
        return None
    match = _DRIVE_FILE_ID.search(url) or _DRIVE_OPEN_ID.search(url)
    return match.group(1) if match else None


def extract_order_reference(subject: str) -> Optional[str]:
    """'Re: [Order: CorvinCastle-1892]' -> 'CorvinCastle-1892'"""
    match = _SUBJECT_ORDER_ID.search(subject or "")
    return match.group(1) if match else None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _customer_name(order: Order) -> str:
    return f"{order.first_name or ''} {order.last_name or ''}".strip()


def _safe_filename(tour: Optional[str]) -> str:
    return re.sub(r"[^a-zA-Z0-9]", "-", tour or "Tour")


class EmailService:
    """Sends customer emails and records email activity on orders"""

    def __init__(
        self,
        db: Session,
        sendgrid: Optional[SendGridClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            db: Database session
            sendgrid: Mail client (defaults to one built from settings)
            transport: httpx transport for ticket downloads (tests)
        """
        self.db = db
        self.settings = get_settings()
        self.sendgrid = sendgrid or SendGridClient(transport=transport)
        self.transport = transport

    # ────────────────────────────────────────────
    # LOOKUPS
    # ────────────────────────────────────────────

    def get_order(self, order_id: str) -> Order:
        order = (
            self.db.query(Order)
            .filter(Order.order_id == order_id)
            .order_by(Order.updated_at.desc())
            .first()
        )
        if not order:
            raise OrderNotFoundError(f"Order {order_id} not found")
        return order

    def _tour(self, name: Optional[str]) -> Optional[Tour]:
        if not name:
            return None
        return self.db.query(Tour).filter(Tour.name == name).first()

    def _recommended_tours(self, tour: Optional[Tour]) -> List[Dict[str, str]]:
        if not tour or not tour.recommended_tours:
            return []
        rows = {
            row.name: row
            for row in self.db.query(Tour).filter(Tour.name.in_(tour.recommended_tours)).all()
        }
        recommended = []
        for name in tour.recommended_tours:
            row = rows.get(name)
            if row and row.official_ticketing_url:
                recommended.append({"name": row.name, "url": row.official_ticketing_url})
        return recommended[:MAX_RECOMMENDED_TOURS]

    @staticmethod
    def _append_entry(order: Order, column: str, entry: Dict[str, Any]):
        # JSON columns only persist on reassignment
        setattr(order, column, list(getattr(order, column) or []) + [entry])

    # ────────────────────────────────────────────
    # OUTBOUND
    # ────────────────────────────────────────────

    async def send_email(
        self,
        to: str,
        subject: str,
        html: Optional[str] = None,
        text: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Send an ad hoc email from the default sender

        Raises:
            ValueError: Missing recipient, subject or body
        """
        if not to or not subject or (not html and not text):
            raise ValueError("Missing required fields: to, subject, and either html or text")

        payload = build_mail_payload(
            to_email=to,
            subject=subject,
            from_email=self.settings.sendgrid_from_email,
            from_name=self.settings.sendgrid_from_name,
            html=html,
            text=text,
        )
        message_id = await self.sendgrid.send(payload)
        log.info(f"Email sent to {to}: {subject}")
        return {"success": True, "message": "Email sent successfully", "message_id": message_id}

    async def _download_ticket(self, client: httpx.AsyncClient, url: str) -> Optional[bytes]:
        file_id = extract_drive_file_id(url)
        headers = {}
        if file_id:
            if not self.settings.google_drive_access_token:
                log.warning(f"Skipping Drive ticket {file_id}: no Google Drive access token configured")
                return None
            url = DRIVE_DOWNLOAD_URL.format(file_id=file_id)
            headers["Authorization"] = f"Bearer {self.settings.google_drive_access_token}"

        try:
            response = await client.get(url, headers=headers, follow_redirects=True)
        except httpx.HTTPError as e:
            log.warning(f"Failed to download ticket {url}: {str(e)}")
            return None

        if response.status_code != 200:
            log.warning(f"Failed to download ticket {url}: HTTP {response.status_code}")
            return None
        if not response.content.startswith(b"%PDF"):
            log.warning(f"Ticket {url} is not a PDF, skipping")
            return None
        return response.content

    async def gather_ticket_attachments(self, order: Order) -> List[Dict[str, str]]:
        """Download every ticket file concurrently; failures are skipped"""
        urls = list(order.ticket_files or [])
        if not urls:
            return []

        async with httpx.AsyncClient(transport=self.transport, timeout=60.0) as client:
            files = await asyncio.gather(*(self._download_ticket(client, url) for url in urls))

        base_name = _safe_filename(order.tour)
        downloaded = [content for content in files if content]
        attachments = []
        for index, content in enumerate(downloaded, start=1):
            suffix = f"-{index}" if len(downloaded) > 1 else ""
            attachments.append(build_attachment(content, f"{base_name}-Ticket{suffix}.pdf"))

        log.info(f"Prepared {len(attachments)} of {len(urls)} ticket attachments for {order.order_id}")
        return attachments

    async def _send_order_email(
        self,
        order: Order,
        subject: str,
        html: str,
        sent_by: str,
        email_type: str,
        attachments: Optional[List[Dict[str, str]]] = None,
    ) -> Optional[str]:
        payload = build_mail_payload(
            to_email=order.email,
            to_name=_customer_name(order) or None,
            subject=subject,
            from_email=self.settings.sendgrid_from_email,
            from_name=order.tour or self.settings.sendgrid_from_name,
            html=html,
            bcc=self.settings.sendgrid_archive_bcc,
            attachments=attachments,
            custom_args={"order_id": order.order_id} if order.order_id else None,
            track=True,
        )
        message_id = await self.sendgrid.send(payload)

        self._append_entry(order, "email_communications", {
            "timestamp": _now_iso(),
            "message": f"{email_type.replace('_', ' ').capitalize()} sent to {order.email}",
            "sent_by": sent_by,
            "type": "email_sent",
            "email_type": email_type,
            "subject": subject,
            "sg_message_id": message_id,
        })
        self.db.commit()
        return message_id

    async def send_ticket_email(self, order_id: str, sent_by: str, download_link: Optional[str] = None) -> Dict[str, Any]:
        """
        Email the customer their ticket PDFs

        Raises:
            OrderNotFoundError: Unknown order
            ValueError: Order has no email or no ticket files
        """
        order = self.get_order(order_id)
        if not order.email:
            raise ValueError("Order has no customer email")
        if not order.ticket_files:
            raise ValueError("No ticket files uploaded yet")

        tour = self._tour(order.tour)
        attachments = await self.gather_ticket_attachments(order)
        if not attachments and not download_link:
            raise ValueError("None of the ticket files could be downloaded")

        html = ticket_email_html(
            customer_name=_customer_name(order),
            tour_name=order.tour or "",
            tour_date=order.tour_date or "",
            tour_time=order.tour_time or "",
            location=(tour.physical_address if tour else "") or "",
            recommended_tours=self._recommended_tours(tour),
            download_link=download_link,
        )
        await self._send_order_email(
            order, f"Your {order.tour} Ticket is Attached", html, sent_by, "ticket_email", attachments
        )
        log.info(f"Ticket email sent for {order.order_id} with {len(attachments)} attachments")
        return {
            "success": True,
            "message": "Ticket email sent successfully",
            "attachments": len(attachments),
        }

    async def send_reserved_email(self, order_id: str, sent_by: str) -> Dict[str, Any]:
        """Tell the customer their spots are reserved and tickets will follow"""
        order = self.get_order(order_id)
        if not order.email:
            raise ValueError("Order has no customer email")

        tour = self._tour(order.tour)
        html = reserved_email_html(
            customer_name=_customer_name(order),
            tour_date=order.tour_date or "",
            tour_time=order.tour_time or "",
            location=(tour.physical_address if tour else "") or "",
        )
        await self._send_order_email(order, "We've Reserved Your Spot(s)", html, sent_by, "reserved_email")
        log.info(f"Reserved email sent for {order.order_id}")
        return {"success": True, "message": "Reserved email sent successfully"}

    # ────────────────────────────────────────────
    # INBOUND
    # ────────────────────────────────────────────

    def _latest_order_for_email(self, email: str) -> Optional[Order]:
        return (
            self.db.query(Order)
            .filter(func.lower(Order.email) == email.strip().lower())
            .order_by(Order.created_at.desc(), Order.id.desc())
            .first()
        )

    def record_sendgrid_events(self, events: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Log SendGrid event webhook entries on their orders

        Each event is matched by its order_id custom arg, else the latest
        order for the recipient. Repeated deliveries of the same event type
        for the same message are ignored.

        Returns:
            {success, processed, logged, unmatched, duplicates}
        """
        logged = 0
        unmatched = 0
        duplicates = 0

        for event in events:
            if not isinstance(event, dict):
                unmatched += 1
                continue

            event_type = event.get("event") or "unknown"
            order_id = event.get("order_id") or (event.get("custom_args") or {}).get("order_id")
            order = None
            if order_id:
                order = self.db.query(Order).filter(Order.order_id == order_id).first()
            if order is None and event.get("email"):
                order = self._latest_order_for_email(event["email"])
            if order is None:
                unmatched += 1
                continue

            entry_type = f"email_{event_type}"
            message_id = event.get("sg_message_id")
            existing = order.email_communications or []
            if any(e.get("type") == entry_type and e.get("sg_message_id") == message_id for e in existing):
                duplicates += 1
                continue

            timestamp = event.get("timestamp")
            if isinstance(timestamp, (int, float)):
                when = datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()
            else:
                when = _now_iso()

            self._append_entry(order, "email_communications", {
                "timestamp": when,
                "message": EVENT_MESSAGES.get(event_type, f"Email event: {event_type}"),
                "sent_by": "system",
                "type": entry_type,
                "sg_message_id": message_id,
            })
            self.db.commit()
            logged += 1

        log.info(
            f"SendGrid events: {len(events)} received, {logged} logged, "
            f"{duplicates} duplicates, {unmatched} unmatched"
        )
        return {
            "success": True,
            "processed": len(events),
            "logged": logged,
            "unmatched": unmatched,
            "duplicates": duplicates,
        }

    def log_inbound_email(self, from_email: str, subject: str, body: str) -> Order:
        """
        Attach a forwarded customer email to its order

        Raises:
            ValueError: Missing from, subject or body
            OrderNotFoundError: No order matches the subject or sender
        """
        if not from_email or not subject or not body:
            raise ValueError("Missing required fields: from, subject, body")

        order = None
        reference = extract_order_reference(subject)
        if reference:
            order = self.db.query(Order).filter(Order.order_id == reference).first()
            if order is None:
                order = (
                    self.db.query(Order)
                    .filter(func.lower(Order.order_id) == reference.lower())
                    .order_by(Order.created_at.desc())
                    .first()
                )
        if order is None:
            order = self._latest_order_for_email(from_email)
        if order is None:
            raise OrderNotFoundError(f"Could not find a matching order for email from {from_email}")

        self._append_entry(order, "customer_communication", {
            "timestamp": _now_iso(),
            "message": body,
            "sent_by": from_email,
            "type": "email_received",
            "subject": subject,
        })
        self.db.commit()
        log.info(f"Logged inbound email from {from_email} on order {order.order_id}")
        return order
