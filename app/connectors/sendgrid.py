"""
SendGrid Connector

Thin client for the SendGrid v3 mail send API.
"""
import base64
from typing import Any, Dict, List, Optional

import httpx

from app.config import get_settings
from app.utils.errors import ConfigurationError, EmailDeliveryError
from app.utils.logger import log

SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"


def build_attachment(content: bytes, filename: str, mime_type: str = "application/pdf") -> Dict[str, str]:
    """Base64 attachment entry for a mail payload"""
    return {
        "content": base64.b64encode(content).decode("ascii"),
        "filename": filename,
        "type": mime_type,
        "disposition": "attachment",
    }


def build_mail_payload(
    to_email: str,
    subject: str,
    from_email: str,
    from_name: str,
    html: Optional[str] = None,
    text: Optional[str] = None,
    to_name: Optional[str] = None,
    bcc: Optional[str] = None,
    attachments: Optional[List[Dict[str, str]]] = None,
    custom_args: Optional[Dict[str, str]] = None,
    track: bool = False,
) -> Dict[str, Any]:
    """
    Build a /v3/mail/send request body

    Args:
        to_email: Recipient address
        subject: Subject line
        from_email: Sender address
        from_name: Sender display name
        html: HTML body
        text: Plain text body (SendGrid requires it before the HTML part)
        to_name: Recipient display name
        bcc: Archive copy address
        attachments: Entries from build_attachment()
        custom_args: Echoed back in event webhook payloads
        track: Enable open and click tracking

    Returns:
        JSON-serialisable payload
    """
    if not html and not text:
        raise ValueError("Email needs an html or text body")

    recipient = {"email": to_email}
    if to_name:
        recipient["name"] = to_name

    personalization: Dict[str, Any] = {"to": [recipient]}
    if bcc and bcc.lower() != to_email.lower():
        personalization["bcc"] = [{"email": bcc}]
    if custom_args:
        personalization["custom_args"] = custom_args

    content = []
    if text:
        content.append({"type": "text/plain", "value": text})
    if html:
        content.append({"type": "text/html", "value": html})

    payload: Dict[str, Any] = {
        "personalizations": [personalization],
        "from": {"email": from_email, "name": from_name},
        "subject": subject,
        "content": content,
    }
    if attachments:
        payload["attachments"] = attachments
    if track:
        payload["tracking_settings"] = {
            "click_tracking": {"enable": True},
            "open_tracking": {"enable": True},
        }
    return payload


class SendGridClient:
    """Sends mail payloads with the account API key"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
    ):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.sendgrid_api_key
        self.transport = transport
        self.timeout = timeout or settings.sendgrid_timeout_seconds

    async def send(self, payload: Dict[str, Any]) -> Optional[str]:
        """
        Send one message

        Returns:
            SendGrid's X-Message-Id, when present

        Raises:
            ConfigurationError: No API key configured
            EmailDeliveryError: Non-2xx response
        """
        if not self.api_key:
            raise ConfigurationError("SendGrid API key not configured")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
                response = await client.post(SENDGRID_SEND_URL, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise EmailDeliveryError(f"SendGrid request failed: {str(e)}")

        if response.status_code < 200 or response.status_code >= 300:
            log.error(f"SendGrid error {response.status_code}: {response.text[:500]}")
            raise EmailDeliveryError(
                "Failed to send email",
                status_code=response.status_code,
                details=response.text,
            )

        return response.headers.get("X-Message-Id")
