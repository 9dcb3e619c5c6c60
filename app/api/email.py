"""
Email API

Ad hoc sends through SendGrid. Order-bound emails (tickets, reserved
notices) live under /orders.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.models.base import get_db
from app.models.user import User
from app.services.email_service import EmailService
from app.utils.errors import ConfigurationError, EmailDeliveryError
from app.utils.logger import log

router = APIRouter(prefix="/email", tags=["email"])


class SendEmailRequest(BaseModel):
    to: str
    subject: str
    html: Optional[str] = None
    text: Optional[str] = None


@router.post("/send")
async def send_email(
    body: SendEmailRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Send one email from the default sender"""
    try:
        return await EmailService(db).send_email(body.to, body.subject, body.html, body.text)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except EmailDeliveryError as e:
        log.error(f"SendGrid rejected email to {body.to}: {str(e)}")
        raise HTTPException(status_code=502, detail={"error": str(e), "details": e.details})
    except ConfigurationError as e:
        raise HTTPException(status_code=500, detail=str(e))
