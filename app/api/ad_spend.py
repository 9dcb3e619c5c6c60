"""
Ad spend API

Records arrive through the ad-spend webhook; this router exposes them to the
admin UI.
"""
from fastapi import APIRouter, Depends, Query, HTTPException
from sqlalchemy.orm import Session
from typing import Optional

from app.api.deps import get_current_user
from app.models.base import get_db
from app.models.user import User
from app.services.ad_spend_service import AdSpendService
from app.utils.logger import log

router = APIRouter(prefix="/ad-spend", tags=["ad-spend"])


@router.get("")
async def list_ad_spend(
    start_date: Optional[str] = Query(None, description="YYYY-MM-DD, inclusive"),
    end_date: Optional[str] = Query(None, description="YYYY-MM-DD, inclusive"),
    tour_name: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    Ad spend rows, newest first

    Returns:
    - Rows matching the filters
    - Total cost per currency
    """
    try:
        rows = AdSpendService(db).list_spend(start_date, end_date, tour_name)

        totals = {}
        for row in rows:
            totals[row.currency] = round(totals.get(row.currency, 0.0) + (row.cost or 0.0), 2)

        return {
            "success": True,
            "data": [
                {
                    "id": row.id,
                    "date": row.date,
                    "tour_name": row.tour_name,
                    "source": row.source,
                    "cost": row.cost,
                    "currency": row.currency,
                }
                for row in rows
            ],
            "totals": totals,
        }
    except Exception as e:
        log.error(f"Error listing ad spend: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
