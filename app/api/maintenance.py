"""
Maintenance API

Admin-only data migrations. Each one is idempotent; the batched ones report
`remaining` and are meant to be called again until it reaches zero.
"""
from typing import Dict

from fastapi import APIRouter, Depends, Query, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.deps import require_admin
from app.models.base import get_db
from app.models.user import User
from app.services.maintenance_service import MaintenanceService
from app.utils.logger import log

router = APIRouter(prefix="/maintenance", tags=["maintenance"])


class ConsolidateToursRequest(BaseModel):
    mapping: Dict[str, str]


@router.post("/migrate-statuses")
async def migrate_statuses(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    """Move reserved_date / awaiting_reply statuses into tags"""
    try:
        return MaintenanceService(db).migrate_statuses_to_tags()
    except Exception as e:
        log.error(f"Status migration failed: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/fix-statuses")
async def fix_statuses(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    """Rename legacy status values (complete → completed, new → unprocessed)"""
    try:
        return MaintenanceService(db).fix_legacy_statuses()
    except Exception as e:
        log.error(f"Status fix failed: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/backfill-payments")
async def backfill_payments(
    limit: int = Query(50, ge=1, le=500, description="Orders to refetch from WooCommerce"),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    """Refetch WooCommerce orders missing payment data"""
    try:
        return await MaintenanceService(db).backfill_payment_data(limit=limit)
    except Exception as e:
        log.error(f"Payment backfill failed: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/backfill-purchase-urls")
async def backfill_purchase_urls(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    """Fill purchase_url from each order's storefront"""
    try:
        return MaintenanceService(db).backfill_purchase_urls()
    except Exception as e:
        log.error(f"Purchase URL backfill failed: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/consolidate-tours")
async def consolidate_tours(
    body: ConsolidateToursRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    """Rename tour name variants to one canonical name"""
    try:
        return MaintenanceService(db).consolidate_tours(body.mapping)
    except Exception as e:
        log.error(f"Tour consolidation failed: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
