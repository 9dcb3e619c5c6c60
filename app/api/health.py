"""
Health check and status endpoints
"""
from fastapi import APIRouter, Depends
from datetime import datetime
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.config import get_settings
from app.models.base import get_db
from app.models.sync_status import DataSyncStatus
from app.models.user import User
from app.scheduler import get_scheduled_jobs
from app import __version__

settings = get_settings()

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": __version__
    }


@router.get("/status")
async def get_status(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """System status with per-storefront sync health"""
    sources = db.query(DataSyncStatus).order_by(DataSyncStatus.source_name).all()
    return {
        "app_name": settings.app_name,
        "version": __version__,
        "environment": settings.environment,
        "features": {
            "scheduler": settings.enable_scheduler,
            "sendgrid": bool(settings.sendgrid_api_key),
            "stripe": bool(settings.stripe_secret_key),
        },
        "scheduled_jobs": get_scheduled_jobs(),
        "sync_sources": [s.to_dict() for s in sources],
        "timestamp": datetime.utcnow().isoformat()
    }
