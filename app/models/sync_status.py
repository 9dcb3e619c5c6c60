"""
Sync status model

One row per storefront sync source (`woocommerce:{site_name}`), so an
operator can see which stores are failing, since when, and how far the
order import has got.
"""
from sqlalchemy import Column, Integer, String, Float, DateTime, Text
from datetime import datetime

from app.models.base import Base


class DataSyncStatus(Base):
    __tablename__ = "data_sync_status"

    id = Column(Integer, primary_key=True, index=True)
    source_name = Column(String, unique=True, index=True, nullable=False)
    source_type = Column(String, default="woocommerce")

    sync_status = Column(String, index=True)  # in_progress, success, failed
    last_sync_attempt = Column(DateTime, nullable=True)
    last_successful_sync = Column(DateTime, nullable=True)
    sync_duration_seconds = Column(Float, nullable=True)

    # Last run
    new_orders = Column(Integer, default=0)
    status_updates = Column(Integer, default=0)
    records_failed = Column(Integer, default=0)

    # Highest WooCommerce order id imported for the store
    highest_order_id = Column(Integer, nullable=True)

    last_error = Column(Text, nullable=True)
    error_count = Column(Integer, default=0)  # consecutive failed runs
    first_error_at = Column(DateTime, nullable=True)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def records_synced(self) -> int:
        return (self.new_orders or 0) + (self.status_updates or 0)

    def to_dict(self) -> dict:
        def iso(value):
            return value.isoformat() if value else None

        return {
            "source": self.source_name,
            "status": self.sync_status,
            "last_sync_attempt": iso(self.last_sync_attempt),
            "last_successful_sync": iso(self.last_successful_sync),
            "new_orders": self.new_orders,
            "status_updates": self.status_updates,
            "highest_order_id": self.highest_order_id,
            "consecutive_errors": self.error_count,
            "failing_since": iso(self.first_error_at),
            "last_error": self.last_error,
        }
