"""
Base Connector Class

Storefront connectors inherit from this base class. It keeps the
DataSyncStatus row for the connector's source up to date across runs.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Optional
from sqlalchemy.orm import Session

from app.models.sync_status import DataSyncStatus
from app.utils.logger import log

MAX_ERROR_LENGTH = 500


class BaseConnector(ABC):
    """
    Base class for storefront connectors

    Sync bookkeeping is best effort: a failure to write the status row is
    logged and rolled back, never raised into the sync itself.
    """

    def __init__(self, db: Optional[Session], source_name: str, source_type: str):
        """
        Args:
            db: Database session (None disables sync status logging)
            source_name: e.g. 'woocommerce:BranCastle'
            source_type: e.g. 'woocommerce'
        """
        self.db = db
        self.source_name = source_name
        self.source_type = source_type
        self._authenticated = False

    @abstractmethod
    async def authenticate(self) -> bool:
        """Check the credentials against the store; True on success"""

    def is_authenticated(self) -> bool:
        return self._authenticated

    def _status_row(self) -> DataSyncStatus:
        status = self.db.query(DataSyncStatus).filter(
            DataSyncStatus.source_name == self.source_name
        ).first()
        if not status:
            status = DataSyncStatus(source_name=self.source_name, source_type=self.source_type)
            self.db.add(status)
        return status

    def _record(self, stage: str, apply: Callable[[DataSyncStatus], None]) -> Optional[DataSyncStatus]:
        if self.db is None:
            return None
        try:
            status = self._status_row()
            apply(status)
            self.db.commit()
            return status
        except Exception as e:
            log.error(f"Error recording sync {stage} for {self.source_name}: {str(e)}")
            self.db.rollback()
            return None

    async def log_sync_start(self):
        def apply(status: DataSyncStatus):
            status.last_sync_attempt = datetime.utcnow()
            status.sync_status = 'in_progress'

        if self._record("start", apply):
            log.info(f"Started sync for {self.source_name}")

    async def log_sync_success(
        self,
        new_orders: int,
        status_updates: int = 0,
        highest_order_id: Optional[int] = None,
        sync_duration_seconds: Optional[float] = None
    ):
        """
        Mark the run successful and reset the consecutive error count

        Args:
            new_orders: Orders created this run
            status_updates: Existing orders changed this run
            highest_order_id: Highest store order id now stored
            sync_duration_seconds: How long the run took
        """
        def apply(status: DataSyncStatus):
            status.last_successful_sync = datetime.utcnow()
            status.sync_status = 'success'
            status.new_orders = new_orders
            status.status_updates = status_updates
            status.records_failed = 0
            status.last_error = None
            status.error_count = 0
            status.first_error_at = None
            if highest_order_id is not None:
                status.highest_order_id = max(highest_order_id, status.highest_order_id or 0)
            if sync_duration_seconds is not None:
                status.sync_duration_seconds = sync_duration_seconds

        if self._record("success", apply):
            duration = f", {sync_duration_seconds:.1f}s" if sync_duration_seconds is not None else ""
            log.info(
                f"Sync successful for {self.source_name}: {new_orders} new, "
                f"{status_updates} updated{duration}"
            )

    async def log_sync_failure(self, error_message: str, records_failed: int = 0):
        """Mark the run failed; the first failure of a streak is timestamped"""
        def apply(status: DataSyncStatus):
            status.sync_status = 'failed'
            status.last_error = error_message[:MAX_ERROR_LENGTH]
            status.records_failed = records_failed
            status.error_count = (status.error_count or 0) + 1
            if not status.first_error_at:
                status.first_error_at = datetime.utcnow()

        status = self._record("failure", apply)
        consecutive = status.error_count if status else "?"
        log.error(f"Sync failed for {self.source_name}: {error_message} (consecutive failures: {consecutive})")
