"""
Ad Spend Service

Normalises ad-spend records pushed by the Google Ads script / Make.com
automation and upserts them by (date, tour_name, source).
"""
import math
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from dateutil import parser as date_parser
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.ad_spend import AdSpend
from app.utils.logger import log

# Google Ads reports cost in micros; no real daily spend per tour is this high
MICROS_THRESHOLD = 10000
MICROS_PER_UNIT = 1_000_000

DEFAULT_SOURCE = "unknown"
DEFAULT_CURRENCY = "EUR"

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def normalize_date(value: Any) -> Optional[str]:
    """YYYY-MM-DD for any parseable date, None otherwise"""
    raw = str(value or "").strip()
    if not raw:
        return None
    if _ISO_DATE.match(raw):
        return raw
    try:
        return date_parser.parse(raw).date().isoformat()
    except (ValueError, OverflowError):
        return None


def normalize_cost(value: Any) -> Optional[float]:
    """Cost as a float in currency units, converting micros"""
    try:
        cost = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(cost) or cost < 0:
        return None
    if cost > MICROS_THRESHOLD:
        converted = cost / MICROS_PER_UNIT
        log.debug(f"Converted ad cost from micros: {cost} -> {converted}")
        return converted
    return cost


def normalize_record(record: Any) -> Dict[str, Any]:
    """
    Validate and normalise one incoming record.

    Args:
        record: {date, tour_name | tour, source?, cost, currency?}

    Returns:
        Column values for AdSpend

    Raises:
        ValueError: date, tour name or cost missing or invalid
    """
    if not isinstance(record, dict):
        raise ValueError("Record must be an object")

    date = normalize_date(record.get("date"))
    tour_name = str(record.get("tour_name") or record.get("tour") or "").strip()
    cost = normalize_cost(record.get("cost"))

    if not date or not tour_name or cost is None:
        raise ValueError("Invalid record (date, tour_name and cost required)")

    return {
        "date": date,
        "tour_name": tour_name,
        "source": str(record.get("source") or "").strip() or DEFAULT_SOURCE,
        "cost": cost,
        "currency": str(record.get("currency") or "").strip().upper() or DEFAULT_CURRENCY,
    }


class AdSpendService:
    """Stores ad-spend records"""

    def __init__(self, db: Session):
        self.db = db

    def upsert(self, values: Dict[str, Any]) -> str:
        """Insert or update one normalised record; returns created/updated"""
        existing = self.db.query(AdSpend).filter(
            AdSpend.date == values["date"],
            AdSpend.tour_name == values["tour_name"],
            AdSpend.source == values["source"],
        ).first()

        if existing:
            existing.cost = values["cost"]
            existing.currency = values["currency"]
            existing.updated_at = datetime.utcnow()
            self.db.flush()
            return "updated"

        self.db.add(AdSpend(**values))
        self.db.flush()
        return "created"

    def log_records(self, payload: Union[Dict[str, Any], List[Any]]) -> Dict[str, Any]:
        """
        Store one record or a list of records

        Invalid records are counted and reported; they do not fail the batch.

        Returns:
            {success, processed, created, updated, invalid, errors}
        """
        records = payload if isinstance(payload, list) else [payload]
        created = 0
        updated = 0
        invalid = 0
        errors: List[str] = []

        for index, raw in enumerate(records):
            try:
                values = normalize_record(raw)
            except ValueError as e:
                invalid += 1
                errors.append(f"Record {index}: {str(e)}")
                continue

            try:
                action = self.upsert(values)
                self.db.commit()
                if action == "created":
                    created += 1
                else:
                    updated += 1
            except SQLAlchemyError as e:
                self.db.rollback()
                log.error(f"Error saving ad spend {values['date']} {values['tour_name']}: {str(e)}")
                errors.append(f"Record {index}: {str(e)}")

        log.info(
            f"Ad spend logged: {created} created, {updated} updated, "
            f"{invalid} invalid of {len(records)}"
        )
        return {
            "success": not errors,
            "processed": len(records),
            "created": created,
            "updated": updated,
            "invalid": invalid,
            "errors": errors or None,
        }

    def list_spend(self, start_date: Optional[str] = None, end_date: Optional[str] = None,
                   tour_name: Optional[str] = None) -> List[AdSpend]:
        query = self.db.query(AdSpend)
        if start_date:
            query = query.filter(AdSpend.date >= start_date)
        if end_date:
            query = query.filter(AdSpend.date <= end_date)
        if tour_name:
            query = query.filter(AdSpend.tour_name == tour_name)
        return query.order_by(AdSpend.date.desc(), AdSpend.tour_name).all()
