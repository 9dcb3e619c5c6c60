"""
Ad spend model

Daily advertising cost per tour, pushed in by an external automation
(Google Ads script / Make.com) through the ad-spend webhook.
"""
from sqlalchemy import Column, Integer, String, Float, DateTime, UniqueConstraint
from datetime import datetime

from app.models.base import Base


class AdSpend(Base):
    __tablename__ = "ad_spend"
    __table_args__ = (
        UniqueConstraint("date", "tour_name", "source", name="uq_ad_spend_date_tour_source"),
    )

    id = Column(Integer, primary_key=True, index=True)
    date = Column(String, index=True, nullable=False)  # YYYY-MM-DD
    tour_name = Column(String, index=True, nullable=False)
    source = Column(String, default="unknown", nullable=False)
    cost = Column(Float, nullable=False, default=0)
    currency = Column(String, default="EUR")

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
