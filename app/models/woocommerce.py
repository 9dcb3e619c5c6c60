"""
Storefront configuration models

`woo_commerce_credentials` is the only list of storefronts; nothing else in
the codebase enumerates sites.
"""
from sqlalchemy import Column, Integer, String, Float, DateTime, JSON, Boolean, Text
from datetime import datetime

from app.models.base import Base


class WooCommerceCredential(Base):
    """REST credentials for one WooCommerce storefront"""
    __tablename__ = "woo_commerce_credentials"

    id = Column(Integer, primary_key=True, index=True)
    site_name = Column(String, unique=True, index=True, nullable=False)  # e.g. "BranCastle"
    tour_name = Column(String, nullable=False)
    api_url = Column(String, nullable=False)  # https://site/wp-json/wc/v3
    website_url = Column(String, nullable=False)
    consumer_key = Column(String, nullable=False)
    consumer_secret = Column(String, nullable=False)
    webhook_secret = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, index=True)
    profit_margin = Column(Float, nullable=True)  # fallback percentage, 0-1

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Tour(Base):
    """Tour metadata used when building orders and emails"""
    __tablename__ = "tours"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, index=True, nullable=False)
    timezone = Column(String, nullable=True)  # IANA name, e.g. "Europe/Bucharest"
    official_ticketing_url = Column(String, nullable=True)
    physical_address = Column(Text, nullable=True)
    recommended_tours = Column(JSON, default=list)  # tour names
    profit_margin = Column(Float, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
