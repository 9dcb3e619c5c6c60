"""
Storefront configuration

Loads active WooCommerce credentials joined with tour metadata, and
resolves webhook secrets. The credential table is the single source of
truth for which storefronts exist.
"""
import os
import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from app.config import get_settings
from app.models.woocommerce import WooCommerceCredential, Tour
from app.utils.logger import log


@dataclass(frozen=True)
class WooSite:
    """Everything needed to talk to one storefront and build orders from it."""
    site_name: str
    tour_name: str
    api_url: str
    website_url: str
    consumer_key: str
    consumer_secret: str
    timezone: Optional[str] = None
    official_site_url: Optional[str] = None
    profit_margin: Optional[float] = None
    webhook_secret: Optional[str] = None


def _tour_metadata(db: Session) -> Dict[str, Tour]:
    """Tours keyed by lower-cased name."""
    return {
        (tour.name or "").lower(): tour
        for tour in db.query(Tour).all()
        if tour.name
    }


def load_woo_sites(db: Session) -> List[WooSite]:
    """
    Load all active, fully configured storefronts.

    Rows missing any connection field are skipped with a warning rather
    than failing the whole sync.
    """
    rows = (
        db.query(WooCommerceCredential)
        .filter(WooCommerceCredential.is_active == True)  # noqa: E712
        .order_by(WooCommerceCredential.site_name)
        .all()
    )
    tours = _tour_metadata(db)

    sites = []
    for row in rows:
        required = (row.site_name, row.tour_name, row.api_url, row.website_url,
                    row.consumer_key, row.consumer_secret)
        if not all(required):
            log.warning(f"Skipping incomplete WooCommerce credentials for '{row.site_name}'")
            continue

        tour = tours.get(row.tour_name.lower())
        sites.append(WooSite(
            site_name=row.site_name,
            tour_name=row.tour_name,
            api_url=row.api_url.rstrip("/"),
            website_url=row.website_url,
            consumer_key=row.consumer_key,
            consumer_secret=row.consumer_secret,
            timezone=tour.timezone if tour else None,
            official_site_url=tour.official_ticketing_url if tour else None,
            profit_margin=row.profit_margin,
            webhook_secret=row.webhook_secret,
        ))
    return sites


def get_woo_site(db: Session, site_name: str) -> Optional[WooSite]:
    """Find one active storefront by its exact site name."""
    for site in load_woo_sites(db):
        if site.site_name == site_name:
            return site
    return None


def webhook_env_name(site_name: str) -> str:
    """
    Environment variable holding a site's webhook secret.

    "CasaDiGiulietta" -> "WOOCOMMERCE_WEBHOOK_SECRET_CASA_DI_GIULIETTA"
    """
    snake = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", site_name)
    snake = re.sub(r"[^a-zA-Z0-9]+", "_", snake).upper()
    return f"WOOCOMMERCE_WEBHOOK_SECRET_{snake}"


def resolve_webhook_secret(site: WooSite) -> Optional[str]:
    """
    Pick the secret used to verify a site's webhook signatures.

    Order: credential row, per-site env var, global setting, then the
    consumer secret (WooCommerce's default when no secret is entered).
    """
    return (
        site.webhook_secret
        or os.environ.get(webhook_env_name(site.site_name))
        or get_settings().woocommerce_webhook_secret
        or site.consumer_secret
        or None
    )
