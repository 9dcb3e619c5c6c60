"""
WooCommerce Connector

Reads orders from a storefront's WooCommerce REST API (wc/v3).
One connector instance per storefront; the credential table decides which
storefronts exist.
"""
import asyncio
import time
from typing import Any, Dict, List, Optional

import httpx
from sqlalchemy.orm import Session

from app.config import get_settings
from app.connectors.base import BaseConnector
from app.services.site_config import WooSite
from app.utils.errors import RateLimitError, WooCommerceAPIError
from app.utils.logger import log
from app.utils.retry import is_rate_limited, retry_once_on_rate_limit


class WooCommerceConnector(BaseConnector):
    """
    Connector for the WooCommerce REST API

    Fetches order pages (newest first) and single orders
    """

    def __init__(
        self,
        site: WooSite,
        db: Optional[Session] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        request_delay: Optional[float] = None,
        backoff_seconds: Optional[float] = None,
    ):
        """
        Initialize WooCommerce connector

        Args:
            site: Storefront configuration
            db: Database session used for sync status logging
            transport: httpx transport override (tests use MockTransport)
            request_delay: Seconds between requests (defaults to settings)
            backoff_seconds: Wait before the single rate-limit retry
        """
        super().__init__(db, source_name=f"woocommerce:{site.site_name}", source_type="woocommerce")

        settings = get_settings()
        self.site = site
        # api_url is stored with its /wp-json/wc/v3 suffix
        self.base_url = site.api_url.rstrip('/')
        self.transport = transport
        self.timeout = settings.woo_request_timeout_seconds
        self.per_page = settings.woo_per_page
        self.max_pages = settings.woo_max_pages

        # Rate limiting
        self.request_delay = settings.woo_request_delay_seconds if request_delay is None else request_delay
        self.backoff_seconds = (
            settings.woo_rate_limit_backoff_seconds if backoff_seconds is None else backoff_seconds
        )
        self.last_request_time = 0.0

    async def authenticate(self) -> bool:
        """
        Test WooCommerce credentials with a one-order request

        Returns:
            True if authenticated successfully
        """
        try:
            await self._get("/orders", {"per_page": 1})
            self._authenticated = True
            log.info(f"Authenticated with WooCommerce store: {self.site.site_name}")
            return True
        except WooCommerceAPIError as e:
            log.error(f"WooCommerce authentication failed for {self.site.site_name}: {str(e)}")
            return False

    async def fetch_orders_page(self, page: int, per_page: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Fetch one page of orders, newest id first

        Args:
            page: 1-based page number
            per_page: Page size (defaults to settings)

        Returns:
            List of WooCommerce order payloads (empty past the last page)
        """
        params = {
            "per_page": per_page or self.per_page,
            "page": page,
            "orderby": "id",
            "order": "desc",
        }
        data = await self._get("/orders", params)
        if not isinstance(data, list):
            raise WooCommerceAPIError(self.site.site_name, "Unexpected orders payload (not a list)")
        return data

    async def fetch_order(self, woo_order_id: int) -> Optional[Dict[str, Any]]:
        """
        Fetch a single order by its WooCommerce id

        Returns:
            Order payload, or None when the store answers 404
        """
        try:
            return await self._get(f"/orders/{woo_order_id}")
        except WooCommerceAPIError as e:
            if e.status_code == 404:
                return None
            raise

    async def fetch_new_orders(self, highest_known_id: int = 0) -> Dict[str, Any]:
        """
        Page through orders until reaching ones already stored

        Stops at max_pages, on an empty page, or once a page's lowest id is
        at or below highest_known_id.

        Args:
            highest_known_id: Highest WooCommerce id stored for this site

        Returns:
            {"new_orders": [...ids above highest_known_id],
             "fetched": [...every order seen], "pages": int}
        """
        fetched: List[Dict[str, Any]] = []
        pages = 0

        for page in range(1, self.max_pages + 1):
            orders = await self.fetch_orders_page(page)
            pages += 1
            if not orders:
                break

            fetched.extend(orders)
            lowest_id = min(int(order.get("id") or 0) for order in orders)
            if lowest_id <= highest_known_id or len(orders) < self.per_page:
                break

        new_orders = [order for order in fetched if int(order.get("id") or 0) > highest_known_id]
        log.info(
            f"{self.site.site_name}: fetched {len(fetched)} orders over {pages} page(s), "
            f"{len(new_orders)} above #{highest_known_id}"
        )
        return {"new_orders": new_orders, "fetched": fetched, "pages": pages}

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET with the storefront's single rate-limit retry"""
        return await retry_once_on_rate_limit(
            lambda: self._request(path, params),
            backoff_seconds=self.backoff_seconds,
            label=f"{self.site.site_name} {path}",
        )

    async def _request(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        await self._rate_limit()

        url = f"{self.base_url}{path}"
        auth = (self.site.consumer_key, self.site.consumer_secret)

        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
                response = await client.get(url, params=params, auth=auth)
        except httpx.HTTPError as e:
            raise WooCommerceAPIError(self.site.site_name, f"Request failed: {str(e)}")

        body = response.text
        if is_rate_limited(response.status_code, body if response.status_code >= 400 else None):
            raise RateLimitError(self.site.site_name, "Rate limit exceeded", status_code=response.status_code)

        if response.status_code < 200 or response.status_code >= 300:
            raise WooCommerceAPIError(
                self.site.site_name,
                f"HTTP {response.status_code}: {body[:200]}",
                status_code=response.status_code,
            )

        content_type = response.headers.get("content-type", "")
        if "text/html" in content_type or body.lstrip().startswith("<"):
            raise WooCommerceAPIError(
                self.site.site_name,
                "Received HTML instead of JSON (check api_url ends in /wp-json/wc/v3)",
                status_code=response.status_code,
                is_html=True,
            )

        try:
            return response.json()
        except ValueError:
            raise WooCommerceAPIError(self.site.site_name, "Response body is not valid JSON",
                                      status_code=response.status_code)

    async def _rate_limit(self):
        """Keep a fixed gap between requests to the same store"""
        if self.request_delay <= 0:
            return
        elapsed = time.monotonic() - self.last_request_time
        if elapsed < self.request_delay:
            await asyncio.sleep(self.request_delay - elapsed)
        self.last_request_time = time.monotonic()
