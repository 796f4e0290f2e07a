"""
eBay Browse API adapter with OAuth token caching.
"""
import base64
import logging
import re
import time
from typing import Optional

import requests
from pydantic import BaseModel, Field

from ..config import EbayConfig, get_config
from ..errors import ConfigurationError, SourceError
from ..models.listing import ListingSource, ScrapedListing, SearchResult
from ..normalization import normalize_ebay_item, parse_ebay_item_id
from .base import HttpSource, build_url


logger = logging.getLogger(__name__)

SANDBOX_BASE = "https://api.sandbox.ebay.com"
PRODUCTION_BASE = "https://api.ebay.com"
OAUTH_SCOPE = "https://api.ebay.com/oauth/api_scope"

# Refresh this long before eBay says the token expires
TOKEN_EXPIRY_MARGIN_SECONDS = 300


class EbayPreferences(BaseModel):
    """Search narrowing applied to every eBay query."""
    category_id: Optional[str] = "33710"
    condition_ids: list[str] = Field(default_factory=lambda: ["3000"])
    excluded_keywords: list[str] = Field(
        default_factory=lambda: ["parting out", "whole car", "complete vehicle"]
    )
    buying_options: list[str] = Field(
        default_factory=lambda: ["FIXED_PRICE", "BEST_OFFER", "AUCTION"]
    )
    sort: str = "newlyListed"
    max_price: Optional[str] = "500"
    brand_type_oem: bool = True
    origin_us: bool = True


def build_query(base_query: str, prefs: EbayPreferences) -> str:
    query = base_query
    if not re.search(r"headlight", query, re.IGNORECASE):
        query = f"{query} headlight"
    if prefs.excluded_keywords:
        exclusions = " ".join(f'-"{kw}"' for kw in prefs.excluded_keywords)
        query = f"{query} {exclusions}"
    return query


def build_filter(prefs: EbayPreferences) -> Optional[str]:
    filters = []
    if prefs.condition_ids:
        filters.append(f"conditionIds:{{{'|'.join(prefs.condition_ids)}}}")
    if prefs.buying_options:
        filters.append(f"buyingOptions:{{{'|'.join(prefs.buying_options)}}}")
    if prefs.max_price:
        filters.append(f"price:[..{prefs.max_price}],priceCurrency:USD")
    return ",".join(filters) if filters else None


def build_aspect_filter(prefs: EbayPreferences) -> Optional[str]:
    if not prefs.category_id:
        return None
    aspects = []
    if prefs.brand_type_oem:
        aspects.append("Brand Type:{Genuine OEM}")
    if prefs.origin_us:
        aspects.append("Country/Region of Manufacture:{United States}")
    if not aspects:
        return None
    return f"categoryId:{prefs.category_id},{','.join(aspects)}"


class EbayAdapter(HttpSource):
    """Searches and fetches eBay listings through the Browse API."""

    source = ListingSource.EBAY

    def __init__(
        self,
        config: Optional[EbayConfig] = None,
        preferences: Optional[EbayPreferences] = None,
        session: Optional[requests.Session] = None,
    ):
        config = config or get_config().ebay
        if not config.app_id or not config.cert_id:
            raise ConfigurationError("EBAY_APP_ID and EBAY_CERT_ID must be set")
        super().__init__(session=session, timeout=config.timeout_seconds)
        self.config = config
        self.preferences = preferences or EbayPreferences()
        self.base_url = SANDBOX_BASE if config.is_sandbox else PRODUCTION_BASE
        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        logger.info(f"EbayAdapter initialized ({'sandbox' if config.is_sandbox else 'production'})")

    def _get_token(self) -> str:
        """Client-credentials token, reused until shortly before it expires."""
        if self._token and time.time() < self._token_expires_at:
            return self._token

        credentials = base64.b64encode(
            f"{self.config.app_id}:{self.config.cert_id}".encode()
        ).decode()
        response = self._request(
            "POST",
            f"{self.base_url}/identity/v1/oauth2/token",
            data={"grant_type": "client_credentials", "scope": OAUTH_SCOPE},
            headers={
                "Content-Type": "application/x-www-form-urlencoded",
                "Authorization": f"Basic {credentials}",
            },
        )
        try:
            data = response.json()
        except ValueError as e:
            raise SourceError(self.source.value, "invalid OAuth response") from e
        token = data.get("access_token")
        if not token:
            raise SourceError(self.source.value, "OAuth response carried no access_token")

        self._token = token
        self._token_expires_at = time.time() + int(data.get("expires_in", 0)) - TOKEN_EXPIRY_MARGIN_SECONDS
        return token

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._get_token()}",
            "X-EBAY-C-MARKETPLACE-ID": self.config.marketplace_id,
        }

    def search(self, query: str, preferences: Optional[EbayPreferences] = None) -> SearchResult:
        """
        Search eBay and return normalized listings.

        Args:
            query: Search term
            preferences: Overrides for the adapter's default preferences

        Returns:
            SearchResult with up to 100 listings and the query URL used
        """
        prefs = preferences or self.preferences
        url = f"{self.base_url}/buy/browse/v1/item_summary/search"

        params: dict[str, object] = {
            "q": build_query(query, prefs),
            "limit": 100,
            "sort": prefs.sort or "newlyListed",
        }
        if prefs.category_id:
            params["category_ids"] = prefs.category_id
        filter_string = build_filter(prefs)
        if filter_string:
            params["filter"] = filter_string
        aspect_filter = build_aspect_filter(prefs)
        if aspect_filter:
            params["aspect_filter"] = aspect_filter

        logger.info(f"Searching eBay for: {query}")
        data = self._get_json(url, params=params, headers=self._headers())
        query_url = build_url(url, params)

        summaries = data.get("itemSummaries") or []
        items = [normalize_ebay_item(item) for item in summaries]
        logger.info(f"eBay search returned {len(items)} listings")
        return SearchResult(items=items, url=query_url)

    def fetch_one(self, url: str) -> ScrapedListing:
        """Fetch a single item by its ebay.com/itm/ URL."""
        item_id = parse_ebay_item_id(url)
        # Browse API wants the legacy id as v1|{id}|0 with the pipes escaped
        encoded_id = f"v1%7C{item_id}%7C0"
        data = self._get_json(
            f"{self.base_url}/buy/browse/v1/item/{encoded_id}",
            headers=self._headers(),
        )
        return normalize_ebay_item(data)
