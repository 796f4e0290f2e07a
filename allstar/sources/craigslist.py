"""
Craigslist adapter - sapi search endpoint plus single posting pages.
"""
import json
import logging
from typing import Any, Optional
from urllib.parse import quote

import requests
from bs4 import BeautifulSoup
from pydantic import BaseModel

from ..config import CraigslistConfig, get_config
from ..errors import SourceError
from ..models.listing import ListingSource, ScrapedListing, SearchResult
from ..normalization import normalize_craigslist_item, normalize_craigslist_posting
from .base import USER_AGENT, HttpSource


logger = logging.getLogger(__name__)

SEARCH_API_URL = "https://sapi.craigslist.org/web/v8/postings/search/full"
MAX_ITEMS = 100


class CraigslistOptions(BaseModel):
    """Where to search."""
    city: str = "denver"
    lat: float = 39.6654
    lon: float = -105.1062
    search_distance: int = 1000


class CraigslistAdapter(HttpSource):
    """Searches Craigslist auto parts by owner around one city."""

    source = ListingSource.CRAIGSLIST

    def __init__(
        self,
        config: Optional[CraigslistConfig] = None,
        session: Optional[requests.Session] = None,
    ):
        config = config or get_config().craigslist
        super().__init__(session=session, timeout=config.timeout_seconds)
        self.options = CraigslistOptions(
            city=config.city,
            lat=config.lat,
            lon=config.lon,
            search_distance=config.search_distance,
        )

    def search(self, query: str, options: Optional[CraigslistOptions] = None) -> SearchResult:
        """
        Search Craigslist and return normalized listings.

        Returns:
            SearchResult with up to 100 listings and the human browse URL
        """
        opts = options or self.options
        params = {
            "batch": "11-0-360-0-0",
            "cc": "US",
            "lang": "en",
            "searchPath": "pta",
            "query": query,
            "lat": str(opts.lat),
            "lon": str(opts.lon),
            "search_distance": str(opts.search_distance),
        }
        browse_url = (
            f"https://{opts.city}.craigslist.org/search/{opts.city}-co/pta"
            f"?query={quote(query)}&lat={opts.lat}&lon={opts.lon}"
            f"&search_distance={opts.search_distance}"
        )

        logger.info(f"Searching Craigslist ({opts.city}) for: {query}")
        data = self._get_json(SEARCH_API_URL, params=params, headers={"User-Agent": USER_AGENT})

        body = (data.get("data") or {}) if isinstance(data, dict) else {}
        decode = body.get("decode") or {}
        raw_items = body.get("items") or []

        items = []
        for raw in raw_items[:MAX_ITEMS]:
            if not isinstance(raw, list) or len(raw) < 2:
                continue
            items.append(normalize_craigslist_item(raw, decode, opts.city))

        logger.info(f"Craigslist search returned {len(items)} listings")
        return SearchResult(items=items, url=browse_url)

    def fetch_one(self, url: str) -> ScrapedListing:
        """Fetch one posting page and read its structured metadata."""
        response = self._request("GET", url, headers={"User-Agent": USER_AGENT})
        meta = parse_posting_page(response.text)
        if not meta.get("title"):
            raise SourceError(self.source.value, f"no posting found at {url}")
        return normalize_craigslist_posting(url, meta)


def _parse_json_ld(soup: BeautifulSoup) -> dict[str, Any]:
    """The first JSON-LD object on the page that looks like a posting."""
    for tag in soup.find_all("script", type="application/ld+json"):
        try:
            data = json.loads(tag.string or "")
        except ValueError:
            continue
        items = data if isinstance(data, list) else [data]
        for obj in items:
            if isinstance(obj, dict) and obj.get("@type") in ("Product", "Offer", "Thing"):
                return obj
    return {}


def _meta_content(soup: BeautifulSoup, prop: str) -> Optional[str]:
    tag = soup.find("meta", attrs={"property": prop})
    if tag and tag.get("content"):
        return tag["content"].strip()
    return None


def parse_posting_page(html: str) -> dict[str, Any]:
    """
    Pull title, price, image, description, location and post time out of a
    posting page. JSON-LD wins, Open Graph and page markup fill the gaps.
    """
    soup = BeautifulSoup(html, "html.parser")
    json_ld = _parse_json_ld(soup)

    offers = json_ld.get("offers")
    if isinstance(offers, list):
        offers = offers[0] if offers else {}
    offers = offers if isinstance(offers, dict) else {}

    image = json_ld.get("image")
    if isinstance(image, list):
        image = image[0] if image else None

    title = json_ld.get("name") or _meta_content(soup, "og:title")
    if not title:
        title_tag = soup.select_one("#titletextonly") or soup.select_one("h1")
        title = title_tag.get_text(strip=True) if title_tag else None

    price = offers.get("price")
    if price is None:
        price_tag = soup.select_one(".price")
        if price_tag:
            price = price_tag.get_text(strip=True).replace("$", "").replace(",", "")

    description = json_ld.get("description")
    if not description:
        body = soup.select_one("#postingbody")
        if body:
            for notice in body.select(".print-information"):
                notice.decompose()
            description = body.get_text(" ", strip=True) or None
        else:
            description = _meta_content(soup, "og:description")

    location = None
    available_at = offers.get("availableAtOrFrom") or {}
    address = available_at.get("address") if isinstance(available_at, dict) else None
    if isinstance(address, dict):
        parts = [address.get("addressLocality"), address.get("addressRegion")]
        location = ", ".join(p for p in parts if p) or None

    posted_at = None
    time_tag = soup.select_one("time.date.timeago") or soup.find("time")
    if time_tag and time_tag.get("datetime"):
        posted_at = time_tag["datetime"]

    return {
        "title": title,
        "price": price,
        "image": image or _meta_content(soup, "og:image"),
        "description": description,
        "location": location,
        "posted_at": posted_at,
        "condition": None,
        "json_ld": json_ld,
    }
