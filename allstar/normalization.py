"""
Normalization module for converting marketplace responses to ScrapedListing.
"""
import re
from datetime import datetime, timezone
from typing import Any, Optional

from .errors import UnsupportedSourceError
from .models.listing import ListingSource, ScrapedListing


EBAY_ITEM_URL = re.compile(r"ebay\.com/itm/(?:[^/]+/)?(\d+)", re.IGNORECASE)

# Craigslist packs optional fields into tagged sub-arrays: [tag, value, ...]
CL_TAG_IMAGE = 4
CL_TAG_SLUG = 6
CL_TAG_PRICE = 10


def format_price_usd(value: Any) -> Optional[str]:
    """Render an eBay price value as whole dollars, e.g. "$125"."""
    if value in (None, ""):
        return None
    try:
        dollars = float(value)
    except (TypeError, ValueError):
        return None
    return f"${int(dollars + 0.5)}"


def price_to_cents(value: Any) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(round(float(value) * 100))
    except (TypeError, ValueError):
        return None


def detect_source(url: str) -> ListingSource:
    """
    Work out which marketplace a listing URL belongs to.

    Raises:
        UnsupportedSourceError: If the URL is from neither eBay nor Craigslist
    """
    if re.search(r"ebay\.com", url, re.IGNORECASE):
        return ListingSource.EBAY
    if re.search(r"craigslist\.org", url, re.IGNORECASE):
        return ListingSource.CRAIGSLIST
    raise UnsupportedSourceError("URL must be from ebay.com or craigslist.org")


def parse_ebay_item_id(url: str) -> str:
    """Extract the legacy item id from ebay.com/itm/123 or ebay.com/itm/some-title/123."""
    match = EBAY_ITEM_URL.search(url)
    if not match:
        raise UnsupportedSourceError(f"Could not parse eBay item ID from URL: {url}")
    return match.group(1)


def normalize_ebay_item(item: dict[str, Any]) -> ScrapedListing:
    """
    Convert a Browse API item (summary or full item) to a ScrapedListing.

    Safely extracts fields with null fallbacks for missing data.
    """
    price = item.get("price") or {}
    image = item.get("image") or {}
    seller = item.get("seller") or {}

    location = None
    item_location = item.get("itemLocation")
    if isinstance(item_location, dict):
        parts = [item_location.get("city"), item_location.get("stateOrProvince")]
        location = ", ".join(p for p in parts if p)

    return ScrapedListing(
        title=item.get("title") or "",
        price=format_price_usd(price.get("value")),
        price_cents=price_to_cents(price.get("value")),
        link=item.get("itemWebUrl"),
        image=image.get("imageUrl") or None,
        source=ListingSource.EBAY,
        external_id=item.get("itemId"),
        condition=item.get("condition") or None,
        listing_date=item.get("itemCreationDate") or None,
        location=location,
        seller_name=seller.get("username") or None,
        description=item.get("shortDescription") or item.get("description") or None,
        raw_data=item,
    )


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def normalize_craigslist_item(
    item: list[Any],
    decode: dict[str, Any],
    city: str,
) -> ScrapedListing:
    """
    Decode one entry of the sapi compact array format.

    Layout: [posting_id_offset, posted_ts_offset, ?, price, "area:hood~...", ...tagged arrays..., title]
    """
    min_posting_id = _to_int(decode.get("minPostingId"))
    min_posted_date = _to_int(decode.get("minPostedDate"))
    locations = decode.get("locations") or []
    loc_descriptions = decode.get("locationDescriptions") or []
    neighborhoods = decode.get("neighborhoods") or []

    posting_id = min_posting_id + _to_int(item[0])
    posted_ts = min_posted_date + _to_int(item[1])
    title = item[-1] if isinstance(item[-1], str) else ""
    price_num = item[3] if len(item) > 3 and isinstance(item[3], (int, float)) else 0
    loc_str = item[4] if len(item) > 4 and isinstance(item[4], str) else ""

    area_parts = loc_str.split("~")[0].split(":")
    area_idx = _to_int(area_parts[0]) if area_parts[0] else 0
    area = locations[area_idx] if 0 <= area_idx < len(locations) else None
    area_name = (area[1] if area and len(area) > 1 and area[1] else None) or city
    sub_area = area[2] if area and len(area) > 2 and area[2] else None
    neigh_idx = _to_int(area_parts[1]) if len(area_parts) > 1 else 0
    neigh_name = neighborhoods[neigh_idx] if 0 < neigh_idx < len(neighborhoods) else None

    link_slug = None
    image_url = None
    price_str = None
    for field in item:
        if not isinstance(field, list) or len(field) < 2:
            continue
        tag = field[0]
        if tag == CL_TAG_SLUG:
            link_slug = field[1]
        elif tag == CL_TAG_IMAGE and isinstance(field[1], str):
            image_id = field[1][2:] if field[1].startswith("3:") else field[1]
            image_url = f"https://images.craigslist.org/{image_id}_600x450.jpg"
        elif tag == CL_TAG_PRICE:
            price_str = field[1]

    if sub_area:
        url_base = f"https://{area_name}.craigslist.org/{sub_area}/pts/d"
    else:
        url_base = f"https://{area_name}.craigslist.org/pts/d"
    link = f"{url_base}/{link_slug}/{posting_id}.html" if link_slug else None

    area_description = loc_descriptions[area_idx] if 0 <= area_idx < len(loc_descriptions) else None

    return ScrapedListing(
        title=title,
        price=price_str or (f"${price_num}" if price_num else None),
        price_cents=int(price_num * 100) if price_num else None,
        link=link,
        image=image_url,
        source=ListingSource.CRAIGSLIST,
        external_id=str(posting_id),
        condition=None,
        listing_date=datetime.fromtimestamp(posted_ts, tz=timezone.utc).isoformat(),
        location=neigh_name or area_description or area_name or None,
        seller_name=None,
        description=None,
        raw_data={
            "posting_id": posting_id,
            "posted_ts": posted_ts,
            "raw_item": item,
        },
    )


def craigslist_posting_id(url: str) -> Optional[str]:
    match = re.search(r"/(\d+)\.html", url)
    return match.group(1) if match else None


def normalize_craigslist_posting(url: str, meta: dict[str, Any]) -> ScrapedListing:
    """
    Build a ScrapedListing from metadata scraped off a single posting page.

    ``meta`` holds the keys the page parser found: title, price, image,
    description, location, posted_at, plus the raw JSON-LD document.
    """
    price_value = meta.get("price")
    price_cents = price_to_cents(price_value)
    price_text = None
    if price_cents is not None:
        price_text = f"${price_cents // 100}"

    return ScrapedListing(
        title=meta.get("title") or "",
        price=price_text,
        price_cents=price_cents,
        link=url,
        image=meta.get("image"),
        source=ListingSource.CRAIGSLIST,
        external_id=craigslist_posting_id(url),
        condition=meta.get("condition"),
        listing_date=meta.get("posted_at"),
        location=meta.get("location"),
        seller_name=None,
        description=meta.get("description"),
        raw_data={"url": url, "json_ld": meta.get("json_ld") or {}},
    )
