"""
Tests for the normalization module.
"""
import pytest

from allstar.errors import UnsupportedSourceError
from allstar.models import ListingSource
from allstar.normalization import (
    craigslist_posting_id,
    detect_source,
    format_price_usd,
    normalize_craigslist_item,
    normalize_craigslist_posting,
    normalize_ebay_item,
    parse_ebay_item_id,
    price_to_cents,
)


class TestFormatPrice:
    """Tests for price helpers."""

    def test_rounds_to_whole_dollars(self):
        assert format_price_usd("124.50") == "$125"
        assert format_price_usd(99.49) == "$99"

    def test_missing_or_garbage(self):
        assert format_price_usd(None) is None
        assert format_price_usd("") is None
        assert format_price_usd("abc") is None

    def test_price_to_cents(self):
        assert price_to_cents("12.34") == 1234
        assert price_to_cents(None) is None


class TestDetectSource:
    """Tests for ad-hoc URL classification."""

    def test_ebay(self):
        assert detect_source("https://www.ebay.com/itm/123") == ListingSource.EBAY

    def test_craigslist_case_insensitive(self):
        url = "https://Denver.Craigslist.org/pts/d/x/1.html"
        assert detect_source(url) == ListingSource.CRAIGSLIST

    def test_unknown_host(self):
        with pytest.raises(UnsupportedSourceError, match="ebay.com or craigslist.org"):
            detect_source("https://example.com/listing/1")


class TestEbayItemId:
    def test_plain_and_slugged(self):
        assert parse_ebay_item_id("https://www.ebay.com/itm/123456") == "123456"
        assert parse_ebay_item_id("https://www.ebay.com/itm/ford-headlight/987?hash=x") == "987"

    def test_unparseable(self):
        with pytest.raises(UnsupportedSourceError):
            parse_ebay_item_id("https://www.ebay.com/sch/i.html?_nkw=lamp")


class TestNormalizeEbayItem:
    """Tests for normalize_ebay_item function."""

    def test_complete_data(self):
        """Test normalization with complete data."""
        raw = {
            "itemId": "v1|123|0",
            "title": "OEM Ford F-150 Headlight",
            "price": {"value": "149.99", "currency": "USD"},
            "itemWebUrl": "https://www.ebay.com/itm/123",
            "image": {"imageUrl": "https://i.ebayimg.com/1.jpg"},
            "condition": "Used",
            "itemCreationDate": "2025-01-02T03:04:05.000Z",
            "itemLocation": {"city": "Denver", "stateOrProvince": "CO"},
            "seller": {"username": "partsguy"},
            "shortDescription": "Left side, no cracks",
        }

        result = normalize_ebay_item(raw)

        assert result.source == ListingSource.EBAY
        assert result.external_id == "v1|123|0"
        assert result.price == "$150"
        assert result.price_cents == 14999
        assert result.location == "Denver, CO"
        assert result.seller_name == "partsguy"
        assert result.description == "Left side, no cracks"
        assert result.raw_data == raw

    def test_missing_fields(self):
        """Test normalization with minimal data."""
        result = normalize_ebay_item({"itemId": "1", "title": "Lamp"})

        assert result.title == "Lamp"
        assert result.price is None
        assert result.image is None
        assert result.location is None
        assert result.link is None


class TestNormalizeCraigslist:
    """Tests for the compact sapi array decoder."""

    decode = {
        "minPostingId": 7800000000,
        "minPostedDate": 1700000000,
        "locations": [[1, "denver", "wsd"], [2, "boulder"]],
        "locationDescriptions": ["west metro", "boulder"],
        "neighborhoods": ["", "Lakewood"],
    }

    def test_full_item(self):
        item = [
            42,
            3600,
            0,
            85,
            "0:1~39.7~-105.1",
            [6, "oem-headlight"],
            [4, "3:00a0a_abc"],
            [10, "$85"],
            "OEM headlight",
        ]

        result = normalize_craigslist_item(item, self.decode, "denver")

        assert result.external_id == "7800000042"
        assert result.title == "OEM headlight"
        assert result.price == "$85"
        assert result.price_cents == 8500
        assert result.link == "https://denver.craigslist.org/wsd/pts/d/oem-headlight/7800000042.html"
        assert result.image == "https://images.craigslist.org/00a0a_abc_600x450.jpg"
        assert result.location == "Lakewood"
        assert result.listing_date.startswith("2023-11-14T23:13:20")
        assert result.raw_data["posting_id"] == 7800000042

    def test_no_slug_means_no_link(self):
        item = [1, 0, 0, 0, "1", "Headlamp"]

        result = normalize_craigslist_item(item, self.decode, "denver")

        assert result.link is None
        assert result.price is None
        assert result.location == "boulder"

    def test_posting_from_page_metadata(self):
        url = "https://denver.craigslist.org/pts/d/lamp/7812345678.html"
        meta = {"title": "Lamp", "price": "120.00", "location": "Denver, CO"}

        result = normalize_craigslist_posting(url, meta)

        assert result.external_id == "7812345678"
        assert result.price == "$120"
        assert result.link == url
        assert craigslist_posting_id("https://x.craigslist.org/nothing") is None
