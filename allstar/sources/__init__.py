"""Marketplace source adapters."""

from .base import SourceAdapter
from .ebay import EbayAdapter, EbayPreferences
from .craigslist import CraigslistAdapter, CraigslistOptions

__all__ = [
    "SourceAdapter",
    "EbayAdapter",
    "EbayPreferences",
    "CraigslistAdapter",
    "CraigslistOptions",
]
