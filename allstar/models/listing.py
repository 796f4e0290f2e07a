"""
Listing models - scraped and stored listing representations.
"""
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class ListingSource(str, Enum):
    """Marketplaces the agent knows how to scrape."""
    EBAY = "ebay"
    CRAIGSLIST = "craigslist"


class ScrapedListing(BaseModel):
    """
    Listing as produced by a source adapter.
    Ephemeral until it has been stored and assigned an id.
    """
    title: str
    price: Optional[str] = None
    price_cents: Optional[int] = None
    link: Optional[str] = None
    image: Optional[str] = None
    source: ListingSource
    external_id: Optional[str] = None
    condition: Optional[str] = None
    listing_date: Optional[str] = None
    location: Optional[str] = None
    seller_name: Optional[str] = None
    description: Optional[str] = None
    raw_data: dict[str, Any] = Field(default_factory=dict)

    @property
    def identity(self) -> Optional[tuple[str, str]]:
        """Source-scoped identity, or None when the source gave no external id."""
        if not self.external_id:
            return None
        return (self.source.value, self.external_id)


class Listing(BaseModel):
    """A stored listing - the unit of grading."""
    id: str
    title: str
    price: Optional[str] = None
    price_cents: Optional[int] = None
    link: Optional[str] = None
    image: Optional[str] = None
    source: ListingSource
    external_id: Optional[str] = None
    condition: Optional[str] = None
    listing_date: Optional[str] = None
    location: Optional[str] = None
    seller_name: Optional[str] = None
    description: Optional[str] = None

    @classmethod
    def from_scraped(cls, listing_id: str, scraped: ScrapedListing) -> "Listing":
        data = scraped.model_dump(exclude={"raw_data"})
        return cls(id=listing_id, **data)


class StoredListing(BaseModel):
    """Identity assigned by persistence to an upserted listing."""
    id: str
    url: str


class SearchResult(BaseModel):
    """What a source adapter returns for one search."""
    items: list[ScrapedListing] = Field(default_factory=list)
    url: str
