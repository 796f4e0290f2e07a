"""
Deduplicator - drop scraped listings whose identity is already stored.
"""
import logging

from pydantic import BaseModel, Field

from ..errors import StorageError
from ..models.listing import ScrapedListing
from ..storage.base import Storage


logger = logging.getLogger(__name__)


class DedupeResult(BaseModel):
    unique: list[ScrapedListing] = Field(default_factory=list)
    duplicates_skipped: int = 0


class Deduplicator:
    """
    Filters candidates by (source, external_id).

    Listings without an external id always pass; the url-keyed upsert is what
    keeps those from duplicating.
    """

    def __init__(self, storage: Storage):
        self.storage = storage

    def filter_new(self, candidates: list[ScrapedListing]) -> DedupeResult:
        """
        Return the candidates not already known to storage.

        Repeats of the same identity within ``candidates`` collapse to the
        first occurrence. If storage cannot be asked, every candidate is
        treated as new.
        """
        if not candidates:
            return DedupeResult()

        seen: set[tuple[str, str]] = set()
        collapsed = []
        for listing in candidates:
            identity = listing.identity
            if identity is not None:
                if identity in seen:
                    continue
                seen.add(identity)
            collapsed.append(listing)

        if not seen:
            return DedupeResult(unique=collapsed, duplicates_skipped=len(candidates) - len(collapsed))

        try:
            existing = self.storage.find_existing_identities(sorted(seen))
        except StorageError as e:
            logger.warning(f"Failed to check duplicates: {e}")
            existing = set()

        unique = [
            listing for listing in collapsed
            if listing.identity is None or listing.identity not in existing
        ]
        skipped = len(candidates) - len(unique)
        if skipped:
            logger.info(f"Skipped {skipped} duplicate listings")
        return DedupeResult(unique=unique, duplicates_skipped=skipped)
