"""
Persistence contract consumed by the pipeline.
"""
from typing import Optional, Protocol

from ..models.grading import Feedback, GradeRow, GradingCriteria, Verdict
from ..models.listing import Listing, ScrapedListing, StoredListing
from ..models.run import Event


class Storage(Protocol):
    """
    Everything the pipeline reads from or writes to durable storage.
    Implementations raise StorageError when a call cannot be completed.
    """

    def get_active_criteria(self) -> GradingCriteria: ...

    def find_existing_identities(
        self, identities: list[tuple[str, str]]
    ) -> set[tuple[str, str]]: ...

    def upsert_listings(self, items: list[ScrapedListing]) -> list[StoredListing]: ...

    def select_ungraded(self, prompt_version: str) -> list[Listing]: ...

    def insert_grade(self, row: GradeRow) -> None: ...

    def create_run(self, prompt_version: str, triggered_by: Optional[str] = None) -> str: ...

    def update_run(self, run_id: str, fields: dict) -> None: ...

    def append_event(self, event: Event) -> None: ...

    def load_feedback(self, verdict: Verdict, limit: int) -> list[Feedback]: ...

    def get_listing_stats(self, prompt_version: str) -> dict[str, int]: ...
