"""
Pydantic models for the Allstar agent.
All data contracts are defined here for strict validation.
"""

from .listing import ListingSource, ScrapedListing, Listing, StoredListing, SearchResult
from .grading import (
    GradingCriteria,
    GradeResult,
    GradeRow,
    GradeStats,
    Verdict,
    Feedback,
    FeedbackSample,
    AdHocGrade,
)
from .run import RunStatus, PipelineStage, EventType, RunUpdate, Event

__all__ = [
    # Listing
    "ListingSource",
    "ScrapedListing",
    "Listing",
    "StoredListing",
    "SearchResult",
    # Grading
    "GradingCriteria",
    "GradeResult",
    "GradeRow",
    "GradeStats",
    "Verdict",
    "Feedback",
    "FeedbackSample",
    "AdHocGrade",
    # Runs
    "RunStatus",
    "PipelineStage",
    "EventType",
    "RunUpdate",
    "Event",
]
