"""
Run models - lifecycle record and audit events of a pipeline execution.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class PipelineStage(str, Enum):
    """Orchestrator states, in the order a successful run passes through them."""
    CREATED = "created"
    SCRAPING = "scraping"
    STORING = "storing"
    SELECTING = "selecting"
    FEEDBACK_LOADING = "feedback-loading"
    GRADING = "grading"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"


class EventType(str, Enum):
    """Pipeline milestones written to the audit log."""
    SCRAPE_STARTED = "scrape_started"
    SCRAPE_COMPLETED = "scrape_completed"
    LISTINGS_STORED = "listings_stored"
    GRADE_STARTED = "grade_started"
    GRADE_COMPLETED = "grade_completed"
    GRADE_FAILED = "grade_failed"
    RUN_CANCELLED = "run_cancelled"
    RUN_COMPLETED = "run_completed"
    RUN_FAILED = "run_failed"


class RunUpdate(BaseModel):
    """
    Partial update of a run. Only fields explicitly set are written.
    Terminal ``status`` is written through RunTracker.finalize only.
    """
    status: Optional[RunStatus] = None
    finished_at: Optional[datetime] = None
    listings_scraped: Optional[int] = Field(default=None, ge=0)
    listings_graded: Optional[int] = Field(default=None, ge=0)
    listings_failed: Optional[int] = Field(default=None, ge=0)
    average_score: Optional[float] = None
    error_message: Optional[str] = None

    def fields(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class Event(BaseModel):
    """Append-only audit record."""
    run_id: str
    event_type: EventType
    listing_id: Optional[str] = None
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
