"""
Grading models - rubric, model verdicts, stored grades and buyer feedback.
"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class GradingCriteria(BaseModel):
    """The active rubric. ``version`` partitions grades and feedback."""
    version: str
    criteria_prompt: str


class GradeResult(BaseModel):
    """A validated verdict for one listing."""
    score: float
    grade: str
    rationale: str
    flags: list[str] = Field(default_factory=list)


class GradeRow(BaseModel):
    """A grade as persisted: one per (listing_id, prompt_version)."""
    listing_id: str
    prompt_version: str
    score: float
    grade: str
    rationale: str
    flags: list[str] = Field(default_factory=list)
    model: str


class GradeStats(BaseModel):
    """Aggregate outcome of a grading pass."""
    graded: int = 0
    failed: int = 0
    average_score: int = Field(default=0, description="Rounded mean of successful scores, 0 when none")
    cancelled: bool = False

    @property
    def attempted(self) -> int:
        return self.graded + self.failed


class Verdict(str, Enum):
    """Buyer's reaction to a past grade."""
    AGREE = "agree"
    DISAGREE = "disagree"


class Feedback(BaseModel):
    """Human correction signal attached to a previous grade."""
    listing_title: str
    score: float
    grade: str
    adjusted_score: Optional[float] = None
    notes: Optional[str] = None


class FeedbackSample(BaseModel):
    """Bounded, most-recent-first feedback used to steer one run."""
    disagreements: list[Feedback] = Field(default_factory=list)
    agreements: list[Feedback] = Field(default_factory=list)


class AdHocGrade(BaseModel):
    """Result of grading a single listing fetched by URL."""
    listing_id: str
    run_id: str
    title: str
    price: Optional[str] = None
    image: Optional[str] = None
    source: str
    link: Optional[str] = None
    grade: str
    score: float
    rationale: str
    flags: list[str] = Field(default_factory=list)
