"""
Grading engine - bounded-concurrency batch scoring with per-item failure isolation.
"""
import json
import logging
import math
import re
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Optional, TypeVar, Union

import numpy as np
from pydantic import BaseModel, Field

from ..ai.llm_client import Grader
from ..errors import GraderError, InvalidGradeResponse
from ..models.grading import FeedbackSample, GradeResult, GradeRow, GradeStats, GradingCriteria
from ..models.listing import Listing
from ..models.run import EventType
from ..storage.base import Storage
from .prompts import build_instructions, build_item_prompt
from .tracker import RunTracker


logger = logging.getLogger(__name__)

T = TypeVar("T")

DRY_RUN_MODEL = "dry-run"
DRY_RUN_RESULT = GradeResult(score=50, grade="C", rationale="DRY RUN", flags=[])

# ```json ... ``` or ``` ... ```
FENCED_BLOCK = re.compile(r"```[\w-]*\s*(.*?)```", re.DOTALL)


class CancellationToken:
    """Cooperative stop signal, checked between batches and windows."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class GradingOptions(BaseModel):
    run_id: str
    prompt_version: str
    batch_size: int = Field(default=10, ge=1)
    concurrency: int = Field(default=3, ge=1)
    dry_run: bool = False


@dataclass(frozen=True)
class ValidGrade:
    result: GradeResult


@dataclass(frozen=True)
class InvalidGrade:
    reason: str
    raw: str


ParsedGrade = Union[ValidGrade, InvalidGrade]


def parse_grade_response(raw: str) -> ParsedGrade:
    """
    Validate a model answer into a verdict.

    Fenced output is unwrapped first. ``score`` must be a finite number,
    ``grade`` and ``rationale`` strings; ``flags`` falls back to an empty
    list and keeps only string entries.
    """
    text = raw.strip()
    match = FENCED_BLOCK.search(text)
    if match:
        text = match.group(1).strip()

    try:
        data = json.loads(text)
    except ValueError:
        return InvalidGrade("response is not valid JSON", raw)
    if not isinstance(data, dict):
        return InvalidGrade("response is not a JSON object", raw)

    score = data.get("score")
    if isinstance(score, bool) or not isinstance(score, (int, float)) or not math.isfinite(score):
        return InvalidGrade("score is not a number", raw)
    if not isinstance(data.get("grade"), str):
        return InvalidGrade("grade is not a string", raw)
    if not isinstance(data.get("rationale"), str):
        return InvalidGrade("rationale is not a string", raw)

    flags = data.get("flags")
    flags = [flag for flag in flags if isinstance(flag, str)] if isinstance(flags, list) else []

    return ValidGrade(GradeResult(
        score=score,
        grade=data["grade"],
        rationale=data["rationale"],
        flags=flags,
    ))


def chunk(items: list[T], size: int) -> list[list[T]]:
    """Split into consecutive slices of ``size``; the last may be shorter."""
    return [items[i:i + size] for i in range(0, len(items), size)]


def average_score(scores: list[float]) -> int:
    """Mean rounded half up; 0 for no scores."""
    if not scores:
        return 0
    return int(math.floor(float(np.mean(scores)) + 0.5))


class GradingEngine:
    """
    Scores listings in sequential batches. Inside a batch, up to
    ``concurrency`` listings are graded in parallel per window and the whole
    window settles before the next one starts. A failing listing is counted
    and logged, never raised.
    """

    def __init__(self, grader: Optional[Grader], storage: Storage, tracker: RunTracker):
        self.grader = grader
        self.storage = storage
        self.tracker = tracker

    @property
    def model_name(self) -> str:
        return self.grader.model if self.grader is not None else "unconfigured"

    def score_listing(self, listing: Listing, instructions: str, dry_run: bool) -> GradeResult:
        """
        Get a validated verdict for one listing.

        Raises:
            GraderError: If the model call fails
            InvalidGradeResponse: If the answer does not validate
        """
        if dry_run:
            return DRY_RUN_RESULT.model_copy(deep=True)
        if self.grader is None:
            raise GraderError("No grader configured")

        raw = self.grader.score(instructions, build_item_prompt(listing))
        parsed = parse_grade_response(raw)
        if isinstance(parsed, InvalidGrade):
            raise InvalidGradeResponse(parsed.reason, parsed.raw)
        return parsed.result

    def grade_listing(
        self,
        listing: Listing,
        instructions: str,
        run_id: str,
        prompt_version: str,
        dry_run: bool = False,
    ) -> GradeResult:
        """Grade, persist and log one listing. Raises on any failure."""
        self.tracker.emit(run_id, EventType.GRADE_STARTED, listing.id, {"title": listing.title})

        result = self.score_listing(listing, instructions, dry_run)

        self.storage.insert_grade(GradeRow(
            listing_id=listing.id,
            prompt_version=prompt_version,
            score=result.score,
            grade=result.grade,
            rationale=result.rationale,
            flags=result.flags,
            model=DRY_RUN_MODEL if dry_run else self.model_name,
        ))

        self.tracker.emit(
            run_id,
            EventType.GRADE_COMPLETED,
            listing.id,
            {"score": result.score, "grade": result.grade},
        )
        return result

    def grade_in_batches(
        self,
        listings: list[Listing],
        criteria: GradingCriteria,
        feedback: FeedbackSample,
        options: GradingOptions,
        cancel: Optional[CancellationToken] = None,
    ) -> GradeStats:
        """Render the run's instructions once, then grade every listing."""
        instructions = build_instructions(
            criteria.criteria_prompt,
            feedback.disagreements,
            feedback.agreements,
        )
        return self.grade_batch(listings, instructions, options, cancel)

    def grade_batch(
        self,
        listings: list[Listing],
        instructions: str,
        options: GradingOptions,
        cancel: Optional[CancellationToken] = None,
    ) -> GradeStats:
        """
        Grade ``listings`` against a prepared instruction block.

        Args:
            listings: Stored listings, graded in this order batch by batch
            instructions: Output of build_instructions
            options: Batch size, concurrency, dry-run flag and run identity
            cancel: Checked before every batch and every window

        Returns:
            GradeStats for the work that was started; ``cancelled`` is set
            when the token stopped the loop early
        """
        cancel = cancel or CancellationToken()
        batches = chunk(listings, options.batch_size)
        graded = 0
        failed = 0
        scores: list[float] = []
        cancelled = False

        with ThreadPoolExecutor(
            max_workers=options.concurrency, thread_name_prefix="grader"
        ) as pool:
            for batch_num, batch in enumerate(batches, start=1):
                if cancel.cancelled:
                    cancelled = True
                    break
                logger.info(f"Grading batch {batch_num}/{len(batches)} ({len(batch)} listings)")

                for window in chunk(batch, options.concurrency):
                    if cancel.cancelled:
                        cancelled = True
                        break

                    futures = [
                        (
                            listing,
                            pool.submit(
                                self.grade_listing,
                                listing,
                                instructions,
                                options.run_id,
                                options.prompt_version,
                                options.dry_run,
                            ),
                        )
                        for listing in window
                    ]
                    wait([future for _, future in futures])

                    for listing, future in futures:
                        error = future.exception()
                        if error is None:
                            graded += 1
                            scores.append(future.result().score)
                            continue
                        failed += 1
                        logger.error(f"Grade failed for listing {listing.id}: {error}")
                        self.tracker.emit(
                            options.run_id,
                            EventType.GRADE_FAILED,
                            listing.id,
                            {"error": str(error)},
                        )

                if cancelled:
                    break

        stats = GradeStats(
            graded=graded,
            failed=failed,
            average_score=average_score(scores),
            cancelled=cancelled,
        )
        if cancelled:
            logger.info(f"Grading cancelled after {stats.attempted}/{len(listings)} listings")
        return stats
