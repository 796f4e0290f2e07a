"""
Shared fixtures: in-memory storage, scripted grader and canned sources.
"""
import itertools
import json
import threading
import time
from datetime import datetime, timezone
from typing import Optional

import pytest
from pydantic import BaseModel

from allstar.config import PipelineConfig
from allstar.errors import SourceError, StorageError
from allstar.models import (
    Event,
    Feedback,
    GradeRow,
    GradingCriteria,
    Listing,
    ListingSource,
    RunStatus,
    ScrapedListing,
    SearchResult,
    StoredListing,
    Verdict,
)


class RunRecord(BaseModel):
    """An agent_runs row as the in-memory storage keeps it."""
    id: str
    status: RunStatus = RunStatus.RUNNING
    prompt_version: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    listings_scraped: int = 0
    listings_graded: int = 0
    listings_failed: int = 0
    average_score: Optional[float] = None
    error_message: Optional[str] = None
    triggered_by: Optional[str] = None


class FakeStorage:
    """Dict-backed Storage. Toggle the ``fail_*`` attributes to inject errors."""

    def __init__(self, criteria=None):
        self.criteria = criteria or GradingCriteria(version="v1", criteria_prompt="Grade headlights.")
        self.listings: dict[str, Listing] = {}
        self.urls: dict[str, str] = {}
        self.grades: list[GradeRow] = []
        self.runs: dict[str, RunRecord] = {}
        self.events: list[Event] = []
        self.feedback = {Verdict.DISAGREE: [], Verdict.AGREE: []}
        self.fail_identities = False
        self.fail_upsert = False
        self.fail_events = False
        self.fail_feedback = False
        self.fail_update_run = False
        self.fail_insert_grade_for: set[str] = set()
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def get_active_criteria(self):
        return self.criteria

    def find_existing_identities(self, identities):
        if self.fail_identities:
            raise StorageError("identity lookup down")
        known = {
            (l.source.value, l.external_id) for l in self.listings.values() if l.external_id
        }
        return {identity for identity in identities if identity in known}

    def upsert_listings(self, items: list[ScrapedListing]):
        if self.fail_upsert:
            raise StorageError("upsert failed")
        stored = []
        for item in items:
            if not item.link:
                continue
            listing_id = self.urls.get(item.link) or f"L{next(self._ids)}"
            self.urls[item.link] = listing_id
            self.listings[listing_id] = Listing.from_scraped(listing_id, item)
            stored.append(StoredListing(id=listing_id, url=item.link))
        return stored

    def select_ungraded(self, prompt_version):
        graded = {g.listing_id for g in self.grades if g.prompt_version == prompt_version}
        return [l for l in self.listings.values() if l.id not in graded]

    def insert_grade(self, row: GradeRow):
        if row.listing_id in self.fail_insert_grade_for:
            raise StorageError(f"insert failed for {row.listing_id}")
        with self._lock:
            self.grades.append(row)

    def create_run(self, prompt_version, triggered_by=None):
        run_id = f"run-{len(self.runs) + 1}"
        self.runs[run_id] = RunRecord(
            id=run_id,
            prompt_version=prompt_version,
            started_at=datetime.now(timezone.utc),
            triggered_by=triggered_by,
        )
        return run_id

    def update_run(self, run_id, fields):
        if self.fail_update_run:
            raise StorageError("run update failed")
        self.runs[run_id] = self.runs[run_id].model_copy(update=fields)

    def append_event(self, event: Event):
        if self.fail_events:
            raise StorageError("event log down")
        with self._lock:
            self.events.append(event)

    def load_feedback(self, verdict, limit):
        if self.fail_feedback:
            raise StorageError("feedback unavailable")
        return self.feedback[verdict][:limit]

    def get_listing_stats(self, prompt_version):
        total = len(self.listings)
        graded = len({g.listing_id for g in self.grades if g.prompt_version == prompt_version})
        return {"total": total, "graded": graded, "ungraded": total - graded}

    # helpers

    def event_types(self, run_id=None):
        return [
            e.event_type.value for e in self.events if run_id is None or e.run_id == run_id
        ]


class FakeGrader:
    """
    Grader returning scripted answers keyed by listing title.

    Tracks how many calls overlap so tests can check the concurrency bound.
    """

    model = "fake-model"

    def __init__(self, responses=None, default_score=80, delay=0.0):
        self.responses = responses or {}
        self.default_score = default_score
        self.delay = delay
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def score(self, instructions, item_prompt):
        title = item_prompt.split("Title: ", 1)[1].split("\n", 1)[0]
        with self._lock:
            self.calls.append(title)
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            answer = self.responses.get(title)
            if isinstance(answer, Exception):
                raise answer
            if answer is None:
                answer = json.dumps({
                    "score": self.default_score,
                    "grade": "B",
                    "rationale": "Looks fine",
                    "flags": [],
                })
            return answer
        finally:
            with self._lock:
                self.in_flight -= 1


class FakeSource:
    """Source adapter returning canned listings, or raising SourceError."""

    def __init__(self, source=ListingSource.EBAY, items=None, error=None, single=None):
        self.source = source
        self.items = items or []
        self.error = error
        self.single = single
        self.queries: list[str] = []

    def search(self, query):
        self.queries.append(query)
        if self.error:
            raise SourceError(self.source.value, self.error)
        return SearchResult(items=list(self.items), url=f"https://{self.source.value}.test/search?q={query}")

    def fetch_one(self, url):
        if self.error:
            raise SourceError(self.source.value, self.error)
        return self.single


def make_scraped(n, source=ListingSource.EBAY, **overrides):
    data = {
        "title": f"Headlight {n}",
        "price": f"${n * 10}",
        "link": f"https://www.{source.value}.test/itm/{n}",
        "image": f"https://img.test/{n}.jpg",
        "source": source,
        "external_id": str(n),
    }
    data.update(overrides)
    return ScrapedListing(**data)


def make_listing(n, **overrides):
    data = {
        "id": f"L{n}",
        "title": f"Headlight {n}",
        "price": f"${n * 10}",
        "link": f"https://www.ebay.test/itm/{n}",
        "source": ListingSource.EBAY,
        "external_id": str(n),
    }
    data.update(overrides)
    return Listing(**data)


def make_feedback(title, score=70, grade="C", adjusted=None, notes=None):
    return Feedback(listing_title=title, score=score, grade=grade, adjusted_score=adjusted, notes=notes)


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def grader():
    return FakeGrader()


@pytest.fixture
def pipeline_config():
    return PipelineConfig(search_query="headlight", batch_size=2, concurrency=2)
