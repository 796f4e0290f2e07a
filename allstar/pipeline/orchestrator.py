"""
Pipeline orchestrator - scrape, store, select, load feedback, grade, finalize.
"""
import logging
from typing import Callable, Optional

from ..ai.llm_client import Grader, OpenAIGrader
from ..config import Config, PipelineConfig, get_config
from ..errors import ConfigurationError, RunFailureNotRecorded, StorageError, UnsupportedSourceError
from ..models.grading import AdHocGrade, GradeStats
from ..models.listing import Listing, ListingSource, ScrapedListing
from ..models.run import EventType, PipelineStage, RunStatus, RunUpdate
from ..normalization import detect_source
from ..sources.base import SourceAdapter
from ..sources.craigslist import CraigslistAdapter
from ..sources.ebay import EbayAdapter
from ..storage.base import Storage
from ..storage.mysql import MySQLStorage
from .dedup import Deduplicator
from .feedback import FeedbackLoader
from .grading import CancellationToken, GradingEngine, GradingOptions
from .prompts import build_instructions
from .tracker import RunTracker


logger = logging.getLogger(__name__)


class PipelineOrchestrator:
    """
    Runs one ingest-and-grade pass under a single run record.

    Source and storage failures fail the run and are re-raised. Listing-level
    grading failures only show up in ``listings_failed``.
    """

    def __init__(
        self,
        storage: Storage,
        sources: list[SourceAdapter],
        grader: Optional[Grader],
        config: Optional[PipelineConfig] = None,
    ):
        self.storage = storage
        self.sources = sources
        self.config = config or get_config().pipeline
        self.tracker = RunTracker(storage)
        self.deduplicator = Deduplicator(storage)
        self.feedback_loader = FeedbackLoader(
            storage,
            disagreement_limit=self.config.disagreement_limit,
            agreement_limit=self.config.agreement_limit,
        )
        self.engine = GradingEngine(grader, storage, self.tracker)
        self.stage = PipelineStage.CREATED

    def _enter(self, stage: PipelineStage) -> None:
        self.stage = stage
        logger.info(f"Stage: {stage.value}")

    # ==================== FULL RUN ====================

    def run(
        self,
        dry_run: bool = False,
        triggered_by: Optional[str] = None,
        cancel: Optional[CancellationToken] = None,
        on_started: Optional[Callable[[str], None]] = None,
    ) -> str:
        """
        Execute the whole pipeline.

        Args:
            dry_run: Grade with a fixed neutral verdict instead of the model
            triggered_by: Actor label stored on the run
            cancel: Stops grading from starting new work once set
            on_started: Called with the run id as soon as the run record exists

        Returns:
            The run id

        Raises:
            Whatever made the run fail, after the run is marked failed;
            RunFailureNotRecorded if it could not be marked failed.
        """
        cancel = cancel or CancellationToken()
        self._enter(PipelineStage.CREATED)
        logger.info(
            f"Allstar agent starting (dry_run={dry_run}, query={self.config.search_query!r}, "
            f"sources={[s.source.value for s in self.sources]})"
        )
        if not dry_run and self.engine.grader is None:
            raise ConfigurationError("A grader is required unless running dry")

        criteria = self.storage.get_active_criteria()
        logger.info(f"Using prompt version: {criteria.version}")
        run_id = self.tracker.begin(criteria.version, triggered_by)
        if on_started:
            on_started(run_id)

        try:
            self._enter(PipelineStage.SCRAPING)
            scraped = self._scrape(run_id)

            self._enter(PipelineStage.STORING)
            self._store(run_id, scraped)

            self._enter(PipelineStage.SELECTING)
            ungraded = self.storage.select_ungraded(criteria.version)
            logger.info(f"Found {len(ungraded)} ungraded listings for {criteria.version}")

            if not ungraded:
                logger.info("No ungraded listings - skipping grading")
                self._complete(run_id, len(scraped), None)
                return run_id

            if cancel.cancelled:
                logger.info("Cancelled before grading started")
                self._complete(run_id, len(scraped), GradeStats(cancelled=True))
                return run_id

            self._enter(PipelineStage.FEEDBACK_LOADING)
            feedback = self.feedback_loader.load()

            self._enter(PipelineStage.GRADING)
            options = GradingOptions(
                run_id=run_id,
                prompt_version=criteria.version,
                batch_size=self.config.batch_size,
                concurrency=self.config.concurrency,
                dry_run=dry_run,
            )
            logger.info(
                f"Starting grading (batch_size={options.batch_size}, "
                f"concurrency={options.concurrency})"
            )
            stats = self.engine.grade_in_batches(ungraded, criteria, feedback, options, cancel)
            logger.info(
                f"Grading complete: {stats.graded} graded, {stats.failed} failed "
                f"of {stats.attempted} attempted, avg score {stats.average_score}"
            )

            self._complete(run_id, len(scraped), stats)
            return run_id
        except Exception as error:
            self._fail(run_id, error)
            raise

    def _scrape(self, run_id: str) -> list[ScrapedListing]:
        query = self.config.search_query
        scraped: list[ScrapedListing] = []
        for adapter in self.sources:
            source = adapter.source.value
            self.tracker.emit(run_id, EventType.SCRAPE_STARTED, payload={"source": source, "query": query})
            result = adapter.search(query)
            logger.info(f"{source}: found {len(result.items)} listings")
            self.tracker.emit(
                run_id,
                EventType.SCRAPE_COMPLETED,
                payload={"source": source, "count": len(result.items), "url": result.url},
            )
            scraped.extend(result.items)
        return scraped

    def _store(self, run_id: str, scraped: list[ScrapedListing]) -> None:
        dedupe = self.deduplicator.filter_new(scraped)
        logger.info(f"Upserting {len(dedupe.unique)} listings ({dedupe.duplicates_skipped} duplicates skipped)")
        stored = self.storage.upsert_listings(dedupe.unique)
        self.tracker.emit(
            run_id,
            EventType.LISTINGS_STORED,
            payload={"count": len(stored), "duplicates_skipped": dedupe.duplicates_skipped},
        )
        self.tracker.update(run_id, RunUpdate(listings_scraped=len(scraped)))

    def _complete(self, run_id: str, scraped_count: int, stats: Optional[GradeStats]) -> None:
        """Finalize as completed. ``stats`` is None when there was nothing to grade."""
        self._enter(PipelineStage.FINALIZING)
        if stats is None:
            update = RunUpdate(listings_graded=0, listings_failed=0, average_score=None)
        else:
            update = RunUpdate(
                listings_graded=stats.graded,
                listings_failed=stats.failed,
                average_score=stats.average_score,
            )
        self.tracker.finalize(run_id, RunStatus.COMPLETED, update)

        summary = {
            "listings_scraped": scraped_count,
            "listings_graded": update.listings_graded,
            "listings_failed": update.listings_failed,
            "average_score": update.average_score,
        }
        if stats is not None and stats.cancelled:
            self.tracker.emit(run_id, EventType.RUN_CANCELLED, payload=summary)
        self.tracker.emit(run_id, EventType.RUN_COMPLETED, payload=summary)
        self._enter(PipelineStage.COMPLETED)
        logger.info(f"Run {run_id} completed")

    def _fail(self, run_id: str, error: BaseException) -> None:
        """
        Mark the run failed and log the failure event.

        Raises:
            RunFailureNotRecorded: If the failed status cannot be written
        """
        self._enter(PipelineStage.FAILED)
        message = str(error) or type(error).__name__
        logger.error(f"Run {run_id} failed: {message}")

        self.tracker.emit(run_id, EventType.RUN_FAILED, payload={"error": message})
        try:
            self.tracker.finalize(run_id, RunStatus.FAILED, RunUpdate(error_message=message))
        except Exception as recording_error:
            logger.error(f"Failed to record failure of run {run_id}: {recording_error}")
            raise RunFailureNotRecorded(run_id, error, recording_error) from error

    # ==================== AD-HOC & INSPECTION ====================

    def _adapter_for(self, source: ListingSource) -> SourceAdapter:
        for adapter in self.sources:
            if adapter.source == source:
                return adapter
        raise UnsupportedSourceError(f"Source {source.value} is not enabled")

    def grade_url(self, url: str, triggered_by: Optional[str] = None) -> AdHocGrade:
        """
        Fetch, store and grade one listing under its own one-item run.
        Always uses the model; there is no dry-run variant.
        """
        adapter = self._adapter_for(detect_source(url))
        if self.engine.grader is None:
            raise ConfigurationError("A grader is required to grade a URL")

        scraped = adapter.fetch_one(url)
        stored = self.storage.upsert_listings([scraped])
        if not stored:
            raise StorageError("Failed to store listing")
        listing_id = next((s.id for s in stored if s.url == scraped.link), stored[0].id)

        criteria = self.storage.get_active_criteria()
        feedback = self.feedback_loader.load()
        instructions = build_instructions(
            criteria.criteria_prompt, feedback.disagreements, feedback.agreements
        )

        run_id = self.tracker.begin(criteria.version, triggered_by)
        try:
            listing = Listing.from_scraped(listing_id, scraped)
            result = self.engine.grade_listing(listing, instructions, run_id, criteria.version)
            self.tracker.finalize(
                run_id,
                RunStatus.COMPLETED,
                RunUpdate(
                    listings_scraped=1,
                    listings_graded=1,
                    listings_failed=0,
                    average_score=result.score,
                ),
            )
            self.tracker.emit(
                run_id,
                EventType.RUN_COMPLETED,
                payload={
                    "listings_scraped": 1,
                    "listings_graded": 1,
                    "listings_failed": 0,
                    "average_score": result.score,
                    "manual": True,
                    "triggered_by": triggered_by,
                },
            )
        except Exception as error:
            self._fail(run_id, error)
            raise

        return AdHocGrade(
            listing_id=listing_id,
            run_id=run_id,
            title=scraped.title,
            price=scraped.price,
            image=scraped.image,
            source=scraped.source.value,
            link=scraped.link,
            grade=result.grade,
            score=result.score,
            rationale=result.rationale,
            flags=result.flags,
        )

    def get_stats(self) -> dict:
        criteria = self.storage.get_active_criteria()
        stats = self.storage.get_listing_stats(criteria.version)
        return {**stats, "prompt_version": criteria.version}

    def render_instructions(self) -> dict:
        """The instruction block a run started now would use."""
        criteria = self.storage.get_active_criteria()
        feedback = self.feedback_loader.load()
        prompt = build_instructions(
            criteria.criteria_prompt, feedback.disagreements, feedback.agreements
        )
        return {"prompt": prompt, "version": criteria.version}


def build_orchestrator(config: Optional[Config] = None) -> PipelineOrchestrator:
    """
    Wire the production collaborators from configuration.
    The grader is left out when no OpenAI key is set; dry runs still work.
    """
    config = config or get_config()
    sources: list[SourceAdapter] = [EbayAdapter(config.ebay)]
    if config.craigslist.enabled:
        sources.append(CraigslistAdapter(config.craigslist))

    grader: Optional[Grader] = None
    if config.openai.api_key:
        grader = OpenAIGrader(config.openai)
    else:
        logger.warning("No OpenAI API key configured - only dry runs are possible")

    return PipelineOrchestrator(
        storage=MySQLStorage(config.mysql),
        sources=sources,
        grader=grader,
        config=config.pipeline,
    )


def run_pipeline(dry_run: bool = False, triggered_by: Optional[str] = None) -> str:
    """Build the production pipeline and run it once."""
    return build_orchestrator().run(dry_run=dry_run, triggered_by=triggered_by)
