"""
Tests for run lifecycle tracking.
"""
import pytest

from allstar.errors import RunAlreadyFinalizedError, StorageError
from allstar.models import EventType, RunStatus, RunUpdate
from allstar.pipeline.tracker import RunTracker


class TestRunTracker:
    """Tests for RunTracker."""

    def test_begin_creates_running_run(self, storage):
        run_id = RunTracker(storage).begin("v1", "alice")

        run = storage.runs[run_id]
        assert run.status == RunStatus.RUNNING
        assert run.triggered_by == "alice"
        assert run.finished_at is None

    def test_update_writes_only_set_fields(self, storage):
        tracker = RunTracker(storage)
        run_id = tracker.begin("v1")

        tracker.update(run_id, RunUpdate(listings_scraped=12))

        assert storage.runs[run_id].listings_scraped == 12
        assert storage.runs[run_id].average_score is None

    def test_update_rejects_terminal_status(self, storage):
        tracker = RunTracker(storage)
        run_id = tracker.begin("v1")

        with pytest.raises(ValueError):
            tracker.update(run_id, RunUpdate(status=RunStatus.COMPLETED))

    def test_finalize_once(self, storage):
        tracker = RunTracker(storage)
        run_id = tracker.begin("v1")

        tracker.finalize(run_id, RunStatus.COMPLETED, RunUpdate(listings_graded=3))

        run = storage.runs[run_id]
        assert run.status == RunStatus.COMPLETED
        assert run.finished_at is not None
        assert run.listings_graded == 3

        with pytest.raises(RunAlreadyFinalizedError):
            tracker.finalize(run_id, RunStatus.FAILED)
        assert storage.runs[run_id].status == RunStatus.COMPLETED

    def test_failed_finalize_can_be_retried(self, storage):
        tracker = RunTracker(storage)
        run_id = tracker.begin("v1")
        storage.fail_update_run = True

        with pytest.raises(StorageError):
            tracker.finalize(run_id, RunStatus.COMPLETED)

        storage.fail_update_run = False
        tracker.finalize(run_id, RunStatus.FAILED, RunUpdate(error_message="boom"))
        assert storage.runs[run_id].status == RunStatus.FAILED

    def test_finalize_needs_terminal_status(self, storage):
        tracker = RunTracker(storage)
        run_id = tracker.begin("v1")

        with pytest.raises(ValueError):
            tracker.finalize(run_id, RunStatus.RUNNING)

    def test_emit_appends_event(self, storage):
        tracker = RunTracker(storage)

        tracker.emit("run-9", EventType.GRADE_STARTED, "L1", {"title": "Lamp"})

        event = storage.events[0]
        assert event.run_id == "run-9"
        assert event.listing_id == "L1"
        assert event.payload == {"title": "Lamp"}

    def test_emit_swallows_storage_errors(self, storage, caplog):
        storage.fail_events = True

        RunTracker(storage).emit("run-9", EventType.RUN_COMPLETED)

        assert "Failed to log event run_completed" in caplog.text

    def test_event_time_is_timezone_aware(self, storage):
        RunTracker(storage).emit("run-9", EventType.RUN_COMPLETED)

        assert storage.events[0].created_at.tzinfo is not None

    def test_finalized_runs_are_bounded(self, storage):
        """Only the most recent finalized runs are remembered."""
        tracker = RunTracker(storage, max_tracked=3)
        run_ids = [tracker.begin("v1") for _ in range(5)]

        for run_id in run_ids:
            tracker.finalize(run_id, RunStatus.COMPLETED)

        assert len(tracker._finalized) == 3
        with pytest.raises(RunAlreadyFinalizedError):
            tracker.finalize(run_ids[-1], RunStatus.FAILED)
