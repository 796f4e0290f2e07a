"""
Run tracker - lifecycle record and append-only event log of one run.
"""
import logging
import threading
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Optional

from ..errors import RunAlreadyFinalizedError
from ..models.run import Event, EventType, RunStatus, RunUpdate
from ..storage.base import Storage


logger = logging.getLogger(__name__)

# Finalized run ids remembered for the double-finalize check
MAX_TRACKED_RUNS = 1000


class RunTracker:
    """
    Owns run records and their audit events.

    ``begin`` and ``update`` propagate storage failures; ``emit`` never does,
    because an unavailable audit log must not stop grading.
    """

    def __init__(self, storage: Storage, max_tracked: int = MAX_TRACKED_RUNS):
        self.storage = storage
        self.max_tracked = max_tracked
        self._finalized: OrderedDict[str, None] = OrderedDict()
        self._lock = threading.Lock()

    def begin(self, prompt_version: str, triggered_by: Optional[str] = None) -> str:
        """Create a run in ``running`` state and return its id."""
        run_id = self.storage.create_run(prompt_version, triggered_by)
        logger.info(f"Created run {run_id} (prompt version {prompt_version})")
        return run_id

    def update(self, run_id: str, update: RunUpdate) -> None:
        """Write non-terminal progress (counters) for a running run."""
        if update.status is not None and update.status != RunStatus.RUNNING:
            raise ValueError("Terminal status must be written with finalize()")
        fields = update.fields()
        if fields:
            self.storage.update_run(run_id, fields)

    def finalize(self, run_id: str, status: RunStatus, update: Optional[RunUpdate] = None) -> None:
        """
        Write the terminal status exactly once.

        Raises:
            RunAlreadyFinalizedError: If this run was finalized before
        """
        if status == RunStatus.RUNNING:
            raise ValueError("finalize() needs a terminal status")

        with self._lock:
            if run_id in self._finalized:
                raise RunAlreadyFinalizedError(run_id)
            self._finalized[run_id] = None
            while len(self._finalized) > self.max_tracked:
                self._finalized.popitem(last=False)

        fields = update.fields() if update else {}
        fields["status"] = status
        fields["finished_at"] = datetime.now(timezone.utc)
        try:
            self.storage.update_run(run_id, fields)
        except Exception:
            # Nothing was written; the failure path may still finalize
            with self._lock:
                self._finalized.pop(run_id, None)
            raise
        logger.info(f"Run {run_id} finalized as {status.value}")

    def emit(
        self,
        run_id: str,
        event_type: EventType,
        listing_id: Optional[str] = None,
        payload: Optional[dict[str, Any]] = None,
    ) -> None:
        """Append an audit event; failures are logged and swallowed."""
        event = Event(
            run_id=run_id,
            event_type=event_type,
            listing_id=listing_id,
            payload=payload or {},
        )
        try:
            self.storage.append_event(event)
        except Exception as e:
            logger.error(f"Failed to log event {event_type.value} for run {run_id}: {e}")
