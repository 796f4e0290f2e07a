"""
Agent service - the single run slot and the administrative operations behind the HTTP surface.
"""
import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from .errors import NoActiveRunError, RunInProgressError
from .models.grading import AdHocGrade
from .pipeline.grading import CancellationToken
from .pipeline.orchestrator import PipelineOrchestrator


logger = logging.getLogger(__name__)


class ActiveRun:
    """Holder of the run slot. ``run_id`` is filled once the run record exists."""

    def __init__(self, dry_run: bool, triggered_by: Optional[str] = None):
        self.dry_run = dry_run
        self.triggered_by = triggered_by
        self.cancel = CancellationToken()
        self.run_id: Optional[str] = None
        self.started_at = datetime.now(timezone.utc)

    def on_started(self, run_id: str) -> None:
        self.run_id = run_id


class RunSlot:
    """Process-wide "one run at a time" flag with atomic test-and-set."""

    def __init__(self):
        self._flag = threading.Lock()
        self._current: Optional[ActiveRun] = None

    @property
    def current(self) -> Optional[ActiveRun]:
        return self._current

    def acquire(self, dry_run: bool = False, triggered_by: Optional[str] = None) -> ActiveRun:
        """
        Claim the slot.

        Raises:
            RunInProgressError: If another run holds it; the holder is untouched
        """
        if not self._flag.acquire(blocking=False):
            holder = self._current
            raise RunInProgressError(holder.run_id if holder else None)
        self._current = ActiveRun(dry_run, triggered_by)
        return self._current

    def release(self) -> None:
        self._current = None
        self._flag.release()


class AgentService:
    def __init__(self, orchestrator: PipelineOrchestrator, slot: Optional[RunSlot] = None):
        self.orchestrator = orchestrator
        self.slot = slot or RunSlot()
        self.last_run_id: Optional[str] = None
        self._thread: Optional[threading.Thread] = None

    def trigger(self, dry_run: bool = False, triggered_by: Optional[str] = None) -> ActiveRun:
        """
        Start a run in the background and return immediately.

        Raises:
            RunInProgressError: If a run is already active
        """
        active = self.slot.acquire(dry_run, triggered_by)
        logger.info(f"Run triggered (dry_run={dry_run}, triggered_by={triggered_by})")

        self._thread = threading.Thread(
            target=self._run, args=(active,), name="allstar-run", daemon=True
        )
        self._thread.start()
        return active

    def _run(self, active: ActiveRun) -> None:
        try:
            self.orchestrator.run(
                dry_run=active.dry_run,
                triggered_by=active.triggered_by,
                cancel=active.cancel,
                on_started=active.on_started,
            )
        except Exception as e:
            logger.error(f"Pipeline error: {e}")
        finally:
            if active.run_id:
                self.last_run_id = active.run_id
            self.slot.release()

    def join(self, timeout: Optional[float] = None) -> None:
        """Wait for the background run, if any."""
        if self._thread is not None:
            self._thread.join(timeout)

    def cancel(self) -> None:
        """
        Signal the active run to stop starting new work.

        Raises:
            NoActiveRunError: If no run is active
        """
        active = self.slot.current
        if active is None:
            raise NoActiveRunError()
        active.cancel.cancel()
        logger.info(f"Stop signal sent to run {active.run_id}")

    def status(self) -> dict:
        active = self.slot.current
        return {
            "is_running": active is not None,
            "current_run_id": active.run_id if active else None,
            "last_run_id": self.last_run_id,
            "dry_run": active.dry_run if active else None,
            "started_at": active.started_at.isoformat() if active else None,
        }

    def grade_url(self, url: str, triggered_by: Optional[str] = None) -> AdHocGrade:
        return self.orchestrator.grade_url(url, triggered_by)

    def stats(self) -> dict:
        return self.orchestrator.get_stats()

    def system_prompt(self) -> dict:
        return self.orchestrator.render_instructions()
