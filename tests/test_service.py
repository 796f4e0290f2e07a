"""
Tests for the run slot and the background trigger.
"""
import threading
from unittest.mock import MagicMock

import pytest

from allstar.errors import NoActiveRunError, RunInProgressError
from allstar.service import AgentService, RunSlot


class BlockingOrchestrator:
    """Orchestrator stand-in whose run waits until released."""

    def __init__(self, fail=False):
        self.started = threading.Event()
        self.release = threading.Event()
        self.fail = fail
        self.calls = []

    def run(self, dry_run=False, triggered_by=None, cancel=None, on_started=None):
        self.calls.append({"dry_run": dry_run, "triggered_by": triggered_by, "cancel": cancel})
        on_started("run-1")
        self.started.set()
        self.release.wait(5)
        if self.fail:
            raise RuntimeError("boom")
        return "run-1"


class TestRunSlot:
    """Tests for RunSlot."""

    def test_second_acquire_is_rejected(self):
        slot = RunSlot()
        first = slot.acquire(dry_run=True)
        first.on_started("run-a")

        with pytest.raises(RunInProgressError) as excinfo:
            slot.acquire()

        assert excinfo.value.current_run_id == "run-a"
        assert slot.current is first

    def test_release_frees_slot(self):
        slot = RunSlot()
        slot.acquire()
        slot.release()

        assert slot.current is None
        assert slot.acquire() is slot.current


class TestAgentService:
    """Tests for AgentService."""

    def test_trigger_runs_in_background(self):
        orchestrator = BlockingOrchestrator()
        service = AgentService(orchestrator)

        service.trigger(dry_run=True, triggered_by="alice")
        assert orchestrator.started.wait(5)

        status = service.status()
        assert status["is_running"] is True
        assert status["current_run_id"] == "run-1"
        assert status["dry_run"] is True

        orchestrator.release.set()
        service.join(5)

        status = service.status()
        assert status["is_running"] is False
        assert status["last_run_id"] == "run-1"
        assert orchestrator.calls[0]["triggered_by"] == "alice"

    def test_conflicting_trigger_keeps_active_run(self):
        orchestrator = BlockingOrchestrator()
        service = AgentService(orchestrator)
        active = service.trigger()
        orchestrator.started.wait(5)

        with pytest.raises(RunInProgressError):
            service.trigger()

        assert service.slot.current is active
        assert len(orchestrator.calls) == 1
        orchestrator.release.set()
        service.join(5)

    def test_slot_released_after_failure(self):
        orchestrator = BlockingOrchestrator(fail=True)
        orchestrator.release.set()
        service = AgentService(orchestrator)

        service.trigger()
        service.join(5)

        assert service.status()["is_running"] is False
        service.trigger()
        service.join(5)

    def test_cancel_sets_token(self):
        orchestrator = BlockingOrchestrator()
        service = AgentService(orchestrator)
        service.trigger()
        orchestrator.started.wait(5)

        service.cancel()

        assert orchestrator.calls[0]["cancel"].cancelled
        orchestrator.release.set()
        service.join(5)

    def test_cancel_without_run(self):
        with pytest.raises(NoActiveRunError):
            AgentService(MagicMock()).cancel()

    def test_delegates_inspection(self):
        orchestrator = MagicMock()
        orchestrator.get_stats.return_value = {"total": 1}
        orchestrator.render_instructions.return_value = {"prompt": "p", "version": "v1"}
        service = AgentService(orchestrator)

        assert service.stats() == {"total": 1}
        assert service.system_prompt()["version"] == "v1"
        service.grade_url("https://www.ebay.com/itm/1", "bob")
        orchestrator.grade_url.assert_called_once_with("https://www.ebay.com/itm/1", "bob")
