"""SessionOrchestrator driving simple in-memory steps."""

import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from keyward.config import AppConfig
from keyward.errors import ConcurrentSessionError, Lockout, TransientFailure, UserCancelled
from keyward.interaction import AutoDecisions, AutoResponseHandler, ScriptedDecisions
from keyward.orchestrator import (
    RecoveryAction,
    RecoveryController,
    SessionOrchestrator,
    SessionStatus,
    Step,
    StepRegistry,
)
from keyward.state import Session, SessionLock, SessionStore, StateTracker


class FlakyStep(Step):
    """Fails a fixed number of times before succeeding."""

    def __init__(self, name, failures=0, *, critical=False, error=None):
        self.name = name
        self.critical = critical
        self.failures = failures
        self.error = error or TransientFailure(f"{name} not ready")
        self.calls = 0

    def run(self, ctx):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return {"calls": self.calls}


class InterruptingStep(Step):
    name = "interrupting"

    def run(self, ctx):
        raise KeyboardInterrupt


class OrchestratorTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.store = SessionStore(self.root / "wizard")
        self.interaction = AutoResponseHandler()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def build(self, steps, decisions, *, lock=True):
        registry = StepRegistry(steps)
        session = Session.new("demo", self.root, registry.names)
        self.store.save(session)
        tracker = StateTracker(session, self.store.save)
        recovery = RecoveryController(
            decisions, self.interaction, tracker, support_dir=self.root / "support", run_checks=lambda: []
        )
        orchestrator = SessionOrchestrator(
            registry,
            tracker,
            AppConfig(),
            self.interaction,
            recovery,
            lock=SessionLock(self.store.path_for(session.id)) if lock else None,
            resume_hint=f"keyward resume {session.id}",
        )
        return orchestrator, session

    def reload(self, session):
        return self.store.load(session.id)

    def test_runs_every_step_in_order(self) -> None:
        steps = [FlakyStep("one"), FlakyStep("two"), FlakyStep("three")]
        orchestrator, session = self.build(steps, ScriptedDecisions())

        result = orchestrator.run()

        self.assertEqual(result.status, SessionStatus.COMPLETED)
        saved = self.reload(session)
        self.assertTrue(saved.completed)
        self.assertEqual([saved.step_data(s.name) for s in steps], [{"calls": 1}] * 3)

    def test_retry_then_success(self) -> None:
        step = FlakyStep("flaky", failures=2)
        decisions = ScriptedDecisions([RecoveryAction.RETRY, RecoveryAction.RETRY])
        orchestrator, session = self.build([step], decisions)

        result = orchestrator.run()

        self.assertEqual(result.status, SessionStatus.COMPLETED)
        self.assertEqual(step.calls, 3)
        self.assertEqual(len(self.reload(session).errors), 2)

    def test_auto_decisions_stop_after_three_attempts(self) -> None:
        step = FlakyStep("stubborn", failures=10)
        orchestrator, session = self.build([step], AutoDecisions())

        result = orchestrator.run()

        self.assertEqual(result.status, SessionStatus.SAVED)
        self.assertEqual(step.calls, 3)
        self.assertIn("keyward resume", result.message)

    def test_skip_marks_optional_step_skipped(self) -> None:
        steps = [FlakyStep("optional", failures=1), FlakyStep("after")]
        orchestrator, session = self.build(steps, ScriptedDecisions([RecoveryAction.SKIP]))

        result = orchestrator.run()

        self.assertEqual(result.status, SessionStatus.COMPLETED)
        saved = self.reload(session)
        self.assertFalse(saved.is_completed("optional"))
        self.assertTrue(saved.is_resolved("optional"))
        self.assertTrue(saved.is_completed("after"))

    def test_cancel_leaves_later_steps_untouched(self) -> None:
        steps = [FlakyStep("first", failures=1, critical=True), FlakyStep("second")]
        orchestrator, session = self.build(steps, ScriptedDecisions([RecoveryAction.CANCEL]))

        result = orchestrator.run()

        self.assertEqual(result.status, SessionStatus.CANCELLED)
        self.assertEqual(result.exit_code, 1)
        self.assertEqual(steps[1].calls, 0)
        self.assertFalse(self.reload(session).completed)

    def test_completed_steps_are_not_rerun_on_resume(self) -> None:
        steps = [FlakyStep("one"), FlakyStep("two", failures=1)]
        orchestrator, session = self.build(steps, ScriptedDecisions([RecoveryAction.SAVE_AND_EXIT]))
        self.assertEqual(orchestrator.run().status, SessionStatus.SAVED)

        saved = self.reload(session)
        tracker = StateTracker(saved, self.store.save)
        registry = StepRegistry(steps)
        recovery = RecoveryController(ScriptedDecisions(), self.interaction, tracker, run_checks=lambda: [])
        result = SessionOrchestrator(registry, tracker, AppConfig(), self.interaction, recovery).run()

        self.assertEqual(result.status, SessionStatus.COMPLETED)
        self.assertEqual(steps[0].calls, 1)
        self.assertEqual(steps[1].calls, 2)

    def test_lockout_stops_without_asking(self) -> None:
        steps = [FlakyStep("reach", failures=1, error=Lockout("no way in"))]
        decisions = ScriptedDecisions()
        orchestrator, session = self.build(steps, decisions)

        result = orchestrator.run()

        self.assertEqual(result.status, SessionStatus.LOCKED_OUT)
        self.assertEqual(result.exit_code, 3)
        self.assertEqual(decisions.seen, [])
        self.assertEqual(self.reload(session).errors[-1].kind, "lockout")

    def test_user_cancel_inside_step(self) -> None:
        steps = [FlakyStep("ask", failures=1, error=UserCancelled("no"))]
        orchestrator, _ = self.build(steps, ScriptedDecisions())

        result = orchestrator.run()

        self.assertEqual(result.status, SessionStatus.CANCELLED)

    def test_interrupt_saves_and_releases_marker(self) -> None:
        orchestrator, session = self.build([FlakyStep("ok"), InterruptingStep()], ScriptedDecisions())

        result = orchestrator.run()

        self.assertEqual(result.status, SessionStatus.INTERRUPTED)
        self.assertEqual(result.exit_code, 130)
        saved = self.reload(session)
        self.assertTrue(saved.is_completed("ok"))
        self.assertEqual(saved.current_step, "interrupting")
        self.assertFalse(orchestrator.lock.path.exists())

    def test_second_live_run_is_refused(self) -> None:
        orchestrator, session = self.build([FlakyStep("one")], ScriptedDecisions())

        with SessionLock(self.store.path_for(session.id)):
            with self.assertRaises(ConcurrentSessionError):
                orchestrator.run()


if __name__ == "__main__":
    unittest.main()
