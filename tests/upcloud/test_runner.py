import logging

import pytest

from templatehub.upcloud.errors import BuildCancelled, TemplateBuildError
from templatehub.upcloud.runner import StepRunner
from templatehub.upcloud.steps import Step, handle_error
from templatehub.upcloud.types import StepAction
from templatehub.upcloud.ui import LoggingUi


class RecordingStep(Step):
    """Step that appends its run/cleanup calls to a shared journal."""

    def __init__(self, name, journal, fail=None, raise_exc=None, cleanup_exc=None, on_run=None):
        self.name = name
        self.journal = journal
        self.fail = fail
        self.raise_exc = raise_exc
        self.cleanup_exc = cleanup_exc
        self.on_run = on_run

    def run(self, ctx):
        self.journal.append(f"run:{self.name}")
        if self.on_run is not None:
            self.on_run()
        if self.raise_exc is not None:
            raise self.raise_exc
        if self.fail is not None:
            return handle_error(ctx, self.fail)
        return StepAction.CONTINUE

    def cleanup(self, ctx):
        self.journal.append(f"cleanup:{self.name}")
        if self.cleanup_exc is not None:
            raise self.cleanup_exc


class TestStepRunner:
    """Test cases for StepRunner."""

    def test_runs_in_order_and_cleans_up_in_reverse(self, make_ctx):
        """All steps run, then every step is cleaned up last-first."""
        journal = []
        ctx = make_ctx()
        steps = [RecordingStep(name, journal) for name in ("a", "b", "c")]

        StepRunner(steps).run(ctx)

        assert ctx.error is None
        assert journal == ["run:a", "run:b", "run:c", "cleanup:c", "cleanup:b", "cleanup:a"]

    def test_halt_skips_remaining_steps(self, make_ctx, ui):
        """A halting step stops the pipeline; only started steps are cleaned up."""
        journal = []
        ctx = make_ctx()
        failure = TemplateBuildError("server creation failed")
        steps = [
            RecordingStep("a", journal),
            RecordingStep("b", journal, fail=failure),
            RecordingStep("c", journal),
        ]

        StepRunner(steps).run(ctx)

        assert ctx.error is failure
        assert journal == ["run:a", "run:b", "cleanup:b", "cleanup:a"]
        assert ui.errors == ["server creation failed"]

    def test_unexpected_exception_is_recorded(self, make_ctx):
        """An exception escaping a step becomes the build error."""
        journal = []
        ctx = make_ctx()
        boom = KeyError("uuid")
        steps = [RecordingStep("a", journal, raise_exc=boom), RecordingStep("b", journal)]

        StepRunner(steps).run(ctx)

        assert ctx.error is boom
        assert journal == ["run:a", "cleanup:a"]

    def test_cleanup_failure_does_not_stop_cleanup(self, make_ctx, ui):
        """A failing cleanup is reported and the remaining cleanups still run."""
        journal = []
        ctx = make_ctx()
        steps = [
            RecordingStep("a", journal),
            RecordingStep("b", journal, cleanup_exc=RuntimeError("delete failed")),
        ]

        StepRunner(steps).run(ctx)

        assert ctx.error is None
        assert journal == ["run:a", "run:b", "cleanup:b", "cleanup:a"]
        assert any("delete failed" in message for message in ui.errors)

    def test_cleanup_failure_keeps_first_error(self, make_ctx):
        """Cleanup failures never replace the recorded build error."""
        journal = []
        ctx = make_ctx()
        failure = TemplateBuildError("templatize failed")
        steps = [
            RecordingStep("a", journal, cleanup_exc=RuntimeError("delete failed")),
            RecordingStep("b", journal, fail=failure),
        ]

        StepRunner(steps).run(ctx)

        assert ctx.error is failure

    def test_cancel_before_run(self, make_ctx):
        """A runner cancelled before it starts runs no steps and records the cancellation."""
        journal = []
        ctx = make_ctx()
        runner = StepRunner([RecordingStep("a", journal)])

        runner.cancel()
        runner.run(ctx)

        assert journal == []
        assert isinstance(ctx.error, BuildCancelled)
        assert ctx.cancelled

    def test_cancel_between_steps(self, make_ctx):
        """Cancelling during a step prevents the next step from starting."""
        journal = []
        ctx = make_ctx()
        runner = StepRunner([])
        runner.steps = [
            RecordingStep("a", journal, on_run=runner.cancel),
            RecordingStep("b", journal),
        ]

        runner.run(ctx)

        assert journal == ["run:a", "cleanup:a"]
        assert isinstance(ctx.error, BuildCancelled)

    def test_cleanup_runs_on_keyboard_interrupt(self, make_ctx):
        """Cleanup still runs when the run is interrupted."""
        journal = []
        ctx = make_ctx()
        steps = [RecordingStep("a", journal), RecordingStep("b", journal, raise_exc=KeyboardInterrupt())]

        with pytest.raises(KeyboardInterrupt):
            StepRunner(steps).run(ctx)

        assert journal == ["run:a", "run:b", "cleanup:b", "cleanup:a"]


class TestHandleError:
    """Test cases for handle_error."""

    def test_error_logged_once(self, make_ctx, caplog):
        """A halting error reaches the log once, through the Ui."""
        ctx = make_ctx()
        ctx.ui = LoggingUi()
        caplog.set_level(logging.DEBUG)

        action = handle_error(ctx, TemplateBuildError("quota exceeded"))

        assert action is StepAction.HALT
        errors = [record for record in caplog.records if record.levelno >= logging.ERROR]
        assert [record.getMessage() for record in errors] == ["quota exceeded"]

    def test_only_first_error_reported(self, make_ctx, ui):
        """Later errors are not reported once an error is recorded."""
        ctx = make_ctx()
        first = TemplateBuildError("first")

        handle_error(ctx, first)
        handle_error(ctx, TemplateBuildError("second"))

        assert ctx.error is first
        assert ui.errors == ["first"]
