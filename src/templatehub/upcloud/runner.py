"""Sequential step runner with reverse-order cleanup."""
from __future__ import annotations

import logging
import threading
from typing import List, Optional, Sequence

from templatehub.upcloud.errors import BuildCancelled
from templatehub.upcloud.state import RunContext
from templatehub.upcloud.steps.base import Step
from templatehub.upcloud.types import StepAction

logger = logging.getLogger(__name__)


class StepRunner:
    """Runs steps in order until one halts, then cleans up every started step in reverse."""

    def __init__(self, steps: Sequence[Step]) -> None:
        self.steps = list(steps)
        self._cancel_requested = threading.Event()
        self._ctx: Optional[RunContext] = None

    def run(self, ctx: RunContext) -> None:
        """
        Execute the pipeline against ``ctx``.

        The outcome is in ``ctx.error``: None when every step completed.
        """
        self._ctx = ctx
        if self._cancel_requested.is_set():
            ctx.cancel_event.set()

        started: List[Step] = []
        try:
            for step in self.steps:
                if ctx.cancelled:
                    logger.info("Build cancelled, not starting step %s", step.name)
                    ctx.record_error(BuildCancelled("build cancelled"))
                    break

                started.append(step)
                logger.debug("Running step %s", step.name)
                try:
                    action = step.run(ctx)
                except Exception as exc:
                    logger.debug("Step %s raised an unexpected error", step.name, exc_info=True)
                    if ctx.record_error(exc):
                        ctx.ui.error(str(exc))
                    action = StepAction.HALT

                if action is StepAction.HALT or ctx.error is not None:
                    logger.info("Step %s halted the build", step.name)
                    break
        finally:
            self._cleanup(ctx, started)

    def cancel(self) -> None:
        """Stop starting new steps and abort the per-zone work in flight."""
        logger.info("Cancelling the step runner ...")
        self._cancel_requested.set()
        if self._ctx is not None:
            self._ctx.cancel_event.set()

    @staticmethod
    def _cleanup(ctx: RunContext, started: List[Step]) -> None:
        for step in reversed(started):
            logger.debug("Cleaning up step %s", step.name)
            try:
                step.cleanup(ctx)
            except Exception as exc:
                logger.debug("Cleanup of step %s failed", step.name, exc_info=True)
                ctx.ui.error(f"Cleanup of step {step.name} failed: {exc}")
