"""Base class shared by every build step."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from templatehub.upcloud.state import RunContext
from templatehub.upcloud.types import StepAction

logger = logging.getLogger(__name__)


class Step(ABC):
    """
    A unit of the build pipeline.

    ``cleanup`` is called for every step whose ``run`` started, in reverse
    order, whether the build succeeded or not. Steps decide for themselves
    whether there is anything to tear down.
    """

    name = "step"

    @abstractmethod
    def run(self, ctx: RunContext) -> StepAction:
        """Perform the step; return HALT after recording an error in ``ctx``."""

    def cleanup(self, ctx: RunContext) -> None:
        """Undo whatever ``run`` created. Must not raise for teardown failures."""


def handle_error(ctx: RunContext, error: BaseException) -> StepAction:
    """Record ``error`` as the build error, report it and halt."""
    logger.debug("Halting the build: %r", error)
    if ctx.record_error(error):
        ctx.ui.error(str(error))
    return StepAction.HALT
