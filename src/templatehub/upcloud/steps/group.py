"""Per-zone fan-out used by the build steps."""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, List, Optional, Sequence

from templatehub.upcloud.errors import BuildCancelled, StepTimeoutError, ZoneError

logger = logging.getLogger(__name__)

ZoneTask = Callable[[int, str, threading.Event], None]


class ZoneTaskGroup:
    """
    Runs one task per zone on its own thread and joins all of them.

    Every task receives its zone index, the zone name and the group's cancel
    event, which it must pass to every blocking wait. The event is set when a
    task fails (fail-fast mode only), when ``parent`` is set or when the group
    deadline passes. The group always waits for every task to return, so
    callers can read the per-zone results as soon as ``run``/``run_all`` returns.
    """

    def __init__(
        self,
        zones: Sequence[str],
        timeout: float,
        parent: Optional[threading.Event] = None,
        join_interval: float = 0.2,
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self.zones = list(zones)
        self.timeout = timeout
        self.parent = parent
        self.join_interval = join_interval
        self.cancel_event = threading.Event()

    def run(self, task: ZoneTask) -> None:
        """
        Run ``task`` for every zone, cancelling the siblings on the first failure.

        Raises:
            ZoneError: For the first task failure observed.
            BuildCancelled: If ``parent`` was set before any task failed.
            StepTimeoutError: If the group deadline passed before any task failed.
        """
        errors = self._execute(task, fail_fast=True)
        if errors:
            raise errors[0]

    def run_all(self, task: ZoneTask) -> List[Exception]:
        """Run ``task`` for every zone without cancelling siblings; return every failure."""
        return self._execute(task, fail_fast=False)

    def _execute(self, task: ZoneTask, fail_fast: bool) -> List[Exception]:
        if not self.zones:
            return []

        deadline = time.monotonic() + self.timeout
        errors: List[Exception] = []
        with ThreadPoolExecutor(max_workers=len(self.zones), thread_name_prefix="zone") as executor:
            futures: Dict[Future, int] = {
                executor.submit(task, index, zone, self.cancel_event): index
                for index, zone in enumerate(self.zones)
            }
            pending = set(futures)
            while pending:
                done, pending = wait(pending, timeout=self.join_interval, return_when=FIRST_COMPLETED)
                for future in sorted(done, key=futures.get):
                    exc = future.exception()
                    if exc is None:
                        continue
                    zone = self.zones[futures[future]]
                    error = exc if isinstance(exc, ZoneError) else ZoneError(zone, exc)
                    if errors and self.cancel_event.is_set():
                        logger.debug("Ignoring failure after cancellation: %s", error)
                        continue
                    errors.append(error)
                    if fail_fast:
                        logger.debug("Cancelling remaining zone tasks after: %s", error)
                        self.cancel_event.set()

                if not pending or self.cancel_event.is_set():
                    continue
                if self.parent is not None and self.parent.is_set():
                    errors.append(BuildCancelled("build cancelled"))
                    self.cancel_event.set()
                elif time.monotonic() >= deadline:
                    errors.append(StepTimeoutError(f"zone tasks did not finish within {self.timeout:g}s"))
                    self.cancel_event.set()
        return errors
