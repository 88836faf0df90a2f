"""Shared state of a single template build."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional

from templatehub.upcloud.config import BuilderConfig
from templatehub.upcloud.types import ZoneSlot
from templatehub.upcloud.ui import Ui

if TYPE_CHECKING:
    from templatehub.upcloud.api import UpCloudClient
    from templatehub.upcloud.ssh import SSHClient

logger = logging.getLogger(__name__)


@dataclass
class RunContext:
    """
    State read and written by the steps of one build.

    ``slots`` and ``ssh_sessions`` are pre-sized to the zone list; the task
    handling zone ``i`` is the only writer of index ``i``.
    """

    config: BuilderConfig
    client: UpCloudClient
    ui: Ui
    slots: List[ZoneSlot] = field(init=False)
    ssh_sessions: List[Optional[SSHClient]] = field(init=False)
    ssh_public_key: str = ""
    ssh_private_key: str = ""
    templatize_success: bool = False
    cancel_event: threading.Event = field(default_factory=threading.Event)
    _error: Optional[BaseException] = field(default=None, init=False, repr=False)
    _error_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        self.slots = [ZoneSlot(zone=zone) for zone in self.config.zones]
        self.ssh_sessions = [None] * len(self.config.zones)

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    def record_error(self, error: BaseException) -> bool:
        """
        Store ``error`` as the build error unless one is already stored.

        Returns:
            True if ``error`` became the build error.
        """
        with self._error_lock:
            if self._error is not None:
                logger.debug("Build error already recorded, ignoring: %s", error)
                return False
            self._error = error
            return True

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()
