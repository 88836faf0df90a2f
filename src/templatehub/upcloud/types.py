"""Type definitions for UpCloud template builds."""

import enum
from dataclasses import dataclass
from typing import Optional

from templatehub.upcloud.api import ServerDetails, StorageDetails


class StepAction(enum.Enum):
    """Outcome of a step's run: keep going or stop and unwind."""

    CONTINUE = "continue"
    HALT = "halt"


@dataclass(slots=True)
class ZoneSlot:
    """Resources created for one zone. Only the task owning the slot writes to it."""

    zone: str
    server: Optional[ServerDetails] = None
    template: Optional[StorageDetails] = None


@dataclass(frozen=True, slots=True)
class TemplateRecord:
    """A finished template in one zone."""

    zone: str
    uuid: str
    title: str
