"""Progress output for template builds."""
import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class Ui(Protocol):
    """Sink for human-readable progress and error messages."""

    def say(self, message: str) -> None:
        ...

    def error(self, message: str) -> None:
        ...


class LoggingUi:
    """Ui that forwards every message to the ``templatehub.upcloud.ui`` logger."""

    def __init__(self, log: logging.Logger = logger) -> None:
        self.log = log

    def say(self, message: str) -> None:
        self.log.info(message)

    def error(self, message: str) -> None:
        self.log.error(message)
