"""Error types raised while building UpCloud storage templates."""
from __future__ import annotations

from typing import Optional


class TemplateBuildError(RuntimeError):
    """Base class for every failure raised by the template builder."""


class ValidationError(TemplateBuildError):
    """Raised when the build configuration or the source storage is unusable."""


class UpCloudApiError(TemplateBuildError):
    """Raised when an UpCloud API call fails."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class StateTimeoutError(TemplateBuildError):
    """Raised when a resource does not reach the awaited state in time."""


class StepTimeoutError(TemplateBuildError):
    """Raised when the tasks of a step exceed the step deadline."""


class OperationCancelled(TemplateBuildError):
    """Raised inside a task when its task group or the build was cancelled."""


class BuildCancelled(OperationCancelled):
    """Recorded when the build is cancelled before all steps could run."""


class NoDiskError(TemplateBuildError):
    """Raised when a server has no disk device that could be templatized."""


class ProvisionError(TemplateBuildError):
    """Raised when a provisioning command exits with a non-zero status."""


class ZoneError(TemplateBuildError):
    """Wraps the failure of a single per-zone task."""

    def __init__(self, zone: str, cause: BaseException) -> None:
        super().__init__(f'zone "{zone}": {cause}')
        self.zone = zone
        self.cause = cause
