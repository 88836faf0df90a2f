"""UpCloud integration for building private storage templates across zones."""

from templatehub.upcloud.api import ServerDetails, StorageDetails, UpCloudClient
from templatehub.upcloud.artifact import BUILDER_ID, Artifact
from templatehub.upcloud.builder import Builder
from templatehub.upcloud.config import BuilderConfig, load_builder_config
from templatehub.upcloud.errors import (
    BuildCancelled,
    NoDiskError,
    OperationCancelled,
    ProvisionError,
    StateTimeoutError,
    StepTimeoutError,
    TemplateBuildError,
    UpCloudApiError,
    ValidationError,
    ZoneError,
)
from templatehub.upcloud.runner import StepRunner
from templatehub.upcloud.state import RunContext
from templatehub.upcloud.types import StepAction, TemplateRecord, ZoneSlot
from templatehub.upcloud.ui import LoggingUi, Ui

__all__ = [
    "UpCloudClient",
    "ServerDetails",
    "StorageDetails",
    "Artifact",
    "BUILDER_ID",
    "Builder",
    "BuilderConfig",
    "load_builder_config",
    "RunContext",
    "StepRunner",
    "StepAction",
    "TemplateRecord",
    "ZoneSlot",
    "Ui",
    "LoggingUi",
    "TemplateBuildError",
    "ValidationError",
    "UpCloudApiError",
    "StateTimeoutError",
    "StepTimeoutError",
    "OperationCancelled",
    "BuildCancelled",
    "NoDiskError",
    "ProvisionError",
    "ZoneError",
]
