"""Build steps run by the StepRunner."""

from templatehub.upcloud.steps.base import Step, handle_error
from templatehub.upcloud.steps.create_server import StepCreateServer
from templatehub.upcloud.steps.group import ZoneTaskGroup
from templatehub.upcloud.steps.provision import StepConnect, StepProvision
from templatehub.upcloud.steps.ssh_key import StepCreateSSHKey
from templatehub.upcloud.steps.templatize import StepTemplatizeStorage

__all__ = [
    "Step",
    "handle_error",
    "ZoneTaskGroup",
    "StepCreateSSHKey",
    "StepCreateServer",
    "StepConnect",
    "StepProvision",
    "StepTemplatizeStorage",
]
