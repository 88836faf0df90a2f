"""Template builder: create servers -> provision -> templatize -> cleanup."""
from __future__ import annotations

import logging
import threading
from typing import List, Optional

from templatehub.upcloud.api import STORAGE_TYPE_TEMPLATE, UpCloudClient
from templatehub.upcloud.artifact import Artifact
from templatehub.upcloud.config import BuilderConfig
from templatehub.upcloud.errors import TemplateBuildError, ValidationError
from templatehub.upcloud.runner import StepRunner
from templatehub.upcloud.state import RunContext
from templatehub.upcloud.steps import (
    Step,
    StepConnect,
    StepCreateServer,
    StepCreateSSHKey,
    StepProvision,
    StepTemplatizeStorage,
)
from templatehub.upcloud.types import TemplateRecord
from templatehub.upcloud.ui import LoggingUi, Ui

logger = logging.getLogger(__name__)


class Builder:
    """Builds one private template per configured zone from a source template."""

    def __init__(
        self,
        config: BuilderConfig,
        client: Optional[UpCloudClient] = None,
        ui: Optional[Ui] = None,
    ) -> None:
        """
        Initialize the builder.

        Args:
            config: Build configuration. Required.
            client: UpCloud client. If None, one is created from the config credentials.
            ui: Progress sink. If None, messages go to the log.
        """
        self.config = config
        self.client = client or UpCloudClient(
            config.username,
            config.password,
            poll_interval=config.poll_interval,
        )
        self.ui = ui or LoggingUi()
        self.runner: Optional[StepRunner] = None
        self._cancel_event = threading.Event()

    def prepare(self) -> None:
        """
        Check the configuration, the credentials and the source storage.

        Nothing is created here, so there is nothing to clean up on failure.

        Raises:
            ValidationError: If the config is invalid or the source is not a template.
            UpCloudApiError: If the credentials are rejected or the source lookup fails.
        """
        self.config.validate()
        self.client.get_account()

        storage = self.client.get_storage_details(self.config.storage_uuid)
        if storage.type != STORAGE_TYPE_TEMPLATE:
            raise ValidationError(f'The specified storage UUID is of invalid type "{storage.type}"')

    def steps(self) -> List[Step]:
        steps: List[Step] = [
            StepCreateSSHKey(debug_key_path=self.config.debug_key_path),
            StepCreateServer(),
        ]
        if self.config.provision_commands:
            steps += [StepConnect(), StepProvision()]
        steps.append(StepTemplatizeStorage())
        return steps

    def run(self) -> Artifact:
        """
        Run the build.

        Returns:
            Artifact with one template per zone, in zone order.

        Raises:
            TemplateBuildError: The first error of the build (including cancellation).
        """
        ctx = RunContext(config=self.config, client=self.client, ui=self.ui, cancel_event=self._cancel_event)
        self.runner = StepRunner(self.steps())
        try:
            self.runner.run(ctx)
        finally:
            # A cancel applies to one run only
            self.runner = None
            self._cancel_event = threading.Event()

        if ctx.error is not None:
            raise ctx.error

        records = []
        for slot in ctx.slots:
            if slot.template is None:
                raise TemplateBuildError(f'No template was produced for zone "{slot.zone}"')
            records.append(TemplateRecord(zone=slot.zone, uuid=slot.template.uuid, title=slot.template.title))

        artifact = Artifact(records, self.client)
        self.ui.say(f"Build finished: {artifact}")
        return artifact

    def cancel(self) -> None:
        """
        Cancel the running build, or the next one if none is running.

        Cleanup still runs before ``run`` returns. Later runs start uncancelled.
        """
        self._cancel_event.set()
        runner = self.runner
        if runner is not None:
            runner.cancel()
        logger.info("Cancelling the builder ...")
