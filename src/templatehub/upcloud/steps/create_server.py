"""Step that creates one server per zone from the source template."""
from __future__ import annotations

import logging
import threading

from templatehub.upcloud.api import (
    SERVER_STATE_MAINTENANCE,
    SERVER_STATE_STARTED,
    SERVER_STATE_STOPPED,
)
from templatehub.upcloud.errors import TemplateBuildError
from templatehub.upcloud.state import RunContext
from templatehub.upcloud.steps.base import Step, handle_error
from templatehub.upcloud.steps.group import ZoneTaskGroup
from templatehub.upcloud.types import StepAction

logger = logging.getLogger(__name__)

DEFAULT_SERVER_TITLE = "templatehub-builder"


class StepCreateServer(Step):
    """Creates a server in every zone and waits until each one has started."""

    name = "create_server"

    def run(self, ctx: RunContext) -> StepAction:
        group = ZoneTaskGroup(ctx.config.zones, timeout=ctx.config.build_timeout, parent=ctx.cancel_event)
        try:
            group.run(lambda index, zone, cancel: self._create(ctx, index, zone, cancel))
        except TemplateBuildError as exc:
            return handle_error(ctx, exc)
        return StepAction.CONTINUE

    def _create(self, ctx: RunContext, index: int, zone: str, cancel: threading.Event) -> None:
        config = ctx.config
        title = config.template_prefix or DEFAULT_SERVER_TITLE

        ctx.ui.say(f'Creating server "{title}" in zone "{zone}" ...')
        try:
            server = ctx.client.create_server(
                zone=zone,
                title=title,
                hostname=title,
                storage_uuid=config.storage_uuid,
                storage_size=config.storage_size,
                storage_title=f"{title}-disk1",
                login_username=config.ssh_username,
                ssh_keys=[ctx.ssh_public_key],
            )
        except TemplateBuildError as exc:
            raise TemplateBuildError(f"error creating server instance: {exc}") from exc

        # Visible to cleanup even if the wait below fails
        ctx.slots[index].server = server

        ctx.ui.say(f'Waiting for server "{server.title}" to enter the "{SERVER_STATE_STARTED}" state ...')
        try:
            server = ctx.client.wait_for_server_state(
                server.uuid,
                desired_state=SERVER_STATE_STARTED,
                timeout=config.state_timeout,
                cancel_event=cancel,
            )
        except TemplateBuildError as exc:
            raise TemplateBuildError(
                f'error while waiting for server "{server.title}" to enter the '
                f'"{SERVER_STATE_STARTED}" state: {exc}'
            ) from exc

        ctx.slots[index].server = server
        ctx.ui.say(f'Server "{server.title}" is now in "{SERVER_STATE_STARTED}" state')

    def cleanup(self, ctx: RunContext) -> None:
        """Stop and delete every server recorded in the slots, then delete its disk."""
        if not any(slot.server for slot in ctx.slots):
            return

        logger.debug("Removing build servers in %d zone(s)", sum(1 for slot in ctx.slots if slot.server))
        # Not tied to ctx.cancel_event: teardown has to run after a cancelled build
        group = ZoneTaskGroup(ctx.config.zones, timeout=ctx.config.build_timeout)
        errors = group.run_all(lambda index, zone, cancel: self._destroy(ctx, index, cancel))
        for error in errors:
            ctx.ui.error(str(error))

    def _destroy(self, ctx: RunContext, index: int, cancel: threading.Event) -> None:
        server = ctx.slots[index].server
        if server is None:
            return
        client = ctx.client
        timeout = ctx.config.state_timeout

        ctx.ui.say(f'Waiting for server "{server.title}" to exit the "{SERVER_STATE_MAINTENANCE}" state ...')
        try:
            client.wait_for_server_state(
                server.uuid,
                undesired_state=SERVER_STATE_MAINTENANCE,
                timeout=timeout,
                cancel_event=cancel,
            )
        except TemplateBuildError as exc:
            raise TemplateBuildError(
                f'Error while waiting for server "{server.title}" to exit the '
                f'"{SERVER_STATE_MAINTENANCE}" state: {exc}'
            ) from exc

        try:
            details = client.get_server_details(server.uuid)
        except TemplateBuildError as exc:
            raise TemplateBuildError(f'Failed to get details for server "{server.title}": {exc}') from exc

        if details.state != SERVER_STATE_STOPPED:
            ctx.ui.say(f'Stopping server "{server.title}" ...')
            try:
                client.stop_server(server.uuid)
            except TemplateBuildError as exc:
                raise TemplateBuildError(f'Failed to stop server "{server.title}": {exc}') from exc

            ctx.ui.say(f'Waiting for server "{server.title}" to enter the "{SERVER_STATE_STOPPED}" state ...')
            try:
                client.wait_for_server_state(
                    server.uuid,
                    desired_state=SERVER_STATE_STOPPED,
                    timeout=timeout,
                    cancel_event=cancel,
                )
            except TemplateBuildError as exc:
                raise TemplateBuildError(
                    f'Error while waiting for server "{server.title}" to enter the '
                    f'"{SERVER_STATE_STOPPED}" state: {exc}'
                ) from exc

        # Remember the disk before the server record disappears
        disk = details.first_disk()

        ctx.ui.say(f'Deleting server "{server.title}" ...')
        try:
            client.delete_server(server.uuid)
        except TemplateBuildError as exc:
            raise TemplateBuildError(f'Failed to delete server "{server.title}": {exc}') from exc

        if disk is not None:
            ctx.ui.say(f'Deleting disk "{disk.title}" ...')
            try:
                client.delete_storage(disk.uuid)
            except TemplateBuildError as exc:
                raise TemplateBuildError(f'Failed to delete disk "{disk.title}": {exc}') from exc
