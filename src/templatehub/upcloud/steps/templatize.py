"""Step that turns the disk of every build server into a private template."""
from __future__ import annotations

import logging
import threading
import time

from templatehub.upcloud.api import (
    SERVER_STATE_STOPPED,
    STORAGE_STATE_MAINTENANCE,
    STORAGE_STATE_ONLINE,
)
from templatehub.upcloud.errors import NoDiskError, TemplateBuildError
from templatehub.upcloud.state import RunContext
from templatehub.upcloud.steps.base import Step, handle_error
from templatehub.upcloud.steps.group import ZoneTaskGroup
from templatehub.upcloud.types import StepAction

logger = logging.getLogger(__name__)

_suffix_lock = threading.Lock()
_last_suffix = 0


def unique_suffix() -> int:
    """Return the current UNIX time, bumped past any suffix already issued by this process."""
    global _last_suffix
    with _suffix_lock:
        suffix = max(int(time.time()), _last_suffix + 1)
        _last_suffix = suffix
        return suffix


def template_title(prefix: str, disk_title: str, suffix: int) -> str:
    return f"{prefix or disk_title}-template-{suffix}"


class StepTemplatizeStorage(Step):
    """Stops every server and templatizes its first disk."""

    name = "templatize_storage"

    def run(self, ctx: RunContext) -> StepAction:
        ctx.templatize_success = False
        suffix = unique_suffix()

        group = ZoneTaskGroup(ctx.config.zones, timeout=ctx.config.build_timeout, parent=ctx.cancel_event)
        try:
            group.run(lambda index, zone, cancel: self._templatize(ctx, index, suffix, cancel))
        except TemplateBuildError as exc:
            return handle_error(ctx, exc)

        ctx.templatize_success = True
        return StepAction.CONTINUE

    def _templatize(self, ctx: RunContext, index: int, suffix: int, cancel: threading.Event) -> None:
        client = ctx.client
        timeout = ctx.config.state_timeout
        server = ctx.slots[index].server
        if server is None:
            raise TemplateBuildError("no server was created for this zone")

        ctx.ui.say(f'Stopping server "{server.title}" ...')
        server = client.stop_server(server.uuid)

        ctx.ui.say(f'Waiting for server "{server.title}" to enter the "{SERVER_STATE_STOPPED}" state ...')
        server = client.wait_for_server_state(
            server.uuid,
            desired_state=SERVER_STATE_STOPPED,
            timeout=timeout,
            cancel_event=cancel,
        )
        ctx.ui.say(f'Server "{server.title}" is now in "{SERVER_STATE_STOPPED}" state')

        disk = server.first_disk()
        if disk is None:
            raise NoDiskError(f'Unable to find the storage device to templatize on server "{server.title}"')

        ctx.ui.say(f'Templatizing storage device "{disk.title}" ...')
        template = client.templatize_storage(
            disk.uuid,
            title=template_title(ctx.config.template_prefix, disk.title, suffix),
        )
        ctx.slots[index].template = template

        ctx.ui.say(f'Waiting for storage "{template.title}" to enter the "{STORAGE_STATE_ONLINE}" state ...')
        template = client.wait_for_storage_state(
            template.uuid,
            desired_state=STORAGE_STATE_ONLINE,
            timeout=timeout,
            cancel_event=cancel,
        )
        ctx.slots[index].template = template

    def cleanup(self, ctx: RunContext) -> None:
        """Delete every template created by a failed run."""
        if ctx.templatize_success:
            return
        if not any(slot.template for slot in ctx.slots):
            return

        logger.debug("Deleting templates of the failed build")
        group = ZoneTaskGroup(ctx.config.zones, timeout=ctx.config.build_timeout)
        errors = group.run_all(lambda index, zone, cancel: self._delete(ctx, index, cancel))
        for error in errors:
            ctx.ui.error(str(error))

    def _delete(self, ctx: RunContext, index: int, cancel: threading.Event) -> None:
        template = ctx.slots[index].template
        if template is None:
            return

        # Templates cannot be deleted while they are still being copied
        ctx.client.wait_for_storage_state(
            template.uuid,
            undesired_state=STORAGE_STATE_MAINTENANCE,
            timeout=ctx.config.state_timeout,
            cancel_event=cancel,
        )
        ctx.ui.say(f'Deleting template "{template.title}" ...')
        ctx.client.delete_storage(template.uuid)
        ctx.slots[index].template = None
