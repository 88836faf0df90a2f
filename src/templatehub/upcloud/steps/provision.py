"""Steps that connect to the build servers over SSH and run provisioning commands."""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable

import paramiko

from templatehub.upcloud.errors import (
    OperationCancelled,
    ProvisionError,
    StateTimeoutError,
    StepTimeoutError,
    TemplateBuildError,
)
from templatehub.upcloud.ssh import SSHClient
from templatehub.upcloud.state import RunContext
from templatehub.upcloud.steps.base import Step, handle_error
from templatehub.upcloud.steps.group import ZoneTaskGroup
from templatehub.upcloud.steps.ssh_key import load_private_key
from templatehub.upcloud.types import StepAction

logger = logging.getLogger(__name__)

SSHClientFactory = Callable[..., SSHClient]


class StepConnect(Step):
    """Opens an SSH session to every server, retrying until the server accepts it."""

    name = "connect"

    def __init__(self, client_factory: SSHClientFactory = SSHClient, retry_interval: float = 5.0) -> None:
        self.client_factory = client_factory
        self.retry_interval = retry_interval

    def run(self, ctx: RunContext) -> StepAction:
        private_key = load_private_key(ctx)
        group = ZoneTaskGroup(ctx.config.zones, timeout=ctx.config.build_timeout, parent=ctx.cancel_event)
        try:
            group.run(lambda index, zone, cancel: self._connect(ctx, index, private_key, cancel))
        except TemplateBuildError as exc:
            return handle_error(ctx, exc)
        return StepAction.CONTINUE

    def _connect(self, ctx: RunContext, index: int, private_key: paramiko.PKey, cancel: threading.Event) -> None:
        server = ctx.slots[index].server
        host = server.public_ipv4() if server is not None else None
        if not host:
            raise TemplateBuildError("server has no public IPv4 address to connect to")

        session = self.client_factory(host=host, username=ctx.config.ssh_username, private_key=private_key)
        ctx.ui.say(f"Waiting for SSH to become available on {host} ...")

        deadline = time.monotonic() + ctx.config.ssh_timeout
        attempt = 0
        while True:
            attempt += 1
            try:
                session.connect()
                break
            except (paramiko.SSHException, OSError) as exc:
                logger.debug("SSH attempt %d to %s failed: %s", attempt, host, exc)
                if time.monotonic() >= deadline:
                    raise StateTimeoutError(
                        f"SSH on {host} not available after {ctx.config.ssh_timeout:g}s: {exc}"
                    ) from exc
            if cancel.wait(self.retry_interval):
                raise OperationCancelled(f"cancelled while waiting for SSH on {host}")

        ctx.ssh_sessions[index] = session
        ctx.ui.say(f"Connected to {host} after {attempt} attempt(s)")

    def cleanup(self, ctx: RunContext) -> None:
        for index, session in enumerate(ctx.ssh_sessions):
            if session is not None:
                session.disconnect()
                ctx.ssh_sessions[index] = None


class StepProvision(Step):
    """Runs every configured shell command on every server, in order."""

    name = "provision"

    def run(self, ctx: RunContext) -> StepAction:
        if not ctx.config.provision_commands:
            return StepAction.CONTINUE

        deadline = time.monotonic() + ctx.config.build_timeout
        group = ZoneTaskGroup(ctx.config.zones, timeout=ctx.config.build_timeout, parent=ctx.cancel_event)
        try:
            group.run(lambda index, zone, cancel: self._provision(ctx, index, deadline, cancel))
        except TemplateBuildError as exc:
            return handle_error(ctx, exc)
        return StepAction.CONTINUE

    def _provision(self, ctx: RunContext, index: int, deadline: float, cancel: threading.Event) -> None:
        session = ctx.ssh_sessions[index]
        if session is None:
            raise TemplateBuildError("no SSH session to provision with")

        for command in ctx.config.provision_commands:
            if cancel.is_set():
                raise OperationCancelled("cancelled before provisioning finished")
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise StepTimeoutError(f"no time left to run: {command}")
            ctx.ui.say(f"Provisioning with: {command}")
            # Commands abort once the step deadline passes or a sibling zone fails
            exit_code, stdout, stderr = session.execute(command, timeout=remaining, cancel_event=cancel)
            if stdout:
                logger.debug("%s stdout:\n%s", session.host, stdout)
            if exit_code != 0:
                raise ProvisionError(
                    f'command "{command}" exited with status {exit_code}: {stderr.strip()}'
                )
