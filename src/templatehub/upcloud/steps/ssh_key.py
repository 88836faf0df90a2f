"""Step that generates the throwaway SSH key pair of a build."""
from __future__ import annotations

import io
import logging
import os
from typing import Optional

import paramiko

from templatehub.upcloud.errors import TemplateBuildError
from templatehub.upcloud.state import RunContext
from templatehub.upcloud.steps.base import Step, handle_error
from templatehub.upcloud.types import StepAction

logger = logging.getLogger(__name__)

KEY_BITS = 2048
KEY_COMMENT = "templatehub"


class StepCreateSSHKey(Step):
    """Generates an RSA key pair; the public half is injected into every server."""

    name = "create_ssh_key"

    def __init__(self, debug_key_path: Optional[str] = None) -> None:
        self.debug_key_path = debug_key_path

    def run(self, ctx: RunContext) -> StepAction:
        ctx.ui.say("Creating temporary SSH key for the build ...")
        key = paramiko.RSAKey.generate(KEY_BITS)

        private = io.StringIO()
        key.write_private_key(private)
        ctx.ssh_private_key = private.getvalue()
        ctx.ssh_public_key = f"{key.get_name()} {key.get_base64()} {KEY_COMMENT}"

        if self.debug_key_path:
            ctx.ui.say(f'Saving the private key to "{self.debug_key_path}"')
            try:
                with open(self.debug_key_path, "w", encoding="utf-8") as handle:
                    handle.write(ctx.ssh_private_key)
                os.chmod(self.debug_key_path, 0o600)
            except OSError as exc:
                return handle_error(ctx, TemplateBuildError(f"Failed to save the private key: {exc}"))

        return StepAction.CONTINUE


def load_private_key(ctx: RunContext) -> paramiko.PKey:
    """Rebuild the paramiko key object from the PEM stored in the context."""
    return paramiko.RSAKey.from_private_key(io.StringIO(ctx.ssh_private_key))
