"""SSH client for running provisioning commands on build servers."""
import logging
import threading
import time
from typing import List, Optional, Tuple

import paramiko

from templatehub.upcloud.errors import OperationCancelled, StateTimeoutError

logger = logging.getLogger(__name__)

RECV_CHUNK_SIZE = 32768


class SSHClient:
    """SSH client for remote command execution on a build server."""

    def __init__(self, host: str, port: int = 22, username: str = "root", private_key: Optional[paramiko.PKey] = None, password: Optional[str] = None):
        """
        Initialize SSH client connection parameters.

        Args:
            host: SSH host/IP address. Required.
            port: SSH port number. Default: 22.
            username: SSH username. Default: root.
            private_key: Private key used to authenticate. Optional if using password.
            password: SSH password. Optional if using private key.

        Raises:
            ValueError: If host is empty, port is invalid, or both auth methods are missing.
        """
        if not host or not isinstance(host, str):
            raise ValueError("host must be a non-empty string")
        if not isinstance(port, int) or port <= 0 or port > 65535:
            raise ValueError("port must be an integer between 1 and 65535")
        if not username or not isinstance(username, str):
            raise ValueError("username must be a non-empty string")

        if private_key is None and not password:
            raise ValueError("Either private_key or password must be provided")

        self.host = host
        self.port = port
        self.username = username
        self.private_key = private_key
        self.password = password
        self.client: Optional[paramiko.SSHClient] = None

    @property
    def connected(self) -> bool:
        return self.client is not None and self.client.get_transport() is not None and self.client.get_transport().is_active()

    def connect(self, timeout: float = 10) -> None:
        """
        Establish SSH connection to remote host.

        Raises:
            paramiko.AuthenticationException: If authentication fails.
            paramiko.SSHException: If SSH connection fails.
            OSError: If the host cannot be reached.
        """
        if self.connected:
            logger.debug("Already connected to %s", self.host)
            return

        self.client = paramiko.SSHClient()
        # Build servers are brand new, their host keys cannot be known in advance
        self.client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        try:
            self.client.connect(
                hostname=self.host,
                port=self.port,
                username=self.username,
                pkey=self.private_key,
                password=self.password,
                timeout=timeout,
                allow_agent=False,
                look_for_keys=False,
            )
            logger.info("SSH connection established to %s@%s:%s", self.username, self.host, self.port)
        except Exception:
            self.client.close()
            self.client = None
            raise

    def disconnect(self) -> None:
        """Close SSH connection."""
        if self.client:
            self.client.close()
            self.client = None
            logger.info("SSH connection closed to %s", self.host)

    def execute(
        self,
        command: str,
        timeout: float = 3600,
        cancel_event: Optional[threading.Event] = None,
        poll_interval: float = 0.2,
    ) -> Tuple[int, str, str]:
        """
        Execute a command on the remote host.

        Output is read while the command runs, so commands that print a lot
        cannot stall on a full channel window.

        Args:
            command: Shell command to execute. Required.
            timeout: Seconds the command may run. Default: 3600.
            cancel_event: Aborts the command when set. Optional.
            poll_interval: Seconds between checks for output and exit. Default: 0.2.

        Returns:
            Tuple of (exit_code, stdout, stderr).

        Raises:
            ValueError: If command is empty or timeout is not positive.
            RuntimeError: If not connected or command execution fails.
            StateTimeoutError: If the command is still running after ``timeout`` seconds.
            OperationCancelled: If ``cancel_event`` is set while the command runs.
        """
        if not command or not isinstance(command, str):
            raise ValueError("command must be a non-empty string")
        if timeout <= 0:
            raise ValueError("timeout must be positive")

        if not self.connected:
            raise RuntimeError("Not connected to remote host. Call connect() first.")

        try:
            stdin, stdout, stderr = self.client.exec_command(command)
        except (paramiko.SSHException, OSError) as e:
            logger.debug("Command execution failed: %s", e)
            raise RuntimeError(f"Command execution failed: {e}") from e

        channel = stdout.channel
        out_chunks: List[bytes] = []
        err_chunks: List[bytes] = []
        deadline = time.monotonic() + timeout
        try:
            while True:
                self._drain(channel, out_chunks, err_chunks)
                if channel.exit_status_ready():
                    self._drain(channel, out_chunks, err_chunks)
                    break
                if cancel_event is not None and cancel_event.is_set():
                    raise OperationCancelled(f"cancelled while running: {command}")
                if time.monotonic() >= deadline:
                    raise StateTimeoutError(f"command did not finish within {timeout:g}s: {command}")
                if cancel_event is not None:
                    cancel_event.wait(poll_interval)
                else:
                    time.sleep(poll_interval)
            exit_code = channel.recv_exit_status()
        except (OperationCancelled, StateTimeoutError):
            channel.close()
            raise
        except (paramiko.SSHException, OSError) as e:
            logger.debug("Command execution failed: %s", e)
            raise RuntimeError(f"Command execution failed: {e}") from e

        logger.debug("Command executed: %s (exit code: %s)", command, exit_code)
        return (
            exit_code,
            b"".join(out_chunks).decode("utf-8", errors="replace"),
            b"".join(err_chunks).decode("utf-8", errors="replace"),
        )

    @staticmethod
    def _drain(channel: paramiko.Channel, out_chunks: List[bytes], err_chunks: List[bytes]) -> None:
        while channel.recv_ready():
            out_chunks.append(channel.recv(RECV_CHUNK_SIZE))
        while channel.recv_stderr_ready():
            err_chunks.append(channel.recv_stderr(RECV_CHUNK_SIZE))
