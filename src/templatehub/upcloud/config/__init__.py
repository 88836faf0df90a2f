"""
Configuration module for UpCloud template builds.
Loads the build file (YAML), falls back to environment variables for API
credentials and validates the result.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from templatehub.upcloud.errors import ValidationError

DEFAULT_STORAGE_SIZE = 25
DEFAULT_STATE_TIMEOUT = 300
DEFAULT_SSH_USERNAME = "root"
DEFAULT_SSH_TIMEOUT = 300
DEFAULT_BUILD_TIMEOUT = 20 * 60
DEFAULT_POLL_INTERVAL = 5.0
MAX_TEMPLATE_PREFIX_LENGTH = 40


@dataclass(frozen=True)
class BuilderConfig:
    """Immutable inputs of a template build."""

    username: str
    password: str
    zones: Tuple[str, ...]
    storage_uuid: str
    storage_size: int = DEFAULT_STORAGE_SIZE
    template_prefix: str = ""
    state_timeout: float = DEFAULT_STATE_TIMEOUT
    ssh_username: str = DEFAULT_SSH_USERNAME
    ssh_timeout: float = DEFAULT_SSH_TIMEOUT
    build_timeout: float = DEFAULT_BUILD_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    provision_commands: Tuple[str, ...] = field(default_factory=tuple)
    debug_key_path: Optional[str] = None

    def validate(self) -> None:
        """
        Check the configuration before any resource is created.

        Raises:
            ValidationError: On the first invalid setting.
        """
        if not self.username or not self.password:
            raise ValidationError(
                "UpCloud API credentials are missing. Set username/password in the "
                "build file or UPCLOUD_API_USER/UPCLOUD_API_PASSWORD in the environment."
            )
        if not self.zones:
            raise ValidationError("at least one zone is required")
        if any(not zone or not zone.strip() for zone in self.zones):
            raise ValidationError("zone names cannot be empty")
        if not self.storage_uuid:
            raise ValidationError("storage_uuid is required")
        if not 10 <= self.storage_size <= 2048:
            raise ValidationError("storage_size must be between 10 and 2048 GB")
        if len(self.template_prefix) > MAX_TEMPLATE_PREFIX_LENGTH:
            raise ValidationError(
                f"template_prefix must be at most {MAX_TEMPLATE_PREFIX_LENGTH} characters"
            )
        for name in ("state_timeout", "ssh_timeout", "build_timeout"):
            if getattr(self, name) <= 0:
                raise ValidationError(f"{name} must be positive")
        if self.poll_interval < 0:
            raise ValidationError("poll_interval cannot be negative")
        if not self.ssh_username:
            raise ValidationError("ssh_username cannot be empty")


def load_builder_config(config_path: Path, env_file: Optional[Path] = None) -> BuilderConfig:
    """
    Load and validate a build configuration.

    Args:
        config_path: Path to the YAML build file. Required.
        env_file: Path to a .env file. If None, looks for .env in the working directory.

    Returns:
        Validated BuilderConfig.

    Raises:
        FileNotFoundError: If the build file does not exist.
        ValidationError: If the file is malformed or a setting is invalid.
    """
    config_path = Path(config_path)
    if not config_path.is_file():
        raise FileNotFoundError(f"Build file not found: {config_path}")

    load_env_file(env_file)

    with open(config_path, "r", encoding="utf-8") as f:
        try:
            raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValidationError(f"Invalid YAML in {config_path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ValidationError(f"{config_path} must contain a mapping of settings")

    config = config_from_mapping(raw)
    config.validate()
    return config


def config_from_mapping(raw: Dict[str, Any]) -> BuilderConfig:
    """Build a BuilderConfig from parsed settings, filling credentials from the environment."""
    zones = raw.get("zones", raw.get("zone", ()))
    if isinstance(zones, str):
        zones = [zones]
    commands = raw.get("provision_commands") or ()
    if isinstance(commands, str):
        commands = [commands]

    try:
        return BuilderConfig(
            username=str(raw.get("username") or os.getenv("UPCLOUD_API_USER", "")).strip(),
            password=str(raw.get("password") or os.getenv("UPCLOUD_API_PASSWORD", "")).strip(),
            zones=tuple(str(zone) for zone in zones),
            storage_uuid=str(raw.get("storage_uuid", "")).strip(),
            storage_size=int(raw.get("storage_size", DEFAULT_STORAGE_SIZE)),
            template_prefix=str(raw.get("template_prefix") or ""),
            state_timeout=float(raw.get("state_timeout", DEFAULT_STATE_TIMEOUT)),
            ssh_username=str(raw.get("ssh_username", DEFAULT_SSH_USERNAME)),
            ssh_timeout=float(raw.get("ssh_timeout", DEFAULT_SSH_TIMEOUT)),
            build_timeout=float(raw.get("build_timeout", DEFAULT_BUILD_TIMEOUT)),
            poll_interval=float(raw.get("poll_interval", DEFAULT_POLL_INTERVAL)),
            provision_commands=tuple(str(command) for command in commands),
            debug_key_path=str(raw["debug_key_path"]) if raw.get("debug_key_path") is not None else None,
        )
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid build setting: {exc}") from exc


def load_env_file(env_file: Optional[Path]) -> None:
    """Load .env file if it exists."""
    if env_file is None:
        env_file = Path.cwd() / ".env"

    if env_file.exists():
        _parse_env_file(env_file)


def _parse_env_file(env_file: Path) -> None:
    """Parse and load .env file into os.environ."""
    with open(env_file) as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#") and "=" in line:
                key, value = line.split("=", 1)
                value = value.strip()
                # Remove surrounding quotes if present
                if (value.startswith('"') and value.endswith('"')) or (value.startswith("'") and value.endswith("'")):
                    value = value[1:-1]
                os.environ.setdefault(key.strip(), value)
