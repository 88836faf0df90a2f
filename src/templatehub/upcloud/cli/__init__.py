"""CLI interface for building and destroying UpCloud templates."""
from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Callable, List, Optional

from templatehub.upcloud.api import UpCloudClient
from templatehub.upcloud.artifact import Artifact
from templatehub.upcloud.builder import Builder
from templatehub.upcloud.config import load_env_file, load_builder_config
from templatehub.upcloud.errors import TemplateBuildError
from templatehub.upcloud.types import TemplateRecord

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format="%(asctime)s [%(levelname)s] %(message)s")
    else:
        root.setLevel(level)


def _add_env_file_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--env-file", type=Path, default=None, help="Path to a .env file with UPCLOUD_API_USER/UPCLOUD_API_PASSWORD")


def _parse_zone_template(value: str) -> TemplateRecord:
    zone, sep, uuid = value.partition(":")
    if not sep or not zone or not uuid:
        raise argparse.ArgumentTypeError(f"expected ZONE:UUID, got {value!r}")
    return TemplateRecord(zone=zone, uuid=uuid, title="")


def handle_build(args: argparse.Namespace) -> int:
    config = load_builder_config(args.config, env_file=args.env_file)
    builder = Builder(config)
    builder.prepare()

    def _on_interrupt(signum, frame) -> None:
        print("Interrupt received, cancelling the build and cleaning up ...", file=sys.stderr)
        builder.cancel()

    previous = signal.signal(signal.SIGINT, _on_interrupt)
    try:
        artifact = builder.run()
    finally:
        signal.signal(signal.SIGINT, previous)

    print(str(artifact))
    print(artifact.id, end="")
    return 0


def handle_destroy(args: argparse.Namespace) -> int:
    load_env_file(args.env_file)
    username = args.username or os.getenv("UPCLOUD_API_USER", "")
    password = args.password or os.getenv("UPCLOUD_API_PASSWORD", "")
    client = UpCloudClient(username, password)

    artifact = Artifact(args.templates, client)
    artifact.destroy()
    print(f"Deleted {len(artifact)} template(s)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="templatehub-upcloud", description="Build private UpCloud templates across zones")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    build = subparsers.add_parser("build", help="Create servers, provision them and templatize their disks")
    build.add_argument("--config", type=Path, required=True, help="YAML build file")
    _add_env_file_argument(build)
    build.set_defaults(handler=handle_build)

    destroy = subparsers.add_parser("destroy", help="Delete templates produced by a previous build")
    destroy.add_argument(
        "--zone-template",
        dest="templates",
        type=_parse_zone_template,
        action="append",
        required=True,
        help="Template to delete as ZONE:UUID (repeatable)",
    )
    destroy.add_argument("--username", type=str, default=None, help="UpCloud API username (defaults to UPCLOUD_API_USER)")
    destroy.add_argument("--password", type=str, default=None, help="UpCloud API password (defaults to UPCLOUD_API_PASSWORD)")
    _add_env_file_argument(destroy)
    destroy.set_defaults(handler=handle_destroy)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    handler: Callable[[argparse.Namespace], int] = args.handler
    try:
        return handler(args)
    except (TemplateBuildError, FileNotFoundError, ValueError) as exc:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
