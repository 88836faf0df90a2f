import argparse
import signal
from unittest.mock import MagicMock, patch

import pytest

from templatehub.upcloud.artifact import Artifact
from templatehub.upcloud.cli import _parse_zone_template, build_parser, main
from templatehub.upcloud.errors import ZoneError
from templatehub.upcloud.types import TemplateRecord


class TestParser:
    """Test cases for argument parsing."""

    def test_zone_template(self):
        """ZONE:UUID values are parsed into template records."""
        record = _parse_zone_template("fi-hel1:0123-abcd")

        assert record == TemplateRecord(zone="fi-hel1", uuid="0123-abcd", title="")

    @pytest.mark.parametrize("value", ["fi-hel1", ":uuid", "fi-hel1:"])
    def test_invalid_zone_template(self, value):
        """Values without both parts are rejected."""
        with pytest.raises(argparse.ArgumentTypeError):
            _parse_zone_template(value)

    def test_destroy_collects_templates(self):
        """--zone-template can be repeated."""
        args = build_parser().parse_args(
            ["destroy", "--zone-template", "fi-hel1:tpl-1", "--zone-template", "de-fra1:tpl-2"]
        )

        assert [t.zone for t in args.templates] == ["fi-hel1", "de-fra1"]

    def test_build_requires_config(self):
        """The build command needs a build file."""
        with pytest.raises(SystemExit):
            build_parser().parse_args(["build"])


class TestMain:
    """Test cases for the CLI entry point."""

    def test_build_prints_artifact(self, tmp_path, capsys):
        """A successful build prints the artifact and its id."""
        artifact = Artifact([TemplateRecord(zone="fi-hel1", uuid="tpl-1", title="web-template-1")], MagicMock())
        previous = signal.getsignal(signal.SIGINT)

        with patch("templatehub.upcloud.cli.load_builder_config") as load, \
                patch("templatehub.upcloud.cli.Builder") as builder_cls:
            builder_cls.return_value.run.return_value = artifact
            code = main(["build", "--config", str(tmp_path / "build.yaml"), "--env-file", str(tmp_path / ".env")])

        assert code == 0
        load.assert_called_once_with(tmp_path / "build.yaml", env_file=tmp_path / ".env")
        builder_cls.return_value.prepare.assert_called_once_with()
        out = capsys.readouterr().out
        assert "Private template (UUID: tpl-1, Title: web-template-1, Zone: fi-hel1)" in out
        assert "fi-hel1:tpl-1" in out
        assert signal.getsignal(signal.SIGINT) == previous

    def test_build_failure_exit_code(self, tmp_path, capsys):
        """Build errors are reported and turn into exit code 1."""
        with patch("templatehub.upcloud.cli.load_builder_config"), \
                patch("templatehub.upcloud.cli.Builder") as builder_cls:
            builder_cls.return_value.run.side_effect = ZoneError("zone-b", RuntimeError("quota exceeded"))
            code = main(["build", "--config", str(tmp_path / "build.yaml")])

        assert code == 1
        assert 'zone "zone-b": quota exceeded' in capsys.readouterr().err

    def test_missing_build_file(self, tmp_path):
        """A missing build file exits with code 1."""
        code = main(["build", "--config", str(tmp_path / "missing.yaml"), "--env-file", str(tmp_path / ".env")])

        assert code == 1

    def test_destroy(self, tmp_path, capsys):
        """destroy deletes each template with the given credentials."""
        with patch("templatehub.upcloud.cli.UpCloudClient") as client_cls:
            code = main([
                "destroy",
                "--zone-template", "fi-hel1:tpl-1",
                "--zone-template", "de-fra1:tpl-2",
                "--username", "api-user",
                "--password", "secret",
                "--env-file", str(tmp_path / ".env"),
            ])

        assert code == 0
        client_cls.assert_called_once_with("api-user", "secret")
        deleted = [c.args[0] for c in client_cls.return_value.delete_storage.call_args_list]
        assert deleted == ["tpl-1", "tpl-2"]
        assert "Deleted 2 template(s)" in capsys.readouterr().out
