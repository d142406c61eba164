"""Tests for the CLI commands."""

import json
from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from fedgate.cli.main import cli


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in ("HOST", "PORT", "DEBUG", "SERVICES", "TOKEN_SECRET", "LOG_LEVEL", "CONFIG"):
        monkeypatch.delenv(f"FEDGATE_{name}", raising=False)
    monkeypatch.setenv("FEDGATE_CERT_DIR", str(tmp_path / "certs"))


def test_cli_version() -> None:
    """Test CLI version command."""
    runner = CliRunner()
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_cli_help() -> None:
    """Test CLI help command."""
    runner = CliRunner()
    result = runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    assert "SAML 2.0 to OAuth 2.0 federation bridge" in result.output
    for command in ("config", "certs", "serve"):
        assert command in result.output


def test_serve_help() -> None:
    runner = CliRunner()
    result = runner.invoke(cli, ["serve", "--help"])
    assert result.exit_code == 0
    assert "--service" in result.output


def test_serve_rejects_unknown_service() -> None:
    runner = CliRunner()
    result = runner.invoke(cli, ["serve", "--service", "mail"])
    assert result.exit_code != 0


class TestConfigCommands:
    """Tests for config CLI commands."""

    def test_init_writes_file(self, tmp_path: Path) -> None:
        path = tmp_path / "fedgate.yaml"
        result = CliRunner().invoke(cli, ["config", "init", "--path", str(path)])

        assert result.exit_code == 0
        assert path.exists()
        assert yaml.safe_load(path.read_text())["server"]["port"] == 33222

    def test_init_refuses_to_overwrite(self, tmp_path: Path) -> None:
        path = tmp_path / "fedgate.yaml"
        path.write_text("server: {}\n")

        result = CliRunner().invoke(cli, ["config", "init", "--path", str(path)])
        assert result.exit_code != 0
        assert "already exists" in result.output

        result = CliRunner().invoke(cli, ["config", "init", "--path", str(path), "--force"])
        assert result.exit_code == 0

    def test_show_masks_secrets(self, tmp_path: Path) -> None:
        path = tmp_path / "fedgate.yaml"
        path.write_text(
            yaml.safe_dump({
                "tokens": {"secret": "very-secret"},
                "identity_provider": {"users": {"user": "password"}},
            })
        )

        result = CliRunner().invoke(cli, ["config", "show", "--path", str(path), "--json"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["tokens"]["secret"] == "********"
        assert data["identity_provider"]["users"] == {"user": "********"}
        assert "very-secret" not in result.output

    def test_show_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "fedgate.yaml"
        path.write_text(yaml.safe_dump({"server": {"port": 44301}}))

        result = CliRunner().invoke(cli, ["config", "show", "--path", str(path)])

        assert result.exit_code == 0
        assert result.output.startswith(f"# Source: {path}")
        assert "port: 44301" in result.output


class TestCertsCommands:
    """Tests for certs CLI commands."""

    def test_generate_signing(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(cli, ["certs", "generate", "--output", str(tmp_path)])

        assert result.exit_code == 0
        assert (tmp_path / "signing.crt").exists()
        assert (tmp_path / "signing.key").exists()
        assert "CN=SAMLIdentityProvider" in result.output

    def test_generate_tls(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(
            cli, ["certs", "generate", "--type", "tls", "--output", str(tmp_path)]
        )

        assert result.exit_code == 0
        assert (tmp_path / "server.crt").exists()
        assert (tmp_path / "server.key").exists()

    def test_generate_refuses_to_overwrite(self, tmp_path: Path) -> None:
        runner = CliRunner()
        runner.invoke(cli, ["certs", "generate", "--output", str(tmp_path)])

        result = runner.invoke(cli, ["certs", "generate", "--output", str(tmp_path)])
        assert result.exit_code != 0
        assert "--force" in result.output

    def test_show(self, tmp_path: Path) -> None:
        runner = CliRunner()
        runner.invoke(cli, ["certs", "generate", "--output", str(tmp_path), "-cn", "test-idp"])

        result = runner.invoke(cli, ["certs", "show", str(tmp_path / "signing.crt")])

        assert result.exit_code == 0
        assert "CN=test-idp" in result.output
        assert "VALID" in result.output

    def test_show_default_missing(self) -> None:
        result = CliRunner().invoke(cli, ["certs", "show"])
        assert result.exit_code != 0
