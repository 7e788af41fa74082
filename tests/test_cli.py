"""Tests for the CLI commands."""

import json
import stat
from pathlib import Path
from urllib.parse import parse_qs, urlparse

import pytest
import yaml
from click.testing import CliRunner
from saml_fixtures import SP_ENTITY_ID, SSO_URL, KeyPair, build_response

from samlsp.cli.main import cli
from samlsp.core.config import get_default_config_yaml
from samlsp.core.crypto import fingerprint
from samlsp.core.saml.bindings import decode_redirect, encode_post, encode_redirect
from samlsp.core.saml.constants import Binding


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(get_default_config_yaml())
    return path


def test_cli_version(cli_runner: CliRunner) -> None:
    """Test CLI version command."""
    result = cli_runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_cli_help(cli_runner: CliRunner) -> None:
    """Test CLI help command."""
    result = cli_runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    assert "SAML 2.0 Service Provider toolkit" in result.output
    for command in ("certs", "config", "metadata", "login-url", "decode", "serve"):
        assert command in result.output


class TestCertsCommands:
    """Tests for certificate commands."""

    def test_generate(self, cli_runner: CliRunner, tmp_path: Path) -> None:
        result = cli_runner.invoke(
            cli, ["certs", "generate", "--common-name", "sp.example.com", "--days", "30", "-o", str(tmp_path)]
        )
        assert result.exit_code == 0, result.output
        assert "Certificate generated successfully!" in result.output
        assert "CN=sp.example.com" in result.output

        key_file = tmp_path / "signing.key"
        assert "PRIVATE KEY" in key_file.read_text()
        assert stat.S_IMODE(key_file.stat().st_mode) == 0o600
        assert "BEGIN CERTIFICATE" in (tmp_path / "signing.crt").read_text()

    def test_generate_refuses_to_overwrite(self, cli_runner: CliRunner, tmp_path: Path) -> None:
        (tmp_path / "signing.crt").write_text("existing")
        result = cli_runner.invoke(cli, ["certs", "generate", "-o", str(tmp_path)])
        assert result.exit_code == 1
        assert "already exist" in result.output
        assert (tmp_path / "signing.crt").read_text() == "existing"

        result = cli_runner.invoke(cli, ["certs", "generate", "-o", str(tmp_path), "--force"])
        assert result.exit_code == 0

    def test_generate_rejects_non_positive_days(self, cli_runner: CliRunner, tmp_path: Path) -> None:
        result = cli_runner.invoke(cli, ["certs", "generate", "-o", str(tmp_path), "--days", "0"])
        assert result.exit_code == 2
        assert not (tmp_path / "signing.key").exists()

    @pytest.mark.parametrize("algorithm", ["sha1", "sha256"])
    def test_fingerprint(self, cli_runner: CliRunner, tmp_path: Path, idp_keys: KeyPair, algorithm: str) -> None:
        cert_file = tmp_path / "idp.crt"
        cert_file.write_text(idp_keys.cert_pem)

        result = cli_runner.invoke(cli, ["certs", "fingerprint", str(cert_file), "-a", algorithm])
        assert result.exit_code == 0
        assert result.output.strip() == fingerprint(idp_keys.cert_pem, algorithm)

    def test_fingerprint_of_garbage(self, cli_runner: CliRunner, tmp_path: Path) -> None:
        cert_file = tmp_path / "broken.crt"
        cert_file.write_text("-----BEGIN CERTIFICATE-----\n!!!\n-----END CERTIFICATE-----\n")
        result = cli_runner.invoke(cli, ["certs", "fingerprint", str(cert_file)])
        assert result.exit_code == 1
        assert "not valid base64" in result.output


class TestConfigCommands:
    """Tests for config commands."""

    def test_init_prints_default(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(cli, ["config", "init"])
        assert result.exit_code == 0
        assert result.output == get_default_config_yaml()

    def test_init_writes_file(self, cli_runner: CliRunner, tmp_path: Path) -> None:
        target = tmp_path / "config.yaml"
        result = cli_runner.invoke(cli, ["config", "init", "--output", str(target)])
        assert result.exit_code == 0
        assert "Configuration written to" in result.output
        assert target.read_text() == get_default_config_yaml()

        result = cli_runner.invoke(cli, ["config", "init", "--output", str(target)])
        assert result.exit_code == 1
        assert "--force" in result.output

    def test_show_yaml(self, cli_runner: CliRunner, config_file: Path) -> None:
        result = cli_runner.invoke(cli, ["config", "show", "--config", str(config_file)])
        assert result.exit_code == 0
        data = yaml.safe_load(result.output)
        assert data["sp"]["entity_id"] == SP_ENTITY_ID
        assert data["strict"] is True

    def test_show_json(self, cli_runner: CliRunner, config_file: Path) -> None:
        result = cli_runner.invoke(cli, ["config", "show", "-c", str(config_file), "--json"])
        assert result.exit_code == 0
        assert json.loads(result.output)["idp"]["single_sign_on_service"]["url"] == SSO_URL

    def test_show_missing_file(self, cli_runner: CliRunner, tmp_path: Path) -> None:
        result = cli_runner.invoke(cli, ["config", "show", "-c", str(tmp_path / "absent.yaml")])
        assert result.exit_code == 1
        assert "Cannot read configuration file" in result.output

    def test_show_missing_file_json(self, cli_runner: CliRunner, tmp_path: Path) -> None:
        result = cli_runner.invoke(cli, ["config", "show", "-c", str(tmp_path / "absent.yaml"), "--json"])
        assert result.exit_code == 1
        assert "Cannot read configuration file" in result.output


class TestSamlCommands:
    """Tests for metadata, login-url and decode."""

    def test_metadata(self, cli_runner: CliRunner, config_file: Path) -> None:
        result = cli_runner.invoke(cli, ["metadata", "-c", str(config_file)])
        assert result.exit_code == 0
        assert result.output.startswith('<?xml version="1.0" encoding="UTF-8"?>')
        assert f'entityID="{SP_ENTITY_ID}"' in result.output

    def test_login_url(self, cli_runner: CliRunner, config_file: Path) -> None:
        result = cli_runner.invoke(cli, ["login-url", "-c", str(config_file), "-r", "/home", "--force-authn"])
        assert result.exit_code == 0

        url = next(line for line in result.output.splitlines() if line.startswith(SSO_URL))
        query = parse_qs(urlparse(url).query)
        assert 'ForceAuthn="true"' in decode_redirect(query["SAMLRequest"][0])
        assert query["RelayState"] == ["/home"]

    def test_login_url_post(self, cli_runner: CliRunner, config_file: Path) -> None:
        result = cli_runner.invoke(cli, ["login-url", "-c", str(config_file), "--post"])
        assert result.exit_code == 0
        assert f'action="{SSO_URL}"' in result.output

    def test_login_url_follows_idp_binding(self, cli_runner: CliRunner, config_file: Path) -> None:
        data = yaml.safe_load(config_file.read_text())
        data["idp"]["single_sign_on_service"]["binding"] = str(Binding.HTTP_POST)
        config_file.write_text(yaml.safe_dump(data))

        result = cli_runner.invoke(cli, ["login-url", "-c", str(config_file)])
        assert result.exit_code == 0
        assert f'action="{SSO_URL}"' in result.output

        result = cli_runner.invoke(cli, ["login-url", "-c", str(config_file), "--redirect"])
        assert result.exit_code == 0
        assert any(line.startswith(f"{SSO_URL}?SAMLRequest=") for line in result.output.splitlines())

    def test_login_url_without_config(self, cli_runner: CliRunner, tmp_path: Path) -> None:
        result = cli_runner.invoke(cli, ["login-url", "-c", str(tmp_path / "absent.yaml")])
        assert result.exit_code == 1

    def test_decode_post(self, cli_runner: CliRunner) -> None:
        xml = build_response(response_id="_cli1")
        result = cli_runner.invoke(cli, ["decode", encode_post(xml)])
        assert result.exit_code == 0
        assert 'ID="_cli1"' in result.output

    def test_decode_redirect(self, cli_runner: CliRunner) -> None:
        xml = build_response(response_id="_cli2")
        result = cli_runner.invoke(cli, ["decode", "--redirect", encode_redirect(xml)])
        assert result.exit_code == 0
        assert 'ID="_cli2"' in result.output

    def test_decode_garbage(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(cli, ["decode", "***"])
        assert result.exit_code == 1
        assert "Invalid base64" in result.output

    def test_serve_needs_cert_and_key_together(self, cli_runner: CliRunner, tmp_path: Path) -> None:
        cert = tmp_path / "tls.crt"
        cert.write_text("placeholder")
        result = cli_runner.invoke(cli, ["serve", "--cert", str(cert)])
        assert result.exit_code == 2
        assert "--cert and --key must be given together" in result.output
