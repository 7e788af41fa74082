"""Tests for configuration loading and validation."""

from pathlib import Path

import pytest
import yaml
from saml_fixtures import ACS_URL, IDP_ENTITY_ID, SP_ENTITY_ID, SSO_URL, KeyPair

from samlsp.core.config import (
    Endpoint,
    IdPConfig,
    SAMLSettings,
    SecurityPolicy,
    SPConfig,
    get_default_config_yaml,
    load_settings,
)
from samlsp.core.crypto import certificate_body, fingerprint
from samlsp.core.saml.constants import Binding, FingerprintAlgorithm, NameIDFormat, SignatureAlgorithm
from samlsp.core.saml.errors import ConfigurationError


def _minimal() -> dict:
    return {
        "sp": {"entity_id": SP_ENTITY_ID, "assertion_consumer_service": {"url": ACS_URL}},
        "idp": {"entity_id": IDP_ENTITY_ID, "single_sign_on_service": SSO_URL},
    }


def _write(tmp_path: Path, data: dict) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


class TestFromDict:
    """Tests for building settings from a mapping."""

    def test_minimal(self):
        settings = SAMLSettings.from_dict(_minimal())

        assert settings.sp.entity_id == SP_ENTITY_ID
        assert settings.sp.acs_url == ACS_URL
        assert settings.sp.assertion_consumer_service.binding is Binding.HTTP_POST
        assert settings.sp.name_id_format == NameIDFormat.UNSPECIFIED
        assert settings.idp.sso_url == SSO_URL
        assert settings.idp.single_sign_on_service.binding is Binding.HTTP_REDIRECT
        assert settings.idp.single_logout_service is None
        assert settings.strict
        assert not settings.debug

    def test_security_defaults(self):
        security = SAMLSettings.from_dict(_minimal()).security
        assert not security.requires_signature
        assert security.signature_algorithm is SignatureAlgorithm.RSA_SHA256
        assert security.reject_deprecated_algorithms

    def test_round_trip_through_dict(self):
        settings = SAMLSettings.from_dict(_minimal())
        assert SAMLSettings.from_dict(settings.to_dict()) == settings

    def test_private_key_not_serialized(self, sp_keys: KeyPair):
        data = _minimal()
        data["sp"]["x509_cert"] = sp_keys.cert_pem
        data["sp"]["private_key"] = sp_keys.key_pem
        settings = SAMLSettings.from_dict(data)

        assert settings.sp.can_sign
        assert "private_key" not in settings.sp.to_dict()
        assert "PRIVATE KEY" not in repr(settings.sp)

    def test_certificate_normalized(self, idp_keys: KeyPair):
        data = _minimal()
        data["idp"]["x509_cert"] = certificate_body(idp_keys.cert_pem)
        settings = SAMLSettings.from_dict(data)
        assert settings.idp.x509_cert.startswith("-----BEGIN CERTIFICATE-----\n")
        assert settings.idp.has_trust_anchor

    def test_fingerprint_normalized(self, idp_keys: KeyPair):
        data = _minimal()
        data["idp"]["cert_fingerprint"] = fingerprint(idp_keys.cert_pem).replace(":", "").lower()
        data["idp"]["cert_fingerprint_algorithm"] = "SHA1"
        idp = SAMLSettings.from_dict(data).idp

        assert idp.cert_fingerprint == fingerprint(idp_keys.cert_pem)
        assert idp.cert_fingerprint_algorithm is FingerprintAlgorithm.SHA1

    @pytest.mark.parametrize("section", ["sp", "idp"])
    def test_missing_section(self, section):
        data = _minimal()
        del data[section]
        with pytest.raises(ConfigurationError, match="'sp' and 'idp'"):
            SAMLSettings.from_dict(data)

    def test_missing_acs(self):
        data = _minimal()
        del data["sp"]["assertion_consumer_service"]
        with pytest.raises(ConfigurationError, match="assertion_consumer_service"):
            SAMLSettings.from_dict(data)

    def test_missing_sso(self):
        data = _minimal()
        del data["idp"]["single_sign_on_service"]
        with pytest.raises(ConfigurationError, match="single_sign_on_service"):
            SAMLSettings.from_dict(data)


class TestValidation:
    """Tests for construction-time checks."""

    def test_relative_url_rejected(self):
        with pytest.raises(ConfigurationError, match="absolute"):
            Endpoint("/saml/acs")

    def test_unknown_binding_rejected(self):
        with pytest.raises(ConfigurationError, match="Unsupported binding"):
            Endpoint(ACS_URL, "urn:example:carrier-pigeon")

    def test_acs_must_use_post(self):
        with pytest.raises(ConfigurationError, match="HTTP-POST"):
            SPConfig(SP_ENTITY_ID, Endpoint(ACS_URL, Binding.HTTP_REDIRECT))

    def test_entity_ids_required(self):
        with pytest.raises(ConfigurationError):
            SPConfig("", Endpoint(ACS_URL, Binding.HTTP_POST))
        with pytest.raises(ConfigurationError):
            IdPConfig("", Endpoint(SSO_URL))

    def test_unknown_algorithm_rejected(self):
        with pytest.raises(ConfigurationError, match="signature algorithm"):
            SecurityPolicy(signature_algorithm="urn:example:rot13")

    def test_signing_needs_key_material(self):
        settings = SAMLSettings.from_dict(_minimal())
        with pytest.raises(ConfigurationError, match="Request signing"):
            SAMLSettings(settings.sp, settings.idp, SecurityPolicy(authn_requests_signed=True))

    def test_deprecated_algorithm_policy(self):
        assert not SecurityPolicy().allows(SignatureAlgorithm.RSA_SHA1)
        assert SecurityPolicy(reject_deprecated_algorithms=False).allows(SignatureAlgorithm.RSA_SHA1)
        assert SecurityPolicy().allows(SignatureAlgorithm.RSA_SHA256)


class TestLoadSettings:
    """Tests for loading settings from YAML and the environment."""

    def test_load_file(self, tmp_path):
        settings = load_settings(_write(tmp_path, _minimal()))
        assert settings.sp.entity_id == SP_ENTITY_ID

    def test_default_config_loads(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(get_default_config_yaml())
        settings = load_settings(path)

        assert settings.sp.entity_id == "https://sp.example.com/saml/metadata"
        assert settings.idp.single_logout_service is not None
        assert settings.strict

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Cannot read"):
            load_settings(tmp_path / "absent.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("sp: [unclosed")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_settings(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            load_settings(path)

    def test_environment_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SAMLSP_SP_ENTITY_ID", "https://other-sp.example.com")
        monkeypatch.setenv("SAMLSP_IDP_SSO_URL", "https://login.example.org/sso")
        monkeypatch.setenv("SAMLSP_STRICT", "false")
        monkeypatch.setenv("SAMLSP_DEBUG", "yes")

        settings = load_settings(_write(tmp_path, _minimal()))

        assert settings.sp.entity_id == "https://other-sp.example.com"
        assert settings.idp.sso_url == "https://login.example.org/sso"
        assert not settings.strict
        assert settings.debug

    def test_environment_fills_missing_values(self, tmp_path, monkeypatch):
        data = _minimal()
        del data["idp"]["entity_id"]
        monkeypatch.setenv("SAMLSP_IDP_ENTITY_ID", "https://idp.example.org")
        monkeypatch.setenv("SAMLSP_IDP_CERT_FINGERPRINT", "aa:bb")

        idp = load_settings(_write(tmp_path, data)).idp
        assert idp.entity_id == "https://idp.example.org"
        assert idp.cert_fingerprint
