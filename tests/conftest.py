"""Pytest configuration and fixtures."""

from collections.abc import Generator
from dataclasses import replace

import pytest
from click.testing import CliRunner
from flask import Flask
from flask.testing import FlaskClient
from saml_fixtures import (
    ACS_URL,
    IDP_ENTITY_ID,
    IDP_SLO_URL,
    SP_ENTITY_ID,
    SP_SLS_URL,
    SSO_URL,
    KeyPair,
)

from samlsp.app import create_app
from samlsp.core.config import Endpoint, IdPConfig, SAMLSettings, SecurityPolicy, SPConfig
from samlsp.core.saml.constants import Binding


@pytest.fixture(scope="session")
def idp_keys() -> KeyPair:
    """Signing key of the test IdP."""
    return KeyPair("idp.example.com")


@pytest.fixture(scope="session")
def sp_keys() -> KeyPair:
    """Signing key of the SP under test."""
    return KeyPair("sp.example.com")


@pytest.fixture(scope="session")
def other_keys() -> KeyPair:
    """A key nobody trusts."""
    return KeyPair("attacker.example.com")


@pytest.fixture
def sp_config(sp_keys: KeyPair) -> SPConfig:
    return SPConfig(
        entity_id=SP_ENTITY_ID,
        assertion_consumer_service=Endpoint(ACS_URL, Binding.HTTP_POST),
        single_logout_service=Endpoint(SP_SLS_URL, Binding.HTTP_REDIRECT),
        x509_cert=sp_keys.cert_pem,
        private_key=sp_keys.key_pem,
    )


@pytest.fixture
def idp_config(idp_keys: KeyPair) -> IdPConfig:
    return IdPConfig(
        entity_id=IDP_ENTITY_ID,
        single_sign_on_service=Endpoint(SSO_URL, Binding.HTTP_REDIRECT),
        single_logout_service=Endpoint(IDP_SLO_URL, Binding.HTTP_REDIRECT),
        x509_cert=idp_keys.cert_pem,
    )


@pytest.fixture
def settings(sp_config: SPConfig, idp_config: IdPConfig) -> SAMLSettings:
    """Strict settings that do not require signatures."""
    return SAMLSettings(sp=sp_config, idp=idp_config)


@pytest.fixture
def signed_settings(settings: SAMLSettings) -> SAMLSettings:
    """Settings that require signed assertions."""
    return replace(settings, security=SecurityPolicy(want_assertions_signed=True))


@pytest.fixture
def app(settings: SAMLSettings) -> Generator[Flask, None, None]:
    """Create application for testing."""
    app = create_app(
        settings,
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret-key",
            "SESSION_COOKIE_SECURE": False,
        },
    )
    yield app


@pytest.fixture
def client(app: Flask) -> FlaskClient:
    """Create test client."""
    return app.test_client()


@pytest.fixture
def cli_runner() -> CliRunner:
    return CliRunner()
