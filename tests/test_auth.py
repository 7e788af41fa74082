"""Tests for the login/response round trip."""

from dataclasses import replace
from urllib.parse import parse_qs, urlparse

import pytest
from saml_fixtures import (
    IDP_SLO_URL,
    SSO_URL,
    KeyPair,
    build_assertion,
    build_response,
    post_data,
    sign_response,
)

from samlsp.core.config import Endpoint, SAMLSettings
from samlsp.core.logging import Direction, ProtocolLogger
from samlsp.core.saml.auth import AuthSession, AuthSessionController, RequestContext
from samlsp.core.saml.bindings import decode_redirect
from samlsp.core.saml.constants import Binding, StatusCode
from samlsp.core.saml.replay import InMemoryReplayCache
from samlsp.core.saml.response import RESPONSE_NOT_FOUND
from samlsp.core.saml.utils import parse_xml


@pytest.fixture
def controller() -> AuthSessionController:
    return AuthSessionController(protocol_logger=ProtocolLogger())


def _acs_context(xml: str | None) -> RequestContext:
    return RequestContext(
        host="sp.example.com",
        path="/saml/acs",
        post_data=post_data(xml) if xml is not None else {},
    )


class TestEndToEnd:
    """Complete SP-initiated round trips."""

    def test_successful_login(self, settings: SAMLSettings, controller: AuthSessionController) -> None:
        session = AuthSession(settings)
        controller.login(session)
        xml = build_response(
            in_response_to=session.last_request_id,
            assertion=build_assertion(
                in_response_to=session.last_request_id,
                attributes={"email": ["a@b.com"]},
            ),
        )

        assert controller.process_response(session, _acs_context(xml))
        assert session.is_authenticated
        assert session.attribute("email") == ["a@b.com"]
        assert session.attributes == {"email": ["a@b.com"]}
        assert session.name_id == "user@example.com"
        assert session.session_index == "_session_1"
        assert session.errors == []
        assert session.last_error == ""

    def test_responder_status(self, settings: SAMLSettings, controller: AuthSessionController) -> None:
        session = AuthSession(settings)
        controller.login(session)
        xml = build_response(in_response_to=session.last_request_id, status=StatusCode.RESPONDER)

        assert not controller.process_response(session, _acs_context(xml))
        assert not session.is_authenticated
        assert session.errors
        assert StatusCode.RESPONDER.value in session.last_error
        assert session.last_error_reason == session.last_error

    def test_missing_saml_response(self, settings: SAMLSettings, controller: AuthSessionController) -> None:
        session = AuthSession(settings)
        assert not controller.process_response(session, _acs_context(None))
        assert session.errors == [RESPONSE_NOT_FOUND]
        assert session.last_response is not None
        assert session.last_response.assertion is None
        assert session.attributes == {}

    def test_signed_login(
        self, signed_settings: SAMLSettings, controller: AuthSessionController, idp_keys: KeyPair
    ) -> None:
        session = AuthSession(signed_settings)
        controller.login(session)
        xml = sign_response(
            build_response(in_response_to=session.last_request_id),
            idp_keys.key_pem,
            idp_keys.cert_pem,
        )
        assert controller.process_response(session, _acs_context(xml))

    def test_response_to_another_request(self, settings: SAMLSettings, controller: AuthSessionController) -> None:
        session = AuthSession(settings)
        controller.login(session)
        xml = build_response(in_response_to="_someone_else")

        assert not controller.process_response(session, _acs_context(xml))
        assert session.last_error.startswith("Invalid InResponseTo")

    def test_failed_attempt_clears_previous_login(
        self, settings: SAMLSettings, controller: AuthSessionController
    ) -> None:
        session = AuthSession(settings)
        assert controller.process_response(session, _acs_context(build_response()))
        assert session.is_authenticated

        assert not controller.process_response(session, _acs_context(build_response(issuer="https://evil.example.com")))
        assert not session.is_authenticated
        assert session.attributes == {}
        assert session.name_id is None

    def test_uses_session_context(self, settings: SAMLSettings, controller: AuthSessionController) -> None:
        session = AuthSession(settings, context=_acs_context(build_response()))
        assert controller.process_response(session)

    def test_replay_rejected(self, settings: SAMLSettings) -> None:
        controller = AuthSessionController(replay_cache=InMemoryReplayCache(), protocol_logger=ProtocolLogger())
        xml = build_response()

        assert controller.process_response(AuthSession(settings), _acs_context(xml))
        replayed = AuthSession(settings)
        assert not controller.process_response(replayed, _acs_context(xml))
        assert "already been processed" in replayed.last_error


class TestLogin:
    """Tests for starting SSO."""

    def test_redirect_binding(self, settings: SAMLSettings, controller: AuthSessionController) -> None:
        session = AuthSession(settings)
        url = controller.login(session, return_to="/dashboard", force_authn=True)

        assert url.startswith(f"{SSO_URL}?SAMLRequest=")
        query = parse_qs(urlparse(url).query)
        request = parse_xml(decode_redirect(query["SAMLRequest"][0]))
        assert request.get("ID") == session.last_request_id
        assert request.get("ForceAuthn") == "true"
        assert query["RelayState"] == ["/dashboard"]

    def test_post_binding(self, settings: SAMLSettings, controller: AuthSessionController) -> None:
        session = AuthSession(settings)
        html = controller.login(session, binding=Binding.HTTP_POST)
        assert f'action="{SSO_URL}"' in html
        assert 'name="SAMLRequest"' in html

    @pytest.fixture
    def post_sso(self, settings: SAMLSettings) -> SAMLSettings:
        """Settings whose IdP takes AuthnRequests over HTTP-POST."""
        idp = replace(settings.idp, single_sign_on_service=Endpoint(SSO_URL, Binding.HTTP_POST))
        return replace(settings, idp=idp)

    def test_binding_follows_idp_endpoint(self, post_sso: SAMLSettings, controller: AuthSessionController) -> None:
        session = AuthSession(post_sso)

        html = controller.login(session, return_to="/home")
        assert html.startswith("<!DOCTYPE html>")
        assert f'action="{SSO_URL}"' in html
        assert 'name="RelayState" value="/home"' in html
        assert session.protocol_log.messages[0].binding == Binding.HTTP_POST

    def test_explicit_binding_overrides_idp_endpoint(
        self, post_sso: SAMLSettings, controller: AuthSessionController
    ) -> None:
        url = controller.login(AuthSession(post_sso), binding=Binding.HTTP_REDIRECT)
        assert url.startswith(f"{SSO_URL}?SAMLRequest=")

    def test_each_login_replaces_request_id(self, settings: SAMLSettings, controller: AuthSessionController) -> None:
        session = AuthSession(settings)
        controller.login(session)
        first = session.last_request_id
        controller.login(session)
        assert session.last_request_id != first

    def test_protocol_log(self, settings: SAMLSettings, controller: AuthSessionController) -> None:
        session = AuthSession(settings)
        controller.login(session)
        controller.process_response(session, _acs_context(build_response(in_response_to=session.last_request_id)))

        messages = session.protocol_log.messages
        assert [m.message_type for m in messages] == ["AuthnRequest", "Response"]
        assert [m.direction for m in messages] == [Direction.OUTBOUND, Direction.INBOUND]
        assert session.protocol_log.completed_at is not None


class TestLogout:
    """Tests for SP-initiated logout through the controller."""

    def test_requires_name_id(self, settings: SAMLSettings, controller: AuthSessionController) -> None:
        with pytest.raises(ValueError):
            controller.logout(AuthSession(settings))

    def test_logout_uses_authenticated_subject(
        self, settings: SAMLSettings, controller: AuthSessionController
    ) -> None:
        session = AuthSession(settings)
        controller.process_response(session, _acs_context(build_response()))
        url = controller.logout(session, return_to="/bye")

        assert url.startswith(f"{IDP_SLO_URL}?SAMLRequest=")
        xml = decode_redirect(parse_qs(urlparse(url).query)["SAMLRequest"][0])
        assert parse_xml(xml).get("ID") == session.last_logout_request_id
        assert "user@example.com" in xml
        assert "_session_1" in xml


class TestRequestContext:
    """Tests for the inbound request description."""

    def test_self_url(self) -> None:
        context = RequestContext(host="sp.example.com:8443", path="saml/acs", query_data={"a": "1"})
        assert context.self_url == "https://sp.example.com:8443/saml/acs?a=1"

    def test_lenient_settings_are_independent(self, settings: SAMLSettings) -> None:
        """Settings are immutable, so variants never leak into each other."""
        lenient = replace(settings, strict=False)
        assert settings.strict
        assert not lenient.strict
