"""Login and logout round trips for one browser session.

An AuthSession holds the state of a single round trip and must not be
shared between users or requests. The controller is stateless apart from
its collaborators and can be reused freely.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

from samlsp.core.logging import Direction, ProtocolLog, ProtocolLogger, ProtocolMessage, get_protocol_logger
from samlsp.core.saml.authn_request import AuthnRequestBuilder
from samlsp.core.saml.constants import Binding
from samlsp.core.saml.logout import (
    LogoutRequest,
    LogoutResponse,
    build_logout_request,
    create_logout_response,
    validate_logout_request,
    validate_logout_response,
)
from samlsp.core.saml.response import ParsedResponse, ResponseParser
from samlsp.core.saml.validation import AssertionValidator

if TYPE_CHECKING:
    from samlsp.core.config import SAMLSettings
    from samlsp.core.saml.replay import ReplayCache

logger = logging.getLogger(__name__)

NO_LOGOUT_MESSAGE = "No SAML logout message found"


@dataclass
class RequestContext:
    """The parts of an inbound HTTP request the engine reads."""

    host: str
    path: str = "/"
    scheme: str = "https"
    query_data: Mapping[str, str] = field(default_factory=dict)
    post_data: Mapping[str, str] = field(default_factory=dict)
    query_string: str = ""

    @property
    def self_url(self) -> str:
        """The URL the request was made to."""
        path = self.path if self.path.startswith("/") else f"/{self.path}"
        url = f"{self.scheme}://{self.host}{path}"
        if self.query_data:
            url += f"?{urlencode(self.query_data)}"
        return url

    @classmethod
    def from_flask(cls, request: Any) -> RequestContext:
        """Build a context from a Flask (werkzeug) request."""
        return cls(
            host=request.host,
            path=request.path,
            scheme=request.scheme,
            query_data=request.args.to_dict(),
            post_data=request.form.to_dict(),
            query_string=request.query_string.decode("latin-1"),
        )


@dataclass
class AuthSession:
    """State of one browser round trip."""

    settings: SAMLSettings
    context: RequestContext | None = None
    last_request_id: str = ""
    last_logout_request_id: str = ""
    last_response: ParsedResponse | None = None
    authenticated: bool = False
    attributes: dict[str, list[str]] = field(default_factory=dict)
    name_id: str | None = None
    name_id_format: str | None = None
    session_index: str | None = None
    errors: list[str] = field(default_factory=list)
    protocol_log: ProtocolLog = field(default_factory=ProtocolLog)

    @property
    def is_authenticated(self) -> bool:
        return self.authenticated

    def attribute(self, name: str) -> list[str]:
        """Values of one attribute, or an empty list."""
        return self.attributes.get(name, [])

    @property
    def last_error(self) -> str:
        """The most recent error, or an empty string."""
        return self.errors[-1] if self.errors else ""

    @property
    def last_error_reason(self) -> str:
        return self.last_error

    def clear_authentication(self) -> None:
        self.authenticated = False
        self.attributes = {}
        self.name_id = None
        self.name_id_format = None
        self.session_index = None


class AuthSessionController:
    """Drives login, response processing and single logout.

    Args:
        replay_cache: Optional store of accepted response IDs.
        protocol_logger: Logger for protocol messages (defaults to the
            globally configured one).
    """

    def __init__(
        self,
        replay_cache: ReplayCache | None = None,
        protocol_logger: ProtocolLogger | None = None,
    ) -> None:
        self.replay_cache = replay_cache
        self._protocol_logger = protocol_logger

    @property
    def protocol_logger(self) -> ProtocolLogger:
        return self._protocol_logger or get_protocol_logger()

    def _record(self, session: AuthSession, message: ProtocolMessage) -> None:
        self.protocol_logger.log_message(session.protocol_log, message)

    def login(
        self,
        session: AuthSession,
        return_to: str = "",
        force_authn: bool = False,
        is_passive: bool = False,
        set_name_id_policy: bool = True,
        binding: Binding | None = None,
    ) -> str:
        """Start SP-initiated SSO.

        Args:
            session: The session; its last_request_id is replaced.
            return_to: Becomes the RelayState.
            force_authn: Ask the IdP to re-authenticate the user.
            is_passive: Ask the IdP not to interact with the user.
            set_name_id_policy: Include a NameIDPolicy element.
            binding: HTTP-Redirect returns a URL, HTTP-POST an HTML form.
                Defaults to the binding of the IdP SSO endpoint.

        Returns:
            Redirect URL or auto-submitting HTML form.

        Raises:
            ConfigurationError: If request signing is required but fails.
        """
        request = AuthnRequestBuilder(session.settings).build(
            force_authn=force_authn,
            is_passive=is_passive,
            include_name_id_policy=set_name_id_policy,
        )
        binding = binding or session.settings.idp.single_sign_on_service.binding
        session.last_request_id = request.id

        self._record(
            session,
            ProtocolMessage(
                direction=Direction.OUTBOUND,
                message_type="AuthnRequest",
                binding=str(binding),
                message_id=request.id,
                destination=request.destination,
                xml=request.xml,
            ),
        )

        if binding == Binding.HTTP_POST:
            return request.to_post_form(return_to)
        return request.to_redirect_url(return_to)

    def process_response(self, session: AuthSession, context: RequestContext | None = None) -> bool:
        """Consume the IdP's SAMLResponse from the POST body.

        Args:
            session: The session; authentication state is reset first.
            context: The inbound request (defaults to session.context).

        Returns:
            True if the user is authenticated.
        """
        session.errors = []
        session.clear_authentication()

        context = context or session.context
        post_data = context.post_data if context is not None else {}

        response = ResponseParser().parse(post_data)
        session.last_response = response
        if response.xml:
            self._record(
                session,
                ProtocolMessage(
                    direction=Direction.INBOUND,
                    message_type="Response",
                    binding=str(Binding.HTTP_POST),
                    message_id=response.id or None,
                    destination=response.destination,
                    xml=response.xml,
                ),
            )

        validator = AssertionValidator(session.settings, self.replay_cache)
        if not validator.validate(response, session.last_request_id):
            session.errors = response.error_messages
            return False

        assertion = response.assertion
        if assertion is not None:
            session.attributes = {name: list(values) for name, values in assertion.attributes.items()}
            session.name_id = assertion.name_id
            session.name_id_format = assertion.name_id_format
            session.session_index = assertion.session_index
        session.authenticated = True
        session.protocol_log.complete()
        return True

    def logout(
        self,
        session: AuthSession,
        return_to: str = "",
        name_id: str | None = None,
        session_index: str | None = None,
    ) -> str:
        """Start SP-initiated single logout.

        Args:
            session: The session; its last_logout_request_id is replaced.
            return_to: Becomes the RelayState.
            name_id: Defaults to the authenticated NameID.
            session_index: Defaults to the authenticated SessionIndex.

        Returns:
            Redirect URL to the IdP's logout endpoint.

        Raises:
            ValueError: If there is no NameID to log out.
            ConfigurationError: If the IdP has no logout endpoint or
                signing fails.
        """
        name_id = name_id or session.name_id
        if not name_id:
            raise ValueError("No NameID to log out: pass one or authenticate first")

        request = build_logout_request(
            session.settings,
            name_id,
            session_index=session_index or session.session_index,
            name_id_format=session.name_id_format,
        )
        session.last_logout_request_id = request.id
        self._record(
            session,
            ProtocolMessage(
                direction=Direction.OUTBOUND,
                message_type="LogoutRequest",
                binding=str(Binding.HTTP_REDIRECT),
                message_id=request.id,
                destination=request.destination,
                xml=request.xml,
            ),
        )
        return request.to_redirect_url(return_to)

    def process_slo(self, session: AuthSession, context: RequestContext | None = None) -> bool | str:
        """Consume a logout message from the IdP.

        Returns:
            True for a valid LogoutResponse to our LogoutRequest; for a
            valid IdP-initiated LogoutRequest, the redirect URL carrying
            our LogoutResponse; False (with errors) otherwise.
        """
        session.errors = []
        context = context or session.context
        query = context.query_data if context is not None else {}
        post = context.post_data if context is not None else {}
        query_string = context.query_string if context is not None else ""

        for field_name in ("SAMLResponse", "SAMLRequest"):
            if field_name in post:
                encoded, binding = post[field_name], Binding.HTTP_POST
                break
            if field_name in query:
                encoded, binding = query[field_name], Binding.HTTP_REDIRECT
                break
        else:
            session.errors.append(NO_LOGOUT_MESSAGE)
            return False

        relay_state = post.get("RelayState") or query.get("RelayState") or ""
        if field_name == "SAMLResponse":
            return self._process_logout_response(session, encoded, binding, query, query_string)
        return self._process_logout_request(session, encoded, binding, relay_state, query, query_string)

    def _process_logout_response(
        self,
        session: AuthSession,
        encoded: str,
        binding: Binding,
        query: Mapping[str, str],
        query_string: str,
    ) -> bool:
        response = LogoutResponse.parse(encoded, binding)
        self._record_inbound(session, "LogoutResponse", binding, response.id, response.destination, response.xml)

        if not validate_logout_response(
            response, session.settings, session.last_logout_request_id, query, query_string
        ):
            session.errors = [str(e) for e in response.errors]
            return False

        session.clear_authentication()
        session.last_logout_request_id = ""
        logger.info("Single logout completed for session")
        return True

    def _process_logout_request(
        self,
        session: AuthSession,
        encoded: str,
        binding: Binding,
        relay_state: str,
        query: Mapping[str, str],
        query_string: str,
    ) -> bool | str:
        request = LogoutRequest.parse(encoded, binding)
        self._record_inbound(session, "LogoutRequest", binding, request.id, request.destination, request.xml)

        if not validate_logout_request(request, session.settings, query_data=query, query_string=query_string):
            session.errors = [str(e) for e in request.errors]
            return False

        session.clear_authentication()
        response = create_logout_response(session.settings, request.id)
        self._record(
            session,
            ProtocolMessage(
                direction=Direction.OUTBOUND,
                message_type="LogoutResponse",
                binding=str(Binding.HTTP_REDIRECT),
                message_id=response.id,
                destination=response.destination,
                xml=response.xml,
            ),
        )
        logger.info("IdP-initiated logout for %s", request.name_id)
        return response.to_redirect_url(relay_state)

    def _record_inbound(
        self,
        session: AuthSession,
        message_type: str,
        binding: Binding,
        message_id: str,
        destination: str | None,
        xml: str,
    ) -> None:
        if not xml:
            return
        self._record(
            session,
            ProtocolMessage(
                direction=Direction.INBOUND,
                message_type=message_type,
                binding=str(binding),
                message_id=message_id or None,
                destination=destination,
                xml=xml,
            ),
        )
