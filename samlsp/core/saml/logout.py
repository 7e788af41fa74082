"""SAML Single Logout (SLO).

Handles both directions:
- SP-initiated: build a LogoutRequest, later check the IdP's LogoutResponse
- IdP-initiated: parse the IdP's LogoutRequest and answer with a LogoutResponse
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from lxml import etree
from markupsafe import escape

from samlsp.core.saml.bindings import decode_post, decode_redirect, redirect_signed_content, redirect_url
from samlsp.core.saml.constants import DEFAULT_NAME_ID_FORMAT, NS_SAML, NS_SAMLP, Binding, StatusCode
from samlsp.core.saml.errors import (
    ConfigurationError,
    DecodeError,
    ValidationError,
    ValidationRule,
    configuration_error,
    structural_error,
    trust_error,
)
from samlsp.core.saml.signature import (
    SignatureLocation,
    SignatureValidationResult,
    sign_xml,
    validate_redirect_signature,
    validate_signature,
)
from samlsp.core.saml.utils import (
    element_text,
    find_child,
    format_saml_time,
    generate_unique_id,
    parse_saml_time,
    parse_xml,
    qname,
    utc_now,
)

if TYPE_CHECKING:
    from samlsp.core.config import SAMLSettings

logger = logging.getLogger(__name__)


def _decode(encoded: str, binding: Binding | str) -> str:
    if binding == Binding.HTTP_REDIRECT:
        return decode_redirect(encoded)
    return decode_post(encoded)


def _load(
    encoded: str, binding: Binding | str, local_name: str, errors: list[ValidationError]
) -> tuple[str, etree._Element | None]:
    """Decode and parse a logout message, recording failures in ``errors``."""
    try:
        xml = _decode(encoded, binding)
    except DecodeError as e:
        errors.append(structural_error(ValidationRule.DECODE, f"Failed to decode {local_name}: {e}"))
        return "", None

    try:
        root = parse_xml(xml)
    except etree.XMLSyntaxError as e:
        errors.append(structural_error(ValidationRule.XML, f"Invalid {local_name} XML: {e}"))
        return xml, None

    if root.tag != qname(NS_SAMLP, local_name):
        errors.append(structural_error(ValidationRule.XML, f"Root element is not a {local_name}: {root.tag}"))
        return xml, None
    return xml, root


@dataclass
class LogoutRequest:
    """Represents a SAML LogoutRequest message.

    Used for both SP-initiated (we generate) and IdP-initiated (we receive) logout.
    """

    id: str
    issue_instant: str
    issuer: str | None
    destination: str | None
    name_id: str | None
    name_id_format: str = DEFAULT_NAME_ID_FORMAT
    session_index: str | None = None
    reason: str | None = None
    not_on_or_after: str | None = None
    binding: str = Binding.HTTP_REDIRECT
    xml: str = ""
    errors: list[ValidationError] = field(default_factory=list)

    def to_xml(self) -> str:
        """Generate the unsigned LogoutRequest XML."""
        session_index_elem = ""
        if self.session_index:
            session_index_elem = f"\n    <samlp:SessionIndex>{escape(self.session_index)}</samlp:SessionIndex>"

        reason_attr = ""
        if self.reason:
            reason_attr = f' Reason="{escape(self.reason)}"'

        return f"""<samlp:LogoutRequest
    xmlns:samlp="urn:oasis:names:tc:SAML:2.0:protocol"
    xmlns:saml="urn:oasis:names:tc:SAML:2.0:assertion"
    ID="{escape(self.id)}"
    Version="2.0"
    IssueInstant="{escape(self.issue_instant)}"
    Destination="{escape(self.destination or '')}"{reason_attr}>
    <saml:Issuer>{escape(self.issuer or '')}</saml:Issuer>
    <saml:NameID Format="{escape(self.name_id_format)}">{escape(self.name_id or '')}</saml:NameID>{session_index_elem}
</samlp:LogoutRequest>"""

    def to_redirect_url(self, relay_state: str = "") -> str:
        return redirect_url(self.destination or "", "SAMLRequest", self.xml or self.to_xml(), relay_state)

    @classmethod
    def parse(cls, encoded: str, binding: Binding | str = Binding.HTTP_REDIRECT) -> LogoutRequest:
        """Parse an encoded LogoutRequest.

        Args:
            encoded: Base64 (deflated for HTTP-Redirect) LogoutRequest.
            binding: Binding the message arrived on.

        Returns:
            LogoutRequest; decode or XML failures are listed in ``errors``.
        """
        errors: list[ValidationError] = []
        xml, root = _load(encoded, binding, "LogoutRequest", errors)
        if root is None:
            return cls(
                id="",
                issue_instant="",
                issuer=None,
                destination=None,
                name_id=None,
                binding=binding,
                xml=xml,
                errors=errors,
            )

        name_id_elem = find_child(root, NS_SAML, "NameID")
        return cls(
            id=root.get("ID", ""),
            issue_instant=root.get("IssueInstant", ""),
            issuer=element_text(find_child(root, NS_SAML, "Issuer")),
            destination=root.get("Destination"),
            name_id=element_text(name_id_elem),
            name_id_format=(
                name_id_elem.get("Format", DEFAULT_NAME_ID_FORMAT)
                if name_id_elem is not None
                else DEFAULT_NAME_ID_FORMAT
            ),
            session_index=element_text(find_child(root, NS_SAMLP, "SessionIndex")),
            reason=root.get("Reason"),
            not_on_or_after=root.get("NotOnOrAfter"),
            binding=binding,
            xml=xml,
            errors=errors,
        )


@dataclass
class LogoutResponse:
    """Represents a SAML LogoutResponse message."""

    id: str
    in_response_to: str | None
    issue_instant: str | None
    issuer: str | None
    destination: str | None
    status_code: str | None
    status_message: str | None = None
    binding: str = Binding.HTTP_REDIRECT
    xml: str = ""
    errors: list[ValidationError] = field(default_factory=list)

    @property
    def is_success(self) -> bool:
        return self.status_code == StatusCode.SUCCESS

    def to_xml(self) -> str:
        """Generate the LogoutResponse XML."""
        status_msg_elem = ""
        if self.status_message:
            status_msg_elem = f"\n        <samlp:StatusMessage>{escape(self.status_message)}</samlp:StatusMessage>"

        return f"""<samlp:LogoutResponse
    xmlns:samlp="urn:oasis:names:tc:SAML:2.0:protocol"
    xmlns:saml="urn:oasis:names:tc:SAML:2.0:assertion"
    ID="{escape(self.id)}"
    Version="2.0"
    IssueInstant="{escape(self.issue_instant or '')}"
    Destination="{escape(self.destination or '')}"
    InResponseTo="{escape(self.in_response_to or '')}">
    <saml:Issuer>{escape(self.issuer or '')}</saml:Issuer>
    <samlp:Status>
        <samlp:StatusCode Value="{escape(self.status_code or '')}"/>{status_msg_elem}
    </samlp:Status>
</samlp:LogoutResponse>"""

    def to_redirect_url(self, relay_state: str = "") -> str:
        return redirect_url(self.destination or "", "SAMLResponse", self.xml or self.to_xml(), relay_state)

    @classmethod
    def parse(cls, encoded: str, binding: Binding | str = Binding.HTTP_REDIRECT) -> LogoutResponse:
        """Parse an encoded LogoutResponse.

        Args:
            encoded: Base64 (deflated for HTTP-Redirect) LogoutResponse.
            binding: Binding the message arrived on.

        Returns:
            LogoutResponse; decode or XML failures are listed in ``errors``.
        """
        errors: list[ValidationError] = []
        xml, root = _load(encoded, binding, "LogoutResponse", errors)
        if root is None:
            return cls(
                id="",
                in_response_to=None,
                issue_instant=None,
                issuer=None,
                destination=None,
                status_code=None,
                binding=binding,
                xml=xml,
                errors=errors,
            )

        status = find_child(root, NS_SAMLP, "Status")
        status_code = find_child(status, NS_SAMLP, "StatusCode")
        return cls(
            id=root.get("ID", ""),
            in_response_to=root.get("InResponseTo"),
            issue_instant=root.get("IssueInstant"),
            issuer=element_text(find_child(root, NS_SAML, "Issuer")),
            destination=root.get("Destination"),
            status_code=status_code.get("Value") if status_code is not None else None,
            status_message=element_text(find_child(status, NS_SAMLP, "StatusMessage")),
            binding=binding,
            xml=xml,
            errors=errors,
        )


def _idp_slo_url(settings: SAMLSettings) -> str:
    endpoint = settings.idp.single_logout_service
    if endpoint is None:
        raise ConfigurationError("IdP single_logout_service is not configured")
    return endpoint.url


def build_logout_request(
    settings: SAMLSettings,
    name_id: str,
    session_index: str | None = None,
    name_id_format: str | None = None,
) -> LogoutRequest:
    """Create an SP-initiated LogoutRequest.

    Args:
        settings: Engine settings; the IdP must have a logout endpoint.
        name_id: NameID of the user being logged out.
        session_index: SessionIndex from the user's AuthnStatement.
        name_id_format: NameID format (defaults to the SP's preferred one).

    Returns:
        LogoutRequest with its serialized, and when configured signed,
        document in ``xml``.

    Raises:
        ConfigurationError: If the IdP has no logout endpoint or signing fails.
    """
    sp = settings.sp
    security = settings.security
    request = LogoutRequest(
        id=generate_unique_id(),
        issue_instant=format_saml_time(),
        issuer=sp.entity_id,
        destination=_idp_slo_url(settings),
        name_id=name_id,
        name_id_format=name_id_format or sp.name_id_format,
        session_index=session_index,
    )
    request.xml = request.to_xml()

    if security.logout_requests_signed:
        if not sp.can_sign:
            raise ConfigurationError("LogoutRequest signing requires the SP certificate and private key")
        request.xml = sign_xml(
            request.xml,
            sp.private_key,
            sp.x509_cert,
            request.id,
            security.signature_algorithm,
            security.digest_algorithm,
            reject_deprecated=security.reject_deprecated_algorithms,
        )
    return request


def create_logout_response(
    settings: SAMLSettings,
    in_response_to: str,
    status: StatusCode | str = StatusCode.SUCCESS,
    status_message: str | None = None,
) -> LogoutResponse:
    """Create the SP's answer to an IdP LogoutRequest.

    Raises:
        ConfigurationError: If the IdP has no logout endpoint.
    """
    response = LogoutResponse(
        id=generate_unique_id(),
        in_response_to=in_response_to,
        issue_instant=format_saml_time(),
        issuer=settings.sp.entity_id,
        destination=_idp_slo_url(settings),
        status_code=str(status),
        status_message=status_message,
    )
    response.xml = response.to_xml()
    return response


def _signature_result(
    parameter: str,
    xml: str,
    binding: str,
    settings: SAMLSettings,
    query_data: Mapping[str, str],
    query_string: str,
) -> SignatureValidationResult:
    trust = settings.idp.signature_trust()
    if binding == Binding.HTTP_REDIRECT:
        return validate_redirect_signature(
            redirect_signed_content(parameter, query_data, query_string),
            query_data.get("SigAlg"),
            query_data.get("Signature"),
            trust,
            settings.security,
        )
    # The message element itself carries the signature on HTTP-POST
    return validate_signature(xml, trust, settings.security, SignatureLocation.RESPONSE)


def check_logout_signature(
    message: LogoutRequest | LogoutResponse,
    settings: SAMLSettings,
    query_data: Mapping[str, str] | None = None,
    query_string: str = "",
) -> ValidationError | None:
    """Verify the signature of an inbound logout message when the policy requires one.

    Args:
        message: The parsed LogoutRequest or LogoutResponse.
        settings: Engine settings; signatures are checked whenever the
            security policy wants signed messages or assertions.
        query_data: Percent-decoded query parameters of an HTTP-Redirect
            delivery (SigAlg and Signature are read from here).
        query_string: Raw query string of an HTTP-Redirect delivery.

    Returns:
        The error to record, or None if the message may be trusted.
    """
    if not settings.security.requires_signature:
        return None

    message_type = type(message).__name__
    if not settings.idp.has_trust_anchor:
        return configuration_error(
            ValidationRule.SIGNATURE,
            "Signature required but no IdP certificate or fingerprint is configured",
        )

    parameter = "SAMLRequest" if isinstance(message, LogoutRequest) else "SAMLResponse"
    result = _signature_result(
        parameter, message.xml, message.binding, settings, query_data or {}, query_string
    )
    for line in result.trace:
        logger.debug("%s signature: %s", message_type, line)
    if result.is_valid:
        return None
    return trust_error(ValidationRule.SIGNATURE, f"{message_type} signature validation failed: {result.message}")


def validate_logout_response(
    response: LogoutResponse,
    settings: SAMLSettings,
    expected_request_id: str | None,
    query_data: Mapping[str, str] | None = None,
    query_string: str = "",
) -> bool:
    """Check issuer, signature, status and correlation of an IdP LogoutResponse.

    A LogoutResponse is only accepted as the answer to a pending
    LogoutRequest. Stops at the first failing rule, recording it in
    ``response.errors``.
    """
    if response.errors:
        return False

    idp_entity_id = settings.idp.entity_id
    error = None
    if response.issuer != idp_entity_id:
        error = trust_error(
            ValidationRule.ISSUER, f"Invalid issuer: expected {idp_entity_id}, got {response.issuer}"
        )
    elif not expected_request_id:
        error = trust_error(
            ValidationRule.IN_RESPONSE_TO, "Unsolicited LogoutResponse: no logout request is pending"
        )
    else:
        error = check_logout_signature(response, settings, query_data, query_string)

    if error is None and not response.is_success:
        error = trust_error(
            ValidationRule.STATUS, f"SAML LogoutResponse status is not success: {response.status_code}"
        )
    elif error is None and response.in_response_to != expected_request_id:
        error = trust_error(
            ValidationRule.IN_RESPONSE_TO,
            f"Invalid InResponseTo: expected {expected_request_id}, got {response.in_response_to}",
        )

    if error is not None:
        response.errors.append(error)
        logger.warning("Rejected LogoutResponse %s: %s", response.id, error.message)
        return False
    return True


def validate_logout_request(
    request: LogoutRequest,
    settings: SAMLSettings,
    now: datetime | None = None,
    query_data: Mapping[str, str] | None = None,
    query_string: str = "",
) -> bool:
    """Check issuer, signature and expiry of an IdP-initiated LogoutRequest.

    Stops at the first failing rule, recording it in ``request.errors``.
    """
    if request.errors:
        return False

    idp_entity_id = settings.idp.entity_id
    error = None
    if request.issuer != idp_entity_id:
        error = trust_error(
            ValidationRule.ISSUER, f"Invalid issuer: expected {idp_entity_id}, got {request.issuer}"
        )
    else:
        error = check_logout_signature(request, settings, query_data, query_string)

    if error is None and request.not_on_or_after:
        try:
            expires = parse_saml_time(request.not_on_or_after)
        except ValueError:
            error = structural_error(
                ValidationRule.NOT_ON_OR_AFTER, f"Invalid NotOnOrAfter timestamp: {request.not_on_or_after}"
            )
        else:
            if (now or utc_now()) >= expires:
                error = trust_error(
                    ValidationRule.NOT_ON_OR_AFTER,
                    f"LogoutRequest has expired (NotOnOrAfter: {request.not_on_or_after})",
                )

    if error is not None:
        request.errors.append(error)
        logger.warning("Rejected LogoutRequest %s: %s", request.id, error.message)
        return False
    return True
