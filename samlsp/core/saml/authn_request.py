"""AuthnRequest construction for SP-initiated SSO."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from markupsafe import escape

from samlsp.core.saml.bindings import post_form, redirect_url
from samlsp.core.saml.constants import DEFAULT_NAME_ID_FORMAT, Binding
from samlsp.core.saml.errors import ConfigurationError
from samlsp.core.saml.signature import sign_xml
from samlsp.core.saml.utils import format_saml_time, generate_unique_id

if TYPE_CHECKING:
    from samlsp.core.config import SAMLSettings

logger = logging.getLogger(__name__)


@dataclass
class AuthnRequest:
    """Represents a SAML AuthnRequest."""

    id: str
    issue_instant: str
    destination: str
    issuer: str
    acs_url: str
    protocol_binding: str = Binding.HTTP_POST
    force_authn: bool = False
    is_passive: bool = False
    name_id_policy: bool = True
    name_id_format: str = DEFAULT_NAME_ID_FORMAT
    signed: bool = False
    xml: str = ""

    def to_xml(self) -> str:
        """Generate the unsigned AuthnRequest XML."""
        name_id_policy = ""
        if self.name_id_policy:
            name_id_policy = (
                f'\n    <samlp:NameIDPolicy Format="{escape(self.name_id_format)}" AllowCreate="true"/>'
            )

        return f"""<samlp:AuthnRequest
    xmlns:samlp="urn:oasis:names:tc:SAML:2.0:protocol"
    xmlns:saml="urn:oasis:names:tc:SAML:2.0:assertion"
    ID="{escape(self.id)}"
    Version="2.0"
    IssueInstant="{escape(self.issue_instant)}"
    Destination="{escape(self.destination)}"
    AssertionConsumerServiceURL="{escape(self.acs_url)}"
    ProtocolBinding="{escape(self.protocol_binding)}"
    ForceAuthn="{str(self.force_authn).lower()}"
    IsPassive="{str(self.is_passive).lower()}">
    <saml:Issuer>{escape(self.issuer)}</saml:Issuer>{name_id_policy}
</samlp:AuthnRequest>"""

    def to_redirect_url(self, relay_state: str = "") -> str:
        """Build the HTTP-Redirect URL carrying this request.

        Args:
            relay_state: Optional RelayState to preserve across the SSO flow.

        Returns:
            ``<destination>?SAMLRequest=...[&RelayState=...]``.
        """
        return redirect_url(self.destination, "SAMLRequest", self.xml or self.to_xml(), relay_state)

    def to_post_form(self, relay_state: str = "") -> str:
        """Build an auto-submitting HTML form carrying this request."""
        return post_form(self.destination, "SAMLRequest", self.xml or self.to_xml(), relay_state)


class AuthnRequestBuilder:
    """Builds AuthnRequests from engine settings."""

    def __init__(self, settings: SAMLSettings) -> None:
        self.settings = settings

    def build(
        self,
        force_authn: bool = False,
        is_passive: bool = False,
        include_name_id_policy: bool = True,
    ) -> AuthnRequest:
        """Create an AuthnRequest for SP-initiated SSO.

        Args:
            force_authn: Request fresh authentication even if the user has
                an IdP session.
            is_passive: Request authentication without user interaction.
            include_name_id_policy: Add a NameIDPolicy with the SP's
                preferred NameID format.

        Returns:
            AuthnRequest with its serialized (and, when the security
            policy says so, signed) document in ``xml``.

        Raises:
            ConfigurationError: If signing is required but fails.
        """
        sp = self.settings.sp
        security = self.settings.security

        request = AuthnRequest(
            id=generate_unique_id(),
            issue_instant=format_saml_time(),
            destination=self.settings.idp.sso_url,
            issuer=sp.entity_id,
            acs_url=sp.acs_url,
            protocol_binding=sp.assertion_consumer_service.binding,
            force_authn=force_authn,
            is_passive=is_passive,
            name_id_policy=include_name_id_policy,
            name_id_format=sp.name_id_format,
        )
        request.xml = request.to_xml()

        if security.authn_requests_signed:
            if not sp.can_sign:
                raise ConfigurationError("AuthnRequest signing requires the SP certificate and private key")
            request.xml = sign_xml(
                request.xml,
                sp.private_key,
                sp.x509_cert,
                request.id,
                security.signature_algorithm,
                security.digest_algorithm,
                reject_deprecated=security.reject_deprecated_algorithms,
            )
            request.signed = True

        logger.debug("Built AuthnRequest %s for %s", request.id, request.destination)
        return request
