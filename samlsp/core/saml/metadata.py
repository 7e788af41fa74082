"""SP metadata document generation."""

from __future__ import annotations

from typing import TYPE_CHECKING

from markupsafe import escape

from samlsp.core.crypto.certs import certificate_body

if TYPE_CHECKING:
    from samlsp.core.config import SecurityPolicy, SPConfig


def build_sp_metadata(sp_config: SPConfig, security_policy: SecurityPolicy) -> str:
    """Generate the SP's EntityDescriptor.

    Args:
        sp_config: Service Provider configuration.
        security_policy: Signing flags advertised to the IdP.

    Returns:
        Metadata XML; every configured value is XML-escaped.
    """
    key_descriptor = ""
    if sp_config.x509_cert:
        key_descriptor = f"""
        <md:KeyDescriptor use="signing">
            <ds:KeyInfo xmlns:ds="http://www.w3.org/2000/09/xmldsig#">
                <ds:X509Data>
                    <ds:X509Certificate>{escape(certificate_body(sp_config.x509_cert))}</ds:X509Certificate>
                </ds:X509Data>
            </ds:KeyInfo>
        </md:KeyDescriptor>"""

    slo = ""
    if sp_config.single_logout_service is not None:
        slo = f"""
        <md:SingleLogoutService
            Binding="{escape(sp_config.single_logout_service.binding)}"
            Location="{escape(sp_config.single_logout_service.url)}"/>"""

    acs = sp_config.assertion_consumer_service
    authn_signed = str(security_policy.authn_requests_signed).lower()
    want_signed = str(security_policy.want_assertions_signed).lower()

    return f"""<?xml version="1.0" encoding="UTF-8"?>
<md:EntityDescriptor xmlns:md="urn:oasis:names:tc:SAML:2.0:metadata"
    entityID="{escape(sp_config.entity_id)}">
    <md:SPSSODescriptor AuthnRequestsSigned="{authn_signed}"
        WantAssertionsSigned="{want_signed}"
        protocolSupportEnumeration="urn:oasis:names:tc:SAML:2.0:protocol">{key_descriptor}{slo}
        <md:NameIDFormat>{escape(sp_config.name_id_format)}</md:NameIDFormat>
        <md:AssertionConsumerService
            Binding="{escape(acs.binding)}"
            Location="{escape(acs.url)}"
            index="0"
            isDefault="true"/>
    </md:SPSSODescriptor>
</md:EntityDescriptor>
"""
