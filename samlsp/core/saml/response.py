"""Parsing of inbound SAML Responses.

Parsing never raises for bad input: decode and XML failures are recorded
as structural errors on the returned ParsedResponse, and validation
refuses any response that carries them.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime

from lxml import etree

from samlsp.core.saml.bindings import decode_post
from samlsp.core.saml.constants import NS_SAML, NS_SAMLP, StatusCode
from samlsp.core.saml.errors import DecodeError, ValidationError, ValidationRule, structural_error
from samlsp.core.saml.utils import (
    element_text,
    find_child,
    find_children,
    first_assertion,
    is_response,
    parse_saml_time,
    parse_xml,
)

logger = logging.getLogger(__name__)

RESPONSE_FIELD = "SAMLResponse"
RESPONSE_NOT_FOUND = "SAML Response not found in request"


@dataclass
class Assertion:
    """Represents a SAML Assertion."""

    id: str
    issuer: str | None = None
    name_id: str | None = None
    name_id_format: str | None = None
    not_before: datetime | None = None
    not_on_or_after: datetime | None = None
    audiences: list[str] = field(default_factory=list)
    session_index: str | None = None
    authn_instant: str | None = None
    attributes: dict[str, list[str]] = field(default_factory=dict)
    friendly_names: dict[str, str] = field(default_factory=dict)


@dataclass
class ParsedResponse:
    """Represents a parsed SAML Response.

    ``errors`` and ``is_valid`` are settled by validation; everything else
    is fixed once parsing returns.
    """

    id: str = ""
    in_response_to: str | None = None
    issuer: str | None = None
    destination: str | None = None
    issue_instant: str | None = None
    status_code: str | None = None
    sub_status_code: str | None = None
    status_message: str | None = None
    assertion: Assertion | None = None
    xml: str = ""
    errors: list[ValidationError] = field(default_factory=list)
    is_valid: bool = False

    @property
    def is_success(self) -> bool:
        return self.status_code == StatusCode.SUCCESS

    @property
    def error_messages(self) -> list[str]:
        """Errors rendered for display."""
        return [str(e) for e in self.errors]

    def add_error(self, error: ValidationError) -> None:
        self.errors.append(error)


def _parse_time(value: str | None, rule: ValidationRule, label: str, errors: list[ValidationError]) -> datetime | None:
    if not value:
        return None
    try:
        return parse_saml_time(value)
    except ValueError:
        errors.append(structural_error(rule, f"Invalid {label} timestamp: {value}"))
        return None


def _parse_attributes(assertion_elem: etree._Element, assertion: Assertion) -> None:
    for statement in find_children(assertion_elem, NS_SAML, "AttributeStatement"):
        for attr_elem in find_children(statement, NS_SAML, "Attribute"):
            name = attr_elem.get("Name", "")
            if not name:
                continue
            values = assertion.attributes.setdefault(name, [])
            for value_elem in find_children(attr_elem, NS_SAML, "AttributeValue"):
                values.append(element_text(value_elem) or "")
            friendly = attr_elem.get("FriendlyName")
            if friendly:
                assertion.friendly_names[name] = friendly


def parse_assertion(elem: etree._Element, errors: list[ValidationError]) -> Assertion:
    """Parse an Assertion element.

    Args:
        elem: The saml:Assertion element.
        errors: Receives structural errors for unreadable timestamps.

    Returns:
        The parsed Assertion.
    """
    assertion = Assertion(id=elem.get("ID", ""))
    assertion.issuer = element_text(find_child(elem, NS_SAML, "Issuer"))

    subject = find_child(elem, NS_SAML, "Subject")
    name_id = find_child(subject, NS_SAML, "NameID")
    if name_id is not None:
        assertion.name_id = element_text(name_id)
        assertion.name_id_format = name_id.get("Format")

    confirmation = find_child(subject, NS_SAML, "SubjectConfirmation")
    confirmation_data = find_child(confirmation, NS_SAML, "SubjectConfirmationData")

    conditions = find_child(elem, NS_SAML, "Conditions")
    if conditions is not None:
        not_before = conditions.get("NotBefore")
        not_on_or_after = conditions.get("NotOnOrAfter")
        for restriction in find_children(conditions, NS_SAML, "AudienceRestriction"):
            for audience in find_children(restriction, NS_SAML, "Audience"):
                text = element_text(audience)
                if text:
                    assertion.audiences.append(text)
    else:
        # Without Conditions the bearer confirmation bounds the lifetime
        not_before = None
        not_on_or_after = confirmation_data.get("NotOnOrAfter") if confirmation_data is not None else None

    assertion.not_before = _parse_time(not_before, ValidationRule.NOT_BEFORE, "NotBefore", errors)
    assertion.not_on_or_after = _parse_time(
        not_on_or_after, ValidationRule.NOT_ON_OR_AFTER, "NotOnOrAfter", errors
    )

    authn_statement = find_child(elem, NS_SAML, "AuthnStatement")
    if authn_statement is not None:
        assertion.session_index = authn_statement.get("SessionIndex")
        assertion.authn_instant = authn_statement.get("AuthnInstant")

    _parse_attributes(elem, assertion)
    return assertion


class ResponseParser:
    """Decodes and parses SAML Responses delivered with the HTTP-POST binding."""

    def parse(self, post_data: Mapping[str, str]) -> ParsedResponse:
        """Parse the SAMLResponse field of a POST body.

        Args:
            post_data: Form fields of the inbound request.

        Returns:
            ParsedResponse; a missing field yields a single
            "response not found" error and nothing else.
        """
        encoded = post_data.get(RESPONSE_FIELD)
        if not encoded:
            response = ParsedResponse()
            response.add_error(structural_error(ValidationRule.RESPONSE_PRESENT, RESPONSE_NOT_FOUND))
            return response
        return self.parse_encoded(encoded)

    def parse_encoded(self, encoded: str) -> ParsedResponse:
        """Parse a base64-encoded SAML Response."""
        try:
            xml = decode_post(encoded)
        except DecodeError as e:
            response = ParsedResponse()
            response.add_error(structural_error(ValidationRule.DECODE, f"Failed to decode SAML Response: {e}"))
            logger.warning("Undecodable SAML Response: %s", e)
            return response
        return self.parse_xml(xml)

    def parse_xml(self, xml: str) -> ParsedResponse:
        """Parse a SAML Response document."""
        response = ParsedResponse(xml=xml)

        try:
            root = parse_xml(xml)
        except etree.XMLSyntaxError as e:
            response.add_error(structural_error(ValidationRule.XML, f"Invalid SAML Response XML: {e}"))
            logger.warning("Malformed SAML Response XML: %s", e)
            return response

        if not is_response(root):
            response.add_error(
                structural_error(ValidationRule.XML, f"Root element is not a SAML Response: {root.tag}")
            )
            return response

        response.id = root.get("ID", "")
        response.in_response_to = root.get("InResponseTo")
        response.destination = root.get("Destination")
        response.issue_instant = root.get("IssueInstant")
        response.issuer = element_text(find_child(root, NS_SAML, "Issuer"))

        status = find_child(root, NS_SAMLP, "Status")
        status_code = find_child(status, NS_SAMLP, "StatusCode")
        if status_code is not None:
            response.status_code = status_code.get("Value")
            sub_status = find_child(status_code, NS_SAMLP, "StatusCode")
            if sub_status is not None:
                response.sub_status_code = sub_status.get("Value")
        status_message = find_child(status, NS_SAMLP, "StatusMessage")
        if status_message is not None:
            response.status_message = element_text(status_message)

        assertion_elem = first_assertion(root)
        if assertion_elem is not None:
            response.assertion = parse_assertion(assertion_elem, response.errors)

        logger.debug("Parsed SAML Response %s (status %s)", response.id, response.status_code)
        return response


def parse_response(post_data: Mapping[str, str]) -> ParsedResponse:
    """Parse the SAMLResponse field of a POST body."""
    return ResponseParser().parse(post_data)
