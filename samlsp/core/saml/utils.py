"""SAML utility functions: identifiers, timestamps and XML helpers."""

from __future__ import annotations

import secrets
from datetime import UTC, datetime

from lxml import etree

from samlsp.core.saml.constants import NS_DS, NS_SAML, NS_SAMLP

SAML_TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def generate_unique_id() -> str:
    """Generate an unguessable SAML message ID.

    IDs must be valid xs:ID values, so they start with an underscore.
    ``secrets`` draws from the OS CSPRNG and is safe to call from any thread.
    """
    return f"_{secrets.token_hex(20)}"


def utc_now() -> datetime:
    return datetime.now(UTC)


def format_saml_time(moment: datetime | None = None) -> str:
    """Format a datetime as an xs:dateTime with second precision and ``Z``."""
    moment = moment or utc_now()
    return moment.astimezone(UTC).strftime(SAML_TIME_FORMAT)


def parse_saml_time(value: str) -> datetime:
    """Parse an xs:dateTime value into an aware UTC datetime.

    Fractional seconds and explicit offsets are accepted. A value without
    any zone designator is taken as UTC.

    Raises:
        ValueError: If the value is not a timestamp.
    """
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    if "." in text:
        # Python only accepts up to microsecond precision
        head, _, rest = text.partition(".")
        digits = ""
        while rest and rest[0].isdigit():
            digits, rest = digits + rest[0], rest[1:]
        text = f"{head}.{digits[:6].ljust(6, '0')}{rest}" if digits else head + rest
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def make_parser() -> etree.XMLParser:
    """Parser for untrusted input: no entity expansion, no network, no DTD loading."""
    return etree.XMLParser(
        resolve_entities=False,
        no_network=True,
        load_dtd=False,
        huge_tree=False,
        remove_blank_text=False,
    )


def parse_xml(xml_string: str | bytes) -> etree._Element:
    """Parse an untrusted XML document.

    Raises:
        etree.XMLSyntaxError: If the document is not well-formed or carries
            a DOCTYPE declaration.
    """
    data = xml_string.encode("utf-8") if isinstance(xml_string, str) else xml_string
    root = etree.fromstring(data, parser=make_parser())
    docinfo = root.getroottree().docinfo
    if docinfo.doctype or docinfo.internalDTD is not None:
        raise etree.XMLSyntaxError("DOCTYPE declarations are not allowed", None, 0, 0)
    return root


def qname(namespace: str, local: str) -> str:
    return f"{{{namespace}}}{local}"


def find_child(parent: etree._Element | None, namespace: str, local: str) -> etree._Element | None:
    """First direct child with the given namespace-qualified name."""
    if parent is None:
        return None
    return parent.find(qname(namespace, local))


def find_children(parent: etree._Element, namespace: str, local: str) -> list[etree._Element]:
    return parent.findall(qname(namespace, local))


def element_text(elem: etree._Element | None) -> str | None:
    """Full text content of an element, comments excluded, stripped.

    Joining all text nodes keeps a comment from truncating a value such as
    ``user@example.com<!---->.evil.com``.
    """
    if elem is None:
        return None
    return "".join(elem.itertext()).strip()


def first_assertion(root: etree._Element) -> etree._Element | None:
    return find_child(root, NS_SAML, "Assertion")


def is_response(elem: etree._Element) -> bool:
    return elem.tag == qname(NS_SAMLP, "Response")


def signature_of(elem: etree._Element | None) -> etree._Element | None:
    return find_child(elem, NS_DS, "Signature")


def pretty_print_xml(xml_string: str, indent: str = "  ") -> str:
    """Pretty-print an XML string, returning it unchanged if it does not parse."""
    try:
        root = parse_xml(xml_string)
    except etree.XMLSyntaxError:
        return xml_string
    etree.indent(root, space=indent)
    return etree.tostring(root, encoding="unicode")
