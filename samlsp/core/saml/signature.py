"""SAML signature creation and validation.

Outbound requests are signed with signxml. Inbound XML signatures are
located and checked against the configured trust anchor here, then
handed to signxml's XMLVerifier for the reference digest and the
SignatureValue. HTTP-Redirect messages carry their signature in the query
string and are verified against the IdP key directly.
"""

from __future__ import annotations

import base64
import binascii
import hmac
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature
from lxml import etree
from signxml import SignatureConfiguration, SignatureConstructionMethod, XMLSigner, XMLVerifier
from signxml.algorithms import CanonicalizationMethod as SignerC14N
from signxml.algorithms import DigestAlgorithm as SignerDigest
from signxml.algorithms import SignatureMethod as SignerMethod
from signxml.exceptions import InvalidCertificate, InvalidDigest, SignXMLException
from signxml.exceptions import InvalidSignature as SignerInvalidSignature

from samlsp.core.crypto import certs
from samlsp.core.saml.constants import (
    DEFAULT_DIGEST_ALGORITHM,
    DEFAULT_SIGNATURE_ALGORITHM,
    NS_DS,
    NS_SAML,
    DigestAlgorithm,
    FingerprintAlgorithm,
    SignatureAlgorithm,
)
from samlsp.core.saml.errors import ConfigurationError
from samlsp.core.saml.utils import (
    find_child,
    find_children,
    first_assertion,
    is_response,
    parse_xml,
    qname,
    signature_of,
)

if TYPE_CHECKING:
    from samlsp.core.config import SecurityPolicy

QUERY_SIGNATURE_LOCATION = "query string"


class SignatureLocation(StrEnum):
    """Which element of the document carries the signature."""

    RESPONSE = "response"
    ASSERTION = "assertion"


class SignatureStatus(StrEnum):
    """Result of signature validation."""

    VALID = "valid"
    INVALID = "invalid"
    MISSING = "missing"
    NO_TRUST_ANCHOR = "no_trust_anchor"
    UNTRUSTED_CERTIFICATE = "untrusted_certificate"
    UNSUPPORTED_ALGORITHM = "unsupported_algorithm"
    DEPRECATED_ALGORITHM = "deprecated_algorithm"
    DIGEST_MISMATCH = "digest_mismatch"
    ERROR = "error"


@dataclass(frozen=True)
class SignatureTrust:
    """Trust anchor for signature verification.

    Either the IdP certificate itself or a fingerprint of it. With only a
    fingerprint, the certificate embedded in the signature is trusted once
    its fingerprint matches.
    """

    certificate: str | None = None
    fingerprint: str | None = None
    fingerprint_algorithm: FingerprintAlgorithm = FingerprintAlgorithm.SHA1

    @property
    def is_configured(self) -> bool:
        return bool(self.certificate or self.fingerprint)


@dataclass
class SignatureInfo:
    """Information about a signature in the SAML document."""

    location: str
    signature_algorithm: str | None = None
    digest_algorithm: str | None = None
    canonicalization_method: str | None = None
    reference_uri: str | None = None
    certificate_embedded: bool = False


@dataclass
class SignatureValidationResult:
    """Result of SAML signature validation."""

    status: SignatureStatus
    message: str
    info: SignatureInfo | None = None
    trace: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        """Check if signature validation passed."""
        return self.status == SignatureStatus.VALID

    def add_trace(self, message: str) -> None:
        """Add a trace message for debug output."""
        self.trace.append(message)

    def fail(self, status: SignatureStatus, message: str) -> SignatureValidationResult:
        self.status = status
        self.message = message
        self.add_trace(message)
        return self


class _Rejected(Exception):
    """Internal short-circuit carrying the failing status."""

    def __init__(self, status: SignatureStatus, message: str) -> None:
        super().__init__(message)
        self.status = status
        self.message = message


def _locate(
    root: etree._Element, location: SignatureLocation | None
) -> tuple[etree._Element | None, etree._Element | None]:
    """Return (Signature element, signed scope element)."""
    if location is None:
        signature = certs.find_signature_element(root)
        return signature, signature.getparent() if signature is not None else None

    if location == SignatureLocation.RESPONSE:
        scope = root
    elif is_response(root):
        scope = first_assertion(root)
    elif root.tag == qname(NS_SAML, "Assertion"):
        scope = root
    else:
        scope = None
    return signature_of(scope), scope


def _algorithm(signed_info: etree._Element, local: str) -> str:
    elem = find_child(signed_info, NS_DS, local)
    return elem.get("Algorithm", "") if elem is not None else ""


def _b64(value: str | None, what: str) -> bytes:
    try:
        return base64.b64decode("".join((value or "").split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise _Rejected(SignatureStatus.INVALID, f"{what} is not valid base64") from e


def _parse_algorithm(enum_type, value: str, what: str):
    try:
        return enum_type(value)
    except ValueError:
        raise _Rejected(
            SignatureStatus.UNSUPPORTED_ALGORITHM, f"Unsupported {what}: {value or '(none)'}"
        ) from None


def _extract_info(signature: etree._Element, location: str) -> SignatureInfo:
    info = SignatureInfo(location=location)
    signed_info = find_child(signature, NS_DS, "SignedInfo")
    if signed_info is not None:
        info.signature_algorithm = _algorithm(signed_info, "SignatureMethod") or None
        info.canonicalization_method = _algorithm(signed_info, "CanonicalizationMethod") or None
        reference = find_child(signed_info, NS_DS, "Reference")
        if reference is not None:
            info.reference_uri = reference.get("URI")
            info.digest_algorithm = _algorithm(reference, "DigestMethod") or None
    info.certificate_embedded = certs.signature_certificate(signature) is not None
    return info


def _trusted_certificate(signature: etree._Element, trust: SignatureTrust) -> str:
    """Resolve the certificate whose key must have produced the signature."""
    if trust.certificate:
        return trust.certificate

    embedded = certs.signature_certificate(signature)
    if embedded is None:
        raise _Rejected(
            SignatureStatus.UNTRUSTED_CERTIFICATE,
            "Signature carries no certificate to match against the configured fingerprint",
        )
    try:
        actual = certs.fingerprint(embedded, trust.fingerprint_algorithm)
    except ValueError as e:
        raise _Rejected(SignatureStatus.UNTRUSTED_CERTIFICATE, f"Embedded certificate is unreadable: {e}") from e
    expected = certs.normalize_fingerprint(trust.fingerprint or "")
    if not hmac.compare_digest(actual, expected):
        raise _Rejected(
            SignatureStatus.UNTRUSTED_CERTIFICATE,
            f"Embedded certificate fingerprint {actual} does not match the trusted fingerprint",
        )
    return embedded


def _verify_signature_value(
    cert_pem: str, algorithm: SignatureAlgorithm, signature_value: bytes, signed_content: bytes
) -> None:
    try:
        public_key = certs.load_certificate_pem(cert_pem).public_key()
    except certs.CertificateLoadError as e:
        raise _Rejected(SignatureStatus.ERROR, f"Cannot load trusted certificate: {e}") from e

    try:
        if algorithm.is_ecdsa:
            if not isinstance(public_key, ec.EllipticCurvePublicKey):
                raise _Rejected(SignatureStatus.INVALID, "ECDSA signature but the trusted key is not an EC key")
            # ECDSA signature values are raw r || s
            half = len(signature_value) // 2
            r = int.from_bytes(signature_value[:half], "big")
            s = int.from_bytes(signature_value[half:], "big")
            public_key.verify(
                encode_dss_signature(r, s), signed_content, ec.ECDSA(algorithm.hash_algorithm)
            )
        else:
            if not isinstance(public_key, rsa.RSAPublicKey):
                raise _Rejected(SignatureStatus.INVALID, "RSA signature but the trusted key is not an RSA key")
            public_key.verify(
                signature_value, signed_content, padding.PKCS1v15(), algorithm.hash_algorithm
            )
    except InvalidSignature:
        raise _Rejected(
            SignatureStatus.INVALID,
            "Signature value does not match the trusted IdP key",
        ) from None


def _expected_configuration(reject_deprecated: bool) -> SignatureConfiguration:
    """The algorithms XMLVerifier may accept under the current policy."""
    return SignatureConfiguration(
        signature_methods=frozenset(
            SignerMethod(str(alg))
            for alg in SignatureAlgorithm
            if not (reject_deprecated and alg.is_deprecated)
        ),
        digest_algorithms=frozenset(
            SignerDigest(str(alg))
            for alg in DigestAlgorithm
            if not (reject_deprecated and alg.is_deprecated)
        ),
    )


def _check_policy(signed_info: etree._Element, reject_deprecated: bool, result: SignatureValidationResult) -> None:
    sig_alg = _parse_algorithm(
        SignatureAlgorithm, _algorithm(signed_info, "SignatureMethod"), "signature algorithm"
    )
    references = find_children(signed_info, NS_DS, "Reference")
    if len(references) != 1:
        raise _Rejected(SignatureStatus.INVALID, f"Expected exactly one Reference, found {len(references)}")
    digest_alg = _parse_algorithm(DigestAlgorithm, _algorithm(references[0], "DigestMethod"), "digest algorithm")

    if reject_deprecated and (sig_alg.is_deprecated or digest_alg.is_deprecated):
        raise _Rejected(
            SignatureStatus.DEPRECATED_ALGORITHM,
            f"Deprecated algorithm rejected: {sig_alg if sig_alg.is_deprecated else digest_alg}",
        )
    result.add_trace(f"Algorithms: signature={sig_alg.name}, digest={digest_alg.name}")


def _check_scope(root: etree._Element, signed_info: etree._Element, scope: etree._Element) -> None:
    reference = find_child(signed_info, NS_DS, "Reference")
    scope_id = scope.get("ID")
    if not scope_id or reference.get("URI") != f"#{scope_id}":
        raise _Rejected(
            SignatureStatus.INVALID,
            f"Reference URI {reference.get('URI')!r} does not point at the signed element",
        )
    if len(root.xpath("//*[@ID=$id]", id=scope_id)) != 1:
        raise _Rejected(SignatureStatus.INVALID, f"Document contains more than one element with ID {scope_id}")


def _verify_with_signxml(
    scope: etree._Element, cert_pem: str, reject_deprecated: bool, result: SignatureValidationResult
) -> None:
    result.add_trace("Verifying signature against IdP certificate")
    try:
        verified = XMLVerifier().verify(
            scope,
            x509_cert=cert_pem,
            expect_config=_expected_configuration(reject_deprecated),
        )
    except InvalidDigest as e:
        raise _Rejected(
            SignatureStatus.DIGEST_MISMATCH,
            f"Digest mismatch: the signed content has been modified ({e})",
        ) from e
    except InvalidCertificate as e:
        raise _Rejected(SignatureStatus.UNTRUSTED_CERTIFICATE, f"Certificate rejected: {e}") from e
    except SignerInvalidSignature as e:
        raise _Rejected(
            SignatureStatus.INVALID,
            f"Signature value does not match the trusted IdP key: {e}",
        ) from e
    except (SignXMLException, ValueError) as e:
        raise _Rejected(SignatureStatus.INVALID, f"Signature could not be verified: {e}") from e

    # XMLVerifier checks the first signature under the element it is given
    signed = verified.signed_xml
    if signed is None or signed.tag != scope.tag or signed.get("ID") != scope.get("ID"):
        raise _Rejected(SignatureStatus.INVALID, "Signature does not cover the expected element")
    result.add_trace(f"Signature verification successful, verified element: {signed.tag}")


def _check(
    root: etree._Element,
    signature: etree._Element,
    scope: etree._Element,
    trust: SignatureTrust,
    reject_deprecated: bool,
    result: SignatureValidationResult,
) -> None:
    signed_info = find_child(signature, NS_DS, "SignedInfo")
    if signed_info is None:
        raise _Rejected(SignatureStatus.INVALID, "Signature has no SignedInfo")

    _check_policy(signed_info, reject_deprecated, result)
    _check_scope(root, signed_info, scope)

    cert_pem = _trusted_certificate(signature, trust)
    result.add_trace("Resolved trusted certificate")

    _verify_with_signxml(scope, cert_pem, reject_deprecated, result)


def validate_signature(
    xml: str | bytes | etree._Element,
    trust: SignatureTrust,
    policy: SecurityPolicy | None = None,
    location: SignatureLocation | None = None,
) -> SignatureValidationResult:
    """Validate the signature of a SAML document.

    Args:
        xml: The signed document as text or a parsed element. Parsed
            elements are never modified.
        trust: The IdP certificate or fingerprint to trust.
        policy: Security policy; deprecated algorithms are rejected when
            it says so (and when no policy is given).
        location: Which signature to check. None uses the nested search
            order (root, Assertion, Response).

    Returns:
        SignatureValidationResult with validation status and details.
    """
    result = SignatureValidationResult(
        status=SignatureStatus.ERROR,
        message="Validation not completed",
    )
    result.add_trace("Starting signature validation")

    if not trust.is_configured:
        return result.fail(
            SignatureStatus.NO_TRUST_ANCHOR,
            "No IdP certificate or fingerprint configured for signature verification",
        )

    if isinstance(xml, str | bytes):
        try:
            root = parse_xml(xml)
        except etree.XMLSyntaxError as e:
            return result.fail(SignatureStatus.ERROR, f"Failed to parse XML: {e}")
    else:
        root = xml

    signature, scope = _locate(root, location)
    where = str(location) if location else "document"
    if signature is None or scope is None:
        return result.fail(SignatureStatus.MISSING, f"No signature found on the {where}")

    result.info = _extract_info(signature, where)
    result.add_trace(f"Found signature on {where} (Reference URI {result.info.reference_uri})")

    reject_deprecated = policy.reject_deprecated_algorithms if policy is not None else True
    try:
        _check(root, signature, scope, trust, reject_deprecated, result)
    except _Rejected as e:
        return result.fail(e.status, e.message)

    result.status = SignatureStatus.VALID
    result.message = "Signature validated successfully against the trusted IdP key"
    result.add_trace(result.message)
    return result


def verify_signature(
    xml: str | bytes | etree._Element,
    trust: SignatureTrust,
    policy: SecurityPolicy | None = None,
    location: SignatureLocation | None = None,
) -> bool:
    """Boolean form of validate_signature."""
    return validate_signature(xml, trust, policy, location).is_valid


def validate_redirect_signature(
    signed_content: bytes,
    sig_alg: str | None,
    signature: str | None,
    trust: SignatureTrust,
    policy: SecurityPolicy | None = None,
) -> SignatureValidationResult:
    """Validate the query-string signature of an HTTP-Redirect message.

    Args:
        signed_content: The signed octets, see
            :func:`samlsp.core.saml.bindings.redirect_signed_content`.
        sig_alg: The SigAlg query parameter.
        signature: The base64 Signature query parameter.
        trust: The IdP trust anchor. The query carries no certificate, so
            a fingerprint alone cannot verify it.
        policy: Security policy for deprecated algorithms.

    Returns:
        SignatureValidationResult with validation status and details.
    """
    result = SignatureValidationResult(
        status=SignatureStatus.ERROR,
        message="Validation not completed",
        info=SignatureInfo(location=QUERY_SIGNATURE_LOCATION, signature_algorithm=sig_alg),
    )
    result.add_trace("Starting HTTP-Redirect signature validation")

    if not trust.is_configured:
        return result.fail(
            SignatureStatus.NO_TRUST_ANCHOR,
            "No IdP certificate or fingerprint configured for signature verification",
        )
    if not sig_alg or not signature:
        return result.fail(SignatureStatus.MISSING, f"No signature found on the {QUERY_SIGNATURE_LOCATION}")
    if not trust.certificate:
        return result.fail(
            SignatureStatus.UNTRUSTED_CERTIFICATE,
            "HTTP-Redirect signatures carry no certificate; the IdP certificate must be configured",
        )

    reject_deprecated = policy.reject_deprecated_algorithms if policy is not None else True
    try:
        algorithm = _parse_algorithm(SignatureAlgorithm, sig_alg, "signature algorithm")
        if reject_deprecated and algorithm.is_deprecated:
            raise _Rejected(SignatureStatus.DEPRECATED_ALGORITHM, f"Deprecated algorithm rejected: {algorithm}")
        result.add_trace(f"Algorithm: signature={algorithm.name}")
        _verify_signature_value(trust.certificate, algorithm, _b64(signature, "Signature"), signed_content)
    except _Rejected as e:
        return result.fail(e.status, e.message)

    result.status = SignatureStatus.VALID
    result.message = "Signature validated successfully against the trusted IdP key"
    result.add_trace(result.message)
    return result


def sign_xml(
    xml: str,
    private_key_pem: str,
    certificate_pem: str,
    reference_id: str,
    signature_algorithm: SignatureAlgorithm = DEFAULT_SIGNATURE_ALGORITHM,
    digest_algorithm: DigestAlgorithm = DEFAULT_DIGEST_ALGORITHM,
    reject_deprecated: bool = True,
) -> str:
    """Sign the element with the given ID using an enveloped signature.

    The signature is placed right after the element's saml:Issuer, where
    the SAML schema expects it.

    Args:
        xml: Document to sign.
        private_key_pem: SP private key (PEM).
        certificate_pem: SP certificate (PEM), embedded in KeyInfo.
        reference_id: ID attribute of the element to sign.
        signature_algorithm: Signature method.
        digest_algorithm: Digest method.
        reject_deprecated: Refuse SHA-1 based algorithms.

    Returns:
        The signed document.

    Raises:
        ConfigurationError: If the key, certificate or algorithms cannot be
            used for signing.
    """
    if reject_deprecated and (signature_algorithm.is_deprecated or digest_algorithm.is_deprecated):
        raise ConfigurationError(
            f"Refusing to sign with a deprecated algorithm: {signature_algorithm}, {digest_algorithm}"
        )

    try:
        root = parse_xml(xml)
    except etree.XMLSyntaxError as e:
        raise ConfigurationError(f"Cannot sign malformed XML: {e}") from e

    matches = root.xpath("//*[@ID=$id]", id=reference_id)
    if len(matches) != 1:
        raise ConfigurationError(f"Expected one element with ID {reference_id}, found {len(matches)}")
    target = matches[0]

    placeholder = etree.Element(qname(NS_DS, "Signature"), nsmap={"ds": NS_DS}, Id="placeholder")
    issuer = find_child(target, NS_SAML, "Issuer")
    if issuer is not None:
        issuer.addnext(placeholder)
    else:
        target.insert(0, placeholder)

    try:
        signer = XMLSigner(
            method=SignatureConstructionMethod.enveloped,
            signature_algorithm=SignerMethod(str(signature_algorithm)),
            digest_algorithm=SignerDigest(str(digest_algorithm)),
            c14n_algorithm=SignerC14N.EXCLUSIVE_XML_CANONICALIZATION_1_0,
        )
        signed = signer.sign(
            root,
            key=private_key_pem,
            cert=certificate_pem,
            reference_uri=f"#{reference_id}",
        )
    except (SignXMLException, ValueError, TypeError) as e:
        raise ConfigurationError(f"Failed to sign message: {e}") from e

    return etree.tostring(signed, encoding="unicode")
