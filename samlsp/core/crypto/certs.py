"""Certificate utilities.

PEM normalization, fingerprints, certificate extraction from signed SAML
documents, and self-signed SP signing certificate generation.
"""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import StrEnum

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import NameOID
from lxml import etree

from samlsp.core.saml.constants import NS_DS, NS_SAML, NS_SAMLP, FingerprintAlgorithm
from samlsp.core.saml.utils import find_child, parse_xml

PEM_LINE_WIDTH = 64

_ARMOR_RE = re.compile(r"-----(BEGIN|END)[A-Z0-9 ]*-----")


class CertificateError(Exception):
    """Base exception for certificate-related errors."""


class CertificateLoadError(CertificateError):
    """Raised when a certificate cannot be loaded."""


class KeyLoadError(CertificateError):
    """Raised when a private key cannot be loaded."""


class PEMType(StrEnum):
    """PEM armor labels."""

    CERTIFICATE = "CERTIFICATE"
    PRIVATE_KEY = "PRIVATE KEY"
    RSA_PRIVATE_KEY = "RSA PRIVATE KEY"


@dataclass
class CertificateInfo:
    """Information extracted from an X.509 certificate."""

    subject: str
    issuer: str
    serial_number: str
    not_before: datetime
    not_after: datetime
    fingerprint_sha256: str
    is_self_signed: bool
    key_type: str
    key_size: int


def _pem_body(raw: str) -> str:
    """Strip armor lines and all whitespace, leaving the base64 payload."""
    return "".join(_ARMOR_RE.sub("", raw).split())


def _detect_key_type(raw: str) -> PEMType:
    if "BEGIN RSA PRIVATE KEY" in raw:
        return PEMType.RSA_PRIVATE_KEY
    return PEMType.PRIVATE_KEY


def normalize_pem(raw: str, pem_type: PEMType | str = PEMType.CERTIFICATE) -> str:
    """Re-armor a certificate or key, wrapping the payload at 64 characters.

    Accepts a bare base64 body, a PEM with broken line wrapping, or a
    well-formed PEM. For private keys given as bare bodies the PKCS#8 label
    is used; an existing ``RSA PRIVATE KEY`` label is preserved.

    Args:
        raw: Certificate or key material.
        pem_type: Which armor to write. ``PEMType.PRIVATE_KEY`` keeps a
            PKCS#1 label when the input already had one.

    Returns:
        PEM text ending with a newline, or an empty string for empty input.
    """
    label = PEMType(pem_type)
    if label is not PEMType.CERTIFICATE:
        label = _detect_key_type(raw)

    body = _pem_body(raw)
    if not body:
        return ""
    lines = [body[i : i + PEM_LINE_WIDTH] for i in range(0, len(body), PEM_LINE_WIDTH)]
    return f"-----BEGIN {label}-----\n" + "\n".join(lines) + f"\n-----END {label}-----\n"


def normalize_certificate(raw: str) -> str:
    return normalize_pem(raw, PEMType.CERTIFICATE)


def normalize_private_key(raw: str) -> str:
    return normalize_pem(raw, PEMType.PRIVATE_KEY)


def certificate_body(raw: str) -> str:
    """Base64 body of a certificate on a single line (as used in XML)."""
    return _pem_body(raw)


def fingerprint(cert_pem: str, algorithm: FingerprintAlgorithm | str = FingerprintAlgorithm.SHA1) -> str:
    """Compute a colon-separated uppercase hex fingerprint of a certificate.

    The hash covers the DER bytes obtained by base64-decoding the PEM body,
    so the result only depends on the certificate, not on its formatting.

    Args:
        cert_pem: Certificate as PEM or bare base64.
        algorithm: sha1, sha256, sha384 or sha512.

    Returns:
        Fingerprint such as ``"AB:01:..."``.

    Raises:
        ValueError: If the algorithm is unknown or the body is not base64.
    """
    algo = FingerprintAlgorithm(str(algorithm).lower())
    try:
        der = base64.b64decode(_pem_body(cert_pem), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Certificate is not valid base64: {e}") from e

    digest = hashes.Hash(algo.hash_algorithm)
    digest.update(der)
    return ":".join(f"{b:02X}" for b in digest.finalize())


def normalize_fingerprint(value: str) -> str:
    """Canonical form of a configured fingerprint (uppercase, colon separated)."""
    compact = re.sub(r"[^0-9A-Fa-f]", "", value).upper()
    return ":".join(compact[i : i + 2] for i in range(0, len(compact), 2))


def signature_certificate(signature: etree._Element | None) -> str | None:
    key_info = find_child(signature, NS_DS, "KeyInfo")
    x509_data = find_child(key_info, NS_DS, "X509Data")
    cert_elem = find_child(x509_data, NS_DS, "X509Certificate")
    if cert_elem is None or not (cert_elem.text or "").strip():
        return None
    return normalize_certificate(cert_elem.text or "")


def find_signature_element(root: etree._Element) -> etree._Element | None:
    """Locate the signature block at the shallowest scope.

    Search order: a ``ds:Signature`` child of the document root, then of the
    root's first ``saml:Assertion`` child, then of the root's first
    ``samlp:Response`` child. The first block found wins.
    """
    for scope in (
        root,
        find_child(root, NS_SAML, "Assertion"),
        find_child(root, NS_SAMLP, "Response"),
    ):
        signature = find_child(scope, NS_DS, "Signature")
        if signature is not None:
            return signature
    return None


def extract_certificate(xml: str | etree._Element) -> str | None:
    """Return the X.509 certificate embedded in the first signature block.

    Args:
        xml: Signed document as text or a parsed element.

    Returns:
        The certificate as normalized PEM, or None when the document has no
        signature, no embedded certificate, or does not parse.
    """
    if isinstance(xml, str | bytes):
        try:
            root = parse_xml(xml)
        except etree.XMLSyntaxError:
            return None
    else:
        root = xml
    return signature_certificate(find_signature_element(root))


def load_certificate_pem(cert_pem: str) -> x509.Certificate:
    """Load a certificate from PEM text (armor optional).

    Raises:
        CertificateLoadError: If the data is not a certificate.
    """
    try:
        return x509.load_pem_x509_certificate(normalize_certificate(cert_pem).encode("ascii"))
    except (ValueError, UnicodeEncodeError) as e:
        raise CertificateLoadError(f"Failed to load certificate: {e}") from e


def load_private_key_pem(
    key_pem: str,
    password: bytes | None = None,
) -> rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey:
    """Load an RSA or EC private key from PEM text.

    Raises:
        KeyLoadError: If the key cannot be loaded or has an unsupported type.
    """
    try:
        key = serialization.load_pem_private_key(
            normalize_private_key(key_pem).encode("ascii"), password=password
        )
    except (ValueError, TypeError, UnicodeEncodeError) as e:
        raise KeyLoadError(f"Failed to load private key: {e}") from e
    if not isinstance(key, rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey):
        raise KeyLoadError(f"Expected RSA or EC private key, got {type(key).__name__}")
    return key


def generate_private_key(key_size: int = 2048) -> rsa.RSAPrivateKey:
    """Generate an RSA private key."""
    return rsa.generate_private_key(
        public_exponent=65537,
        key_size=key_size,
    )


def generate_signing_certificate(
    private_key: rsa.RSAPrivateKey,
    common_name: str = "samlsp",
    organization: str = "samlsp",
    days_valid: int = 365,
) -> x509.Certificate:
    """Generate a self-signed certificate for SAML message signing.

    Args:
        private_key: Key to certify and sign with.
        common_name: Subject CN, usually the SP host name.
        organization: Subject O.
        days_valid: Validity period from now.

    Returns:
        Self-signed X.509 certificate.
    """
    subject = issuer = x509.Name([
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization),
        x509.NameAttribute(NameOID.COMMON_NAME, common_name),
    ])

    now = datetime.now(UTC)

    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + timedelta(days=days_valid))
        .add_extension(
            x509.BasicConstraints(ca=False, path_length=None),
            critical=True,
        )
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                key_encipherment=False,
                content_commitment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .sign(private_key, hashes.SHA256())
    )


def get_private_key_pem(private_key: rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey) -> str:
    """PKCS#8 PEM of an unencrypted private key."""
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def get_certificate_pem(cert: x509.Certificate) -> str:
    """PEM text of a certificate."""
    return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


def get_certificate_info(cert: x509.Certificate) -> CertificateInfo:
    """Extract information from an X.509 certificate."""
    public_key = cert.public_key()
    if isinstance(public_key, rsa.RSAPublicKey):
        key_type, key_size = "RSA", public_key.key_size
    elif isinstance(public_key, ec.EllipticCurvePublicKey):
        key_type, key_size = "EC", public_key.curve.key_size
    else:
        key_type, key_size = type(public_key).__name__, 0

    return CertificateInfo(
        subject=cert.subject.rfc4514_string(),
        issuer=cert.issuer.rfc4514_string(),
        serial_number=format(cert.serial_number, "x"),
        not_before=cert.not_valid_before_utc,
        not_after=cert.not_valid_after_utc,
        fingerprint_sha256=fingerprint(get_certificate_pem(cert), FingerprintAlgorithm.SHA256),
        is_self_signed=cert.subject == cert.issuer,
        key_type=key_type,
        key_size=key_size,
    )
