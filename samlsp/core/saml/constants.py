"""SAML protocol constants.

Algorithm, format and status URIs are string enums so they can be written
straight into XML while still being matched exhaustively in code.
"""

from __future__ import annotations

from enum import StrEnum

from cryptography.hazmat.primitives import hashes

NS_SAML = "urn:oasis:names:tc:SAML:2.0:assertion"
NS_SAMLP = "urn:oasis:names:tc:SAML:2.0:protocol"
NS_MD = "urn:oasis:names:tc:SAML:2.0:metadata"
NS_DS = "http://www.w3.org/2000/09/xmldsig#"
NS_XMLENC = "http://www.w3.org/2001/04/xmlenc#"

NSMAP = {
    "saml": NS_SAML,
    "samlp": NS_SAMLP,
    "md": NS_MD,
    "ds": NS_DS,
}


class Binding(StrEnum):
    """HTTP transport bindings."""

    HTTP_REDIRECT = "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-Redirect"
    HTTP_POST = "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-POST"


class NameIDFormat(StrEnum):
    """NameID formats."""

    UNSPECIFIED = "urn:oasis:names:tc:SAML:1.1:nameid-format:unspecified"
    EMAIL_ADDRESS = "urn:oasis:names:tc:SAML:1.1:nameid-format:emailAddress"
    X509_SUBJECT = "urn:oasis:names:tc:SAML:1.1:nameid-format:X509SubjectName"
    WINDOWS_DOMAIN_QUALIFIED_NAME = (
        "urn:oasis:names:tc:SAML:1.1:nameid-format:WindowsDomainQualifiedName"
    )
    KERBEROS = "urn:oasis:names:tc:SAML:2.0:nameid-format:kerberos"
    ENTITY = "urn:oasis:names:tc:SAML:2.0:nameid-format:entity"
    TRANSIENT = "urn:oasis:names:tc:SAML:2.0:nameid-format:transient"
    PERSISTENT = "urn:oasis:names:tc:SAML:2.0:nameid-format:persistent"


class StatusCode(StrEnum):
    """Top-level and common second-level status codes."""

    SUCCESS = "urn:oasis:names:tc:SAML:2.0:status:Success"
    REQUESTER = "urn:oasis:names:tc:SAML:2.0:status:Requester"
    RESPONDER = "urn:oasis:names:tc:SAML:2.0:status:Responder"
    VERSION_MISMATCH = "urn:oasis:names:tc:SAML:2.0:status:VersionMismatch"
    AUTHN_FAILED = "urn:oasis:names:tc:SAML:2.0:status:AuthnFailed"
    PARTIAL_LOGOUT = "urn:oasis:names:tc:SAML:2.0:status:PartialLogout"
    UNKNOWN_PRINCIPAL = "urn:oasis:names:tc:SAML:2.0:status:UnknownPrincipal"


class DigestAlgorithm(StrEnum):
    """XML-DSig digest methods."""

    SHA1 = "http://www.w3.org/2000/09/xmldsig#sha1"
    SHA256 = "http://www.w3.org/2001/04/xmlenc#sha256"
    SHA384 = "http://www.w3.org/2001/04/xmldsig-more#sha384"
    SHA512 = "http://www.w3.org/2001/04/xmlenc#sha512"

    @property
    def is_deprecated(self) -> bool:
        return self is DigestAlgorithm.SHA1


class SignatureAlgorithm(StrEnum):
    """XML-DSig signature methods."""

    RSA_SHA1 = "http://www.w3.org/2000/09/xmldsig#rsa-sha1"
    RSA_SHA256 = "http://www.w3.org/2001/04/xmldsig-more#rsa-sha256"
    RSA_SHA384 = "http://www.w3.org/2001/04/xmldsig-more#rsa-sha384"
    RSA_SHA512 = "http://www.w3.org/2001/04/xmldsig-more#rsa-sha512"
    ECDSA_SHA1 = "http://www.w3.org/2001/04/xmldsig-more#ecdsa-sha1"
    ECDSA_SHA256 = "http://www.w3.org/2001/04/xmldsig-more#ecdsa-sha256"
    ECDSA_SHA384 = "http://www.w3.org/2001/04/xmldsig-more#ecdsa-sha384"
    ECDSA_SHA512 = "http://www.w3.org/2001/04/xmldsig-more#ecdsa-sha512"

    @property
    def is_deprecated(self) -> bool:
        return self in (SignatureAlgorithm.RSA_SHA1, SignatureAlgorithm.ECDSA_SHA1)

    @property
    def is_ecdsa(self) -> bool:
        return self.name.startswith("ECDSA")

    @property
    def hash_algorithm(self) -> hashes.HashAlgorithm:
        return _SIGNATURE_HASHES[self]()


class FingerprintAlgorithm(StrEnum):
    """Hash algorithms accepted for certificate fingerprints."""

    SHA1 = "sha1"
    SHA256 = "sha256"
    SHA384 = "sha384"
    SHA512 = "sha512"

    @property
    def hash_algorithm(self) -> hashes.HashAlgorithm:
        return _FINGERPRINT_HASHES[self]()


_SIGNATURE_HASHES: dict[SignatureAlgorithm, type[hashes.HashAlgorithm]] = {
    SignatureAlgorithm.RSA_SHA1: hashes.SHA1,
    SignatureAlgorithm.RSA_SHA256: hashes.SHA256,
    SignatureAlgorithm.RSA_SHA384: hashes.SHA384,
    SignatureAlgorithm.RSA_SHA512: hashes.SHA512,
    SignatureAlgorithm.ECDSA_SHA1: hashes.SHA1,
    SignatureAlgorithm.ECDSA_SHA256: hashes.SHA256,
    SignatureAlgorithm.ECDSA_SHA384: hashes.SHA384,
    SignatureAlgorithm.ECDSA_SHA512: hashes.SHA512,
}

_FINGERPRINT_HASHES: dict[FingerprintAlgorithm, type[hashes.HashAlgorithm]] = {
    FingerprintAlgorithm.SHA1: hashes.SHA1,
    FingerprintAlgorithm.SHA256: hashes.SHA256,
    FingerprintAlgorithm.SHA384: hashes.SHA384,
    FingerprintAlgorithm.SHA512: hashes.SHA512,
}

DEFAULT_SIGNATURE_ALGORITHM = SignatureAlgorithm.RSA_SHA256
DEFAULT_DIGEST_ALGORITHM = DigestAlgorithm.SHA256
DEFAULT_NAME_ID_FORMAT = NameIDFormat.UNSPECIFIED
